from __future__ import annotations

import json
import logging
import threading
from typing import Dict, Iterable, Optional

import pytest

from app.schemas import (
    ChannelReading,
    ChannelSetting,
    DeviceReading,
    DeviceSetting,
    PassStatus,
)
from datastore.device_settings import DeviceSettingsStore
from datastore.readings import ReadingStore
from models.records import ChannelStatus, ScanStrategy
from services.config_resolver import DeviceConfigResolver
from services.enricher import ReadingEnricher
from services.errors import StoreUnavailable
from services.reconciler import ReconciliationRunner


def _setting(device_id: str = "dev-1", channels: Iterable[int] = (1, 2)) -> DeviceSetting:
    return DeviceSetting(
        device_id=device_id,
        channels={
            number: ChannelSetting(
                on_threshold=10.0,
                low_efficiency_threshold=20.0,
                morning_shift_start="06:00",
                morning_shift_end="22:00",
                night_shift_start="22:00",
                night_shift_end="06:00",
            )
            for number in channels
        },
    )


def _reading(
    record_id: str,
    values: Dict[int, float],
    device_id: str = "dev-1",
    time: str = "02:00",
) -> DeviceReading:
    return DeviceReading(
        record_id=record_id,
        device_id=device_id,
        date="25/6/10",
        time=time,
        channels={number: ChannelReading(value=value) for number, value in values.items()},
    )


def _runner(
    readings: Optional[ReadingStore] = None,
    enricher: Optional[ReadingEnricher] = None,
    settings: Iterable[DeviceSetting] = (),
    **kwargs,
) -> ReconciliationRunner:
    settings_store = DeviceSettingsStore(name="device_settings")
    for setting in settings or (_setting(),):
        settings_store.put(setting)
    return ReconciliationRunner(
        readings=readings if readings is not None else ReadingStore(name="readings"),
        resolver=DeviceConfigResolver(settings_store),
        enricher=enricher if enricher is not None else ReadingEnricher(),
        **kwargs,
    )


@pytest.fixture()
def store() -> ReadingStore:
    return ReadingStore(name="readings")


def test_pass_enriches_eligible_records(store: ReadingStore) -> None:
    store.put(_reading("r1", {1: 25.0, 2: 15.0}))
    store.put(_reading("r2", {1: 5.0}, time="10:00"))
    runner = _runner(store)

    report = runner.run_pass()

    assert report.status is PassStatus.completed
    assert report.scanned == 2
    assert report.updated == 2
    assert report.skipped_no_config == 0
    first = store.get("r1")
    assert first is not None
    assert first.channels[1].status is ChannelStatus.ON
    assert first.channels[1].shift == "25/6/9 night"
    assert first.channels[2].status is ChannelStatus.LOW
    assert first.channels[2].shift == "25/6/9 night"
    second = store.get("r2")
    assert second is not None
    assert second.channels[1].status is ChannelStatus.OFF
    assert second.channels[1].shift == "25/6/10 morning"
    runner.shutdown()


def test_pass_leaves_fields_it_did_not_compute(store: ReadingStore) -> None:
    reading = DeviceReading(
        record_id="r1",
        device_id="dev-1",
        date="25/6/10",
        time="02:00",
        channels={
            1: ChannelReading(value=25.0),
            3: ChannelReading(value=1.0, status=ChannelStatus.LOW, shift="25/6/1 night"),
        },
        source="gateway",
    )
    store.put(reading)
    runner = _runner(store)

    runner.run_pass()

    stored = store.get("r1")
    assert stored is not None
    assert stored.channels[3] == ChannelReading(value=1.0, status=ChannelStatus.LOW, shift="25/6/1 night")
    assert stored.model_dump()["source"] == "gateway"
    runner.shutdown()


def test_second_pass_updates_nothing(store: ReadingStore) -> None:
    store.put(_reading("r1", {1: 25.0, 2: 15.0}))
    store.put(_reading("r2", {1: 12.0}, time="23:00"))
    runner = _runner(store)

    runner.run_pass()
    snapshot = [reading.model_dump() for reading in store.scan()]
    second = runner.run_pass()

    assert second.status is PassStatus.completed
    assert second.scanned == 0
    assert second.updated == 0
    assert [reading.model_dump() for reading in store.scan()] == snapshot
    assert runner.passes_completed == 2
    runner.shutdown()


def test_record_without_config_is_left_untouched(store: ReadingStore, caplog) -> None:
    store.put(_reading("known", {1: 25.0}))
    store.put(_reading("orphan", {1: 25.0}, device_id="ghost"))
    before = store.get("orphan")
    runner = _runner(store)

    with caplog.at_level(logging.WARNING):
        report = runner.run_pass()

    assert report.skipped_no_config == 1
    assert report.updated == 1
    assert store.get("orphan") == before
    skipped = [
        record
        for record in caplog.records
        if record.name == "services.reconciler" and getattr(record, "record_id", None) == "orphan"
    ]
    assert skipped
    assert getattr(skipped[0], "device_id", None) == "ghost"
    runner.shutdown()


@pytest.mark.parametrize("strategy", [ScanStrategy.paged, ScanStrategy.exhaustive])
def test_every_eligible_record_is_visited_once(store: ReadingStore, strategy: ScanStrategy) -> None:
    for index in range(7):
        device = "ghost" if index % 3 == 0 else "dev-1"
        store.put(_reading(f"r{index}", {1: float(index * 5)}, device_id=device))
    runner = _runner(store, batch_size=2, strategy=strategy)

    report = runner.run_pass()

    assert report.scanned == 7
    assert report.skipped_no_config == 3
    assert report.updated == 4
    assert sorted(r.record_id for r in store.find_unenriched()) == ["r0", "r3", "r6"]
    runner.shutdown()


def test_parallel_workers_produce_same_result(store: ReadingStore) -> None:
    for index in range(12):
        store.put(_reading(f"r{index}", {1: float(index * 3), 2: 11.0}))
    runner = _runner(store, batch_size=5, workers=3)

    report = runner.run_pass()

    assert report.updated == 12
    assert store.find_unenriched() == []
    stored = store.get("r11")
    assert stored is not None
    assert stored.channels[1].status is ChannelStatus.ON
    assert stored.channels[2].status is ChannelStatus.LOW
    runner.shutdown()


def test_record_without_sentinel_channel_config_settles_as_unchanged(store: ReadingStore) -> None:
    store.put(_reading("r1", {1: 25.0, 2: 25.0}))
    runner = _runner(store, settings=[_setting(channels=(2,))])

    first = runner.run_pass()
    second = runner.run_pass()

    assert first.updated == 1
    assert second.scanned == 1
    assert second.updated == 0
    assert second.unchanged == 1
    stored = store.get("r1")
    assert stored is not None
    assert stored.channels[1].status is None
    assert stored.channels[2].status is ChannelStatus.ON
    runner.shutdown()


def test_malformed_time_writes_statuses_and_counts_issue(store: ReadingStore) -> None:
    store.put(_reading("r1", {1: 25.0}, time="99:99"))
    runner = _runner(store)

    report = runner.run_pass()

    assert report.updated == 1
    assert report.channel_issues == 1
    stored = store.get("r1")
    assert stored is not None
    assert stored.channels[1].status is ChannelStatus.ON
    assert stored.channels[1].shift is None
    runner.shutdown()


def test_failing_record_does_not_abort_pass(store: ReadingStore) -> None:
    class FlakyEnricher(ReadingEnricher):
        def enrich(self, reading, config):
            if reading.record_id == "boom":
                raise RuntimeError("unexpected")
            return super().enrich(reading, config)

    store.put(_reading("boom", {1: 25.0}))
    store.put(_reading("fine", {1: 25.0}))
    runner = _runner(store, enricher=FlakyEnricher())

    report = runner.run_pass()

    assert report.status is PassStatus.completed
    assert report.failed_records == 1
    assert report.updated == 1
    runner.shutdown()


def test_store_failure_aborts_pass_and_releases_guard() -> None:
    class UnreliableStore(ReadingStore):
        healthy = False

        def find_unenriched(self, skip=0, limit=None):
            if not self.healthy:
                raise StoreUnavailable("connection refused")
            return super().find_unenriched(skip=skip, limit=limit)

    store = UnreliableStore(name="readings")
    store.put(_reading("r1", {1: 25.0}))
    runner = _runner(store)

    failed = runner.run_pass()

    assert failed.status is PassStatus.failed
    assert failed.error == "connection refused"
    assert runner.is_running is False
    assert runner.passes_failed == 1

    store.healthy = True
    recovered = runner.run_pass()

    assert recovered.status is PassStatus.completed
    assert recovered.updated == 1
    runner.shutdown()


def test_failed_write_reports_failure_without_partial_update(store: ReadingStore, monkeypatch) -> None:
    store.put(_reading("r1", {1: 25.0}))
    runner = _runner(store)

    def refuse(_updates):
        raise StoreUnavailable("write timed out")

    monkeypatch.setattr(store, "bulk_update", refuse)

    report = runner.run_pass()

    assert report.status is PassStatus.failed
    assert report.updated == 0
    stored = store.get("r1")
    assert stored is not None
    assert stored.channels[1].status is None
    runner.shutdown()


def test_concurrent_pass_is_dropped_and_recorded_as_skipped(store: ReadingStore) -> None:
    entered = threading.Event()
    release = threading.Event()

    class BlockingEnricher(ReadingEnricher):
        def enrich(self, reading, config):
            entered.set()
            release.wait(timeout=5)
            return super().enrich(reading, config)

    store.put(_reading("r1", {1: 25.0}))
    runner = _runner(store, enricher=BlockingEnricher())
    reports = []
    worker = threading.Thread(target=lambda: reports.append(runner.run_pass()))
    worker.start()

    try:
        assert entered.wait(timeout=5)
        assert runner.is_running is True

        dropped = runner.run_pass()

        assert dropped.status is PassStatus.skipped
        assert dropped.scanned == 0
        assert runner.passes_skipped == 1
    finally:
        release.set()
        worker.join(timeout=5)

    assert reports[0].status is PassStatus.completed
    assert reports[0].updated == 1
    assert runner.is_running is False
    assert runner.last_report == reports[0]
    runner.shutdown()


def test_invalid_batch_size_is_rejected() -> None:
    with pytest.raises(ValueError):
        _runner(batch_size=0)


def test_pass_over_legacy_documents_only_adds_derived_keys(tmp_path) -> None:
    readings_path = tmp_path / "readings.json"
    legacy = {"_id": "a1", "deviceno": 7, "date": "25/6/10", "time": "2:00", "ch1": 25, "ch2": 3}
    readings_path.write_text(json.dumps({"a1": legacy}))
    settings_path = tmp_path / "settings.json"
    window = {"Night_shift_start": "22:00", "Night_shift_end": "6:00"}
    settings_path.write_text(
        json.dumps(
            {
                "7": {
                    "deviceno": 7,
                    "ch1": {"ON_Threshold": 10, "LOW_Effeciency_Threshold": 20, **window},
                    "ch2": {"ON_Threshold": 10, "LOW_Effeciency_Threshold": 20, **window},
                }
            }
        )
    )
    store = ReadingStore(name="readings", persistence_path=readings_path)
    runner = ReconciliationRunner(
        readings=store,
        resolver=DeviceConfigResolver(
            DeviceSettingsStore(name="device_settings", persistence_path=settings_path)
        ),
        enricher=ReadingEnricher(),
    )

    try:
        first = runner.run_pass()
        after_first = readings_path.read_text()
        second = runner.run_pass()
    finally:
        runner.shutdown()

    assert first.updated == 1
    assert json.loads(after_first)["a1"] == {
        **legacy,
        "ch1_status": "ON",
        "ch1_shift": "25/6/9 night",
        "ch2_status": "OFF",
        "ch2_shift": "25/6/9 night",
    }
    assert second.scanned == 0
    assert readings_path.read_text() == after_first
