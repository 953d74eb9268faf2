from __future__ import annotations

from typing import Any, Dict, Iterable

import typer


def echo_heading(text: str) -> None:
    typer.secho(text, bold=True)


def echo_key_values(pairs: Iterable[tuple[str, Any]]) -> None:
    for key, value in pairs:
        typer.echo(f"{key}: {value}")


def render_report(payload: Dict[str, Any]) -> None:
    echo_heading("Reconciliation Pass")
    echo_key_values(
        [
            ("pass_id", payload.get("pass_id")),
            ("status", payload.get("status")),
            ("strategy", payload.get("strategy")),
            ("started_at", payload.get("started_at")),
            ("finished_at", payload.get("finished_at")),
            ("duration_ms", payload.get("duration_ms")),
        ]
    )

    typer.echo()
    echo_heading("Records")
    echo_key_values(
        [
            ("scanned", payload.get("scanned")),
            ("updated", payload.get("updated")),
            ("unchanged", payload.get("unchanged")),
            ("skipped_no_config", payload.get("skipped_no_config")),
            ("failed_records", payload.get("failed_records")),
            ("channel_issues", payload.get("channel_issues")),
        ]
    )

    error = payload.get("error")
    if error:
        typer.echo()
        typer.secho(f"Error: {error}", fg=typer.colors.RED)


def render_status(payload: Dict[str, Any]) -> None:
    echo_heading("Runner Status")
    echo_key_values(
        [
            ("running", payload.get("running")),
            ("scheduler_enabled", payload.get("scheduler_enabled")),
            ("interval_seconds", payload.get("interval_seconds")),
            ("strategy", payload.get("strategy")),
            ("batch_size", payload.get("batch_size")),
            ("passes_completed", payload.get("passes_completed")),
            ("passes_failed", payload.get("passes_failed")),
            ("passes_skipped", payload.get("passes_skipped")),
        ]
    )

    last_report = payload.get("last_report")
    typer.echo()
    if last_report:
        render_report(last_report)
    else:
        typer.echo("No reconciliation pass has run yet.")
