"""HTTP route definitions for the service."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.concurrency import run_in_threadpool

from app.schemas import PassReport, PassStatus, RunnerStatus
from services.scheduler import ReconciliationScheduler, build_default_scheduler

router = APIRouter()


def get_scheduler() -> ReconciliationScheduler:
    return build_default_scheduler()


@router.post(
    "/passes",
    response_model=PassReport,
    summary="Run one reconciliation pass now.",
)
async def trigger_pass(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
) -> PassReport:
    report = await run_in_threadpool(scheduler.runner.run_pass)
    if report.status is PassStatus.skipped:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A reconciliation pass is already running.",
        )
    return report


@router.get(
    "/passes/latest",
    response_model=PassReport,
    summary="Fetch the report of the most recent pass that ran.",
)
async def latest_pass(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
) -> PassReport:
    report = scheduler.runner.last_report
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No reconciliation pass has run yet.",
        )
    return report


@router.get(
    "/status",
    response_model=RunnerStatus,
    summary="Runner state, lifetime counters and the latest report.",
)
async def runner_status(
    scheduler: ReconciliationScheduler = Depends(get_scheduler),
) -> RunnerStatus:
    return scheduler.status()


@router.get(
    "/health",
    summary="Health check endpoint.",
    status_code=status.HTTP_200_OK,
)
async def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/",
    summary="Root endpoint mirrors health information.",
    status_code=status.HTTP_200_OK,
)
async def root() -> dict[str, str]:
    return {"status": "ok", "detail": "See /health for service status."}
