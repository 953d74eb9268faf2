from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import typer

from app.schemas import PassStatus
from cli.client import ApiClient
from cli.config import CLIConfig, load_config
from cli.render import render_report, render_status
from logging_config import configure_logging
from services.reconciler import build_default_runner


@dataclass
class CLIState:
    config: CLIConfig
    client: ApiClient


app = typer.Typer(
    help="Utilities for operating the device telemetry reconciler.",
    context_settings={"help_option_names": ["-h", "--help"]},
)


def _get_state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise typer.Exit(code=1)
    return state


@app.callback()
def main(
    ctx: typer.Context,
    base_url: Optional[str] = typer.Option(
        None,
        "--base-url",
        "-b",
        help="Reconciler API base URL (defaults to API_BASE_URL env or http://localhost:8000).",
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        help="Seconds to wait for each API request.",
    ),
) -> None:
    """Entry point for the CLI."""
    config = load_config(base_url=base_url, request_timeout=timeout)
    client = ApiClient(config)
    ctx.obj = CLIState(config=config, client=client)
    ctx.call_on_close(client.close)


@app.command("trigger")
def trigger_command(ctx: typer.Context) -> None:
    """Ask the service to run a reconciliation pass now."""
    state = _get_state(ctx)
    typer.echo(f"Triggering a reconciliation pass on {state.config.base_url} ...")
    payload = state.client.trigger_pass()
    render_report(payload)
    if payload.get("status") != "completed":
        raise typer.Exit(code=1)


@app.command("status")
def status_command(ctx: typer.Context) -> None:
    """Show whether a pass is running and the lifetime counters."""
    state = _get_state(ctx)
    render_status(state.client.get_status())


@app.command("latest")
def latest_command(ctx: typer.Context) -> None:
    """Show the report of the most recent pass."""
    state = _get_state(ctx)
    render_report(state.client.get_latest_report())


@app.command("run-once")
def run_once_command() -> None:
    """Run a single pass in-process against the configured stores."""
    configure_logging()
    runner = build_default_runner()
    try:
        report = runner.run_pass()
    finally:
        runner.shutdown()
        build_default_runner.cache_clear()
    render_report(report.model_dump(mode="json"))
    if report.status is not PassStatus.completed:
        raise typer.Exit(code=1)
