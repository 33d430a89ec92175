from __future__ import annotations

import asyncio
import json
import sys
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional, TypeVar

import typer
from pydantic import BaseModel

from question_rotation import reporter
from question_rotation.config import get_settings
from question_rotation.coordinator import RotationCoordinator, available_backends, create_coordinator
from question_rotation.domain.errors import StoreUnavailable
from question_rotation.utils.logging import configure_logging, get_logger

app = typer.Typer(help="Question Rotation Engine CLI.")
log = get_logger(__name__)

T = TypeVar("T")

# Wake slightly after the boundary so the rotation lands in the new window.
_BOUNDARY_SLACK_SECONDS = 0.5

JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")


def _run(action: Callable[[RotationCoordinator], Awaitable[T]]) -> T:
    """
    Build a coordinator from settings, run one action against it and close it.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    async def _go() -> T:
        coordinator = await create_coordinator(settings)
        async with coordinator:
            return await action(coordinator)

    try:
        return asyncio.run(_go())
    except StoreUnavailable as exc:
        typer.echo(f"Store unavailable: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    except KeyboardInterrupt:
        # click would turn this into "Aborted!" with status 1.
        typer.echo("Cancelled by user.", err=True)
        raise typer.Exit(code=130)


def _emit_json(payload: object) -> None:
    if isinstance(payload, BaseModel):
        data = payload.model_dump(mode="json")
    else:
        data = [item.model_dump(mode="json") for item in payload]  # type: ignore[attr-defined]
    typer.echo(json.dumps(data, indent=2))


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    reporter.print_settings(get_settings(), available_backends())


@app.command()
def current(as_json: bool = JSON_OPTION) -> None:
    """
    Show the current question, rotating first if the stored one is stale.
    """
    view = _run(lambda coordinator: coordinator.get_current())
    if as_json:
        _emit_json(view)
    else:
        reporter.print_current(view)


@app.command()
def initialize(as_json: bool = JSON_OPTION) -> None:
    """
    Create the current (and staged next) question if missing.
    """
    snapshot = _run(lambda coordinator: coordinator.initialize())
    if as_json:
        _emit_json(snapshot)
    else:
        reporter.print_snapshot(snapshot)


@app.command()
def rotate(as_json: bool = JSON_OPTION) -> None:
    """
    Rotate for the present window (no-op if already rotated).
    """
    result = _run(lambda coordinator: coordinator.force_rotate())
    if as_json:
        _emit_json(result)
    else:
        reporter.print_rotation(result)


@app.command()
def history(as_json: bool = JSON_OPTION) -> None:
    """
    List past questions, newest first.
    """
    entries = _run(lambda coordinator: coordinator.list_history())
    if as_json:
        _emit_json(entries)
    else:
        reporter.print_history(entries)


@app.command("pre-generate")
def pre_generate(
    lead_minutes: Optional[int] = typer.Option(
        None,
        "--lead-minutes",
        "-l",
        help="Override how close to the boundary staging starts (default from settings).",
    ),
    as_json: bool = JSON_OPTION,
) -> None:
    """
    Stage the next question when the boundary is near.
    """
    lead = timedelta(minutes=lead_minutes) if lead_minutes is not None else None
    result = _run(lambda coordinator: coordinator.prepare_next(lead))
    if as_json:
        _emit_json(result)
    else:
        reporter.print_preparation(result)


async def _watch(coordinator: RotationCoordinator, iterations: Optional[int], as_json: bool) -> None:
    rotations = 0
    while iterations is None or rotations < iterations:
        clock = coordinator.clock
        remaining = clock.time_until_next_window(datetime.now(timezone.utc))
        if remaining > coordinator.pregenerate_lead:
            log.info(
                "[WATCH] sleeping until the pre-generation lead",
                extra={"seconds": (remaining - coordinator.pregenerate_lead).total_seconds()},
            )
            await asyncio.sleep((remaining - coordinator.pregenerate_lead).total_seconds())

        prepared = await coordinator.prepare_next()
        if as_json:
            _emit_json(prepared)
        else:
            reporter.print_preparation(prepared)

        remaining = clock.time_until_next_window(datetime.now(timezone.utc))
        await asyncio.sleep(remaining.total_seconds() + _BOUNDARY_SLACK_SECONDS)

        result = await coordinator.force_rotate()
        rotations += 1
        if as_json:
            _emit_json(result)
        else:
            reporter.print_rotation(result)


@app.command()
def watch(
    iterations: Optional[int] = typer.Option(
        None,
        "--iterations",
        "-n",
        help="Stop after this many boundaries (default: run until interrupted).",
    ),
    as_json: bool = JSON_OPTION,
) -> None:
    """
    Run a scheduler loop: pre-generate inside the lead window, rotate at each boundary.
    """
    typer.echo("Watching window boundaries (Ctrl-C to stop).", err=True)
    _run(lambda coordinator: _watch(coordinator, iterations, as_json))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
