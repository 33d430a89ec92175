from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from question_rotation.config import Settings
from question_rotation.domain.models import (
    CurrentView,
    HistoryEntry,
    PreparationResult,
    RotationResult,
    Snapshot,
)


def _fmt_window(window_start: Optional[datetime]) -> str:
    if window_start is None:
        return "-"
    return window_start.strftime("%Y-%m-%d %H:%M %Z")


def _status(degraded: bool) -> str:
    return "[bold red]degraded[/bold red]" if degraded else "[green]ok[/green]"


def print_settings(settings: Settings, backends: Sequence[str], console: Optional[Console] = None) -> None:
    """Render the effective configuration as a two-column table."""
    console = console or Console()
    table = Table(title="Question Rotation Settings", box=box.ROUNDED, show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value", style="magenta")

    if settings.store_backend == "postgres":
        store = f"postgres ({settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name})"
    else:
        store = settings.store_backend
    table.add_row("Store", store)
    table.add_row("Available backends", ", ".join(backends))
    table.add_row("Granularity", settings.rotation_granularity)
    table.add_row("Timezone", settings.reference_timezone)
    table.add_row(
        "Pre-generation",
        f"{settings.pregenerate_lead_minutes} min lead" if settings.pregenerate_enabled else "disabled",
    )
    table.add_row(
        "Generator",
        f"openai ({settings.openai_model})" if settings.openai_api_key else "fallback pool only",
    )
    console.print(table)


def print_snapshot(snapshot: Snapshot, console: Optional[Console] = None) -> None:
    """
    Render the current question and, when staged, the next one.

    Degraded answers are flagged in the status column together with the error.
    """
    console = console or Console()
    table = Table(title="Question Rotation", box=box.ROUNDED)
    table.add_column("Slot", style="cyan", no_wrap=True)
    table.add_column("Window", style="blue", no_wrap=True)
    table.add_column("Question", style="bold")
    table.add_column("Status", justify="center")

    current = snapshot.current
    table.add_row("current", _fmt_window(current.window_start), current.text, _status(current.degraded))
    if snapshot.next is not None:
        table.add_row("next", _fmt_window(snapshot.next.window_start), snapshot.next.text, "[dim]staged[/dim]")
    else:
        table.add_row("next", "-", "[dim]not staged[/dim]", "")
    console.print(table)
    if current.error:
        console.print(f"[yellow]Store error:[/yellow] {current.error}")


def print_current(view: CurrentView, console: Optional[Console] = None) -> None:
    print_snapshot(Snapshot(current=view), console=console)


def print_rotation(result: RotationResult, console: Optional[Console] = None) -> None:
    console = console or Console()
    if result.degraded:
        console.print(f"[bold red]Rotation degraded:[/bold red] {result.error}")
    verb = "Rotated to" if result.rotated else "Already current"
    console.print(f"{verb} [{_fmt_window(result.window_start)}]: [bold]{result.text}[/bold]")


def print_preparation(result: PreparationResult, console: Optional[Console] = None) -> None:
    console = console or Console()
    minutes = result.seconds_until_boundary / 60
    line = (
        f"[cyan]{result.status}[/cyan] for window {_fmt_window(result.next_window_start)} "
        f"({minutes:.1f} min until boundary)"
    )
    if result.text:
        line += f": [bold]{result.text}[/bold]"
    if result.error:
        line += f" [red]{result.error}[/red]"
    console.print(line)


def print_history(entries: Sequence[HistoryEntry], console: Optional[Console] = None) -> None:
    """Render past questions, newest first."""
    console = console or Console()

    if not entries:
        console.print("[yellow]No past questions to display.[/yellow]")
        return

    table = Table(
        title="Past Questions",
        box=box.ROUNDED,
        caption="Newest first",
    )
    table.add_column("#", justify="right", style="magenta")
    table.add_column("Window", style="blue", no_wrap=True)
    table.add_column("Question")

    for index, entry in enumerate(entries, start=1):
        table.add_row(str(index), _fmt_window(entry.window_start), entry.text)

    console.print(table)


__all__ = [
    "print_current",
    "print_history",
    "print_preparation",
    "print_rotation",
    "print_settings",
    "print_snapshot",
]
