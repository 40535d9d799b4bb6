"""
Rich-based terminal dashboard for measurement results.

All formatting helpers live in ``engine.stats`` -- this module only does
presentation via the ``rich`` library.
"""
from __future__ import annotations

import statistics
from typing import Optional, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from engine.grading import grade_with_color
from engine.machine import ProgressUpdate
from engine.phases import MeasurementPhase
from engine.results import MeasurementResult
from engine.stats import PingStats, format_latency, format_speed

console = Console()


# ---------------------------------------------------------------------------
# Histogram helper
# ---------------------------------------------------------------------------

_BARS = "▁▂▃▄▅▆▇█"


def create_histogram(values: Sequence[float], height: int = 5) -> str:
    """Return a single-line Unicode bar-chart."""
    if not values:
        return "No data"

    lo, hi = min(values), max(values)
    span = hi - lo if hi > lo else 1.0
    norm = [(v - lo) / span * height for v in values]
    return "".join(_BARS[min(int(n * (len(_BARS) - 1) / height), len(_BARS) - 1)] for n in norm)


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------

def print_header(target: str = "") -> None:
    console.print()
    subtitle = f"[dim]Server: {target}[/dim]" if target else "[dim]Adaptive network speed measurement[/dim]"
    console.print(
        Panel.fit(
            "[bold cyan]Speedtest Adaptive[/bold cyan]\n" + subtitle,
            border_style="cyan",
        )
    )
    console.print()


def print_ping_details(samples: Sequence[float], jitter_ms: float) -> None:
    """Print latency statistics and a histogram; does nothing without samples."""
    if not samples:
        return

    stats = PingStats(samples=list(samples))
    stats.calculate()

    table = Table(title="Latency Details", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Min", format_latency(stats.min))
    table.add_row("Max", format_latency(stats.max))
    table.add_row("Trimmed mean", format_latency(stats.average))
    table.add_row("Median", format_latency(statistics.median(samples)))
    table.add_row("Jitter", f"{jitter_ms:.2f} ms")
    table.add_row("Samples", str(len(samples)))
    console.print(table)

    console.print(
        Panel(
            f"[cyan]{create_histogram(samples)}[/cyan]\n"
            f"[dim]Min: {stats.min:.1f} ms  Max: {stats.max:.1f} ms[/dim]",
            title="Ping Histogram",
        )
    )


def _measurement_table(result: MeasurementResult) -> Optional[Table]:
    phases = sorted(result.effective_durations)
    if not phases:
        return None

    table = Table(title="Measurement Windows", box=box.SIMPLE)
    table.add_column("Phase", style="bold")
    table.add_column("Grace", justify="right")
    table.add_column("Measured for", justify="right")
    table.add_column("Budget", justify="right")
    table.add_column("Data", justify="right")
    for name in phases:
        table.add_row(
            name.capitalize(),
            f"{result.grace_period_seconds.get(name, 0.0):.1f} s",
            f"{result.measured_seconds.get(name, 0.0):.1f} s",
            f"{result.effective_durations[name]:.1f} s",
            f"{result.bytes_transferred.get(name, 0) / 1_000_000:.1f} MB",
        )
    return table


def print_final_results(result: MeasurementResult, target: str = "") -> None:
    lines = []
    if target:
        lines.append(f"[bold cyan]Server:[/bold cyan] {target}\n")
    lines.append(
        f"[bold white]   Ping:[/bold white]  [bold yellow]{result.ping_ms:.1f} ms[/bold yellow]  "
        f"[dim](jitter: {result.jitter_ms:.2f} ms)[/dim]"
    )
    lines.append(f"[bold white]   Download:[/bold white]  [bold green]{format_speed(result.download_mbps)}[/bold green]")
    lines.append(f"[bold white]   Upload:[/bold white]  [bold blue]{format_speed(result.upload_mbps)}[/bold blue]")

    if result.bufferbloat:
        grade, color = grade_with_color(result.bufferbloat.latency_increase_ms)
        lines.append(
            f"[bold white]   Bufferbloat:[/bold white]  [bold {color}]{grade}[/bold {color}]  "
            f"[dim](+{result.bufferbloat.latency_increase_ms:.1f} ms under load)[/dim]"
        )
    if result.packet_loss:
        loss = result.packet_loss
        color = "green" if loss.percentage == 0 else "yellow" if loss.percentage < 2 else "red"
        lines.append(
            f"[bold white]   Packet Loss:[/bold white]  [{color}]{loss.percentage:.1f}%[/{color}]  "
            f"[dim]({loss.received}/{loss.sent} received)[/dim]"
        )

    overhead = result.overhead
    lines.append(
        f"\n[dim]Overhead: x{overhead.factor:.3f} (+{overhead.percentage:.1f}%, {overhead.mode})  "
        f"Total time: {result.test_duration_seconds:.1f} s[/dim]"
    )

    console.print()
    console.print(Panel.fit("\n".join(lines), title="[bold]Results[/bold]", border_style="cyan"))

    table = _measurement_table(result)
    if table is not None:
        console.print(table)

    for anomaly in result.anomalies:
        console.print(f"[yellow]! {anomaly.phase.value}: {anomaly.message}[/yellow]")
    console.print()


# ---------------------------------------------------------------------------
# Progress display
# ---------------------------------------------------------------------------

_LABELS = {
    MeasurementPhase.PING: "Ping",
    MeasurementPhase.DOWNLOAD: "Downloading",
    MeasurementPhase.UPLOAD: "Uploading",
    MeasurementPhase.BUFFERBLOAT: "Loaded latency",
    MeasurementPhase.PACKET_LOSS: "Packet loss",
}


class ProgressDisplay:
    """Drives a ``rich`` progress bar from engine progress updates, one task per phase."""

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.description}"),
            BarColumn(bar_width=40),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TextColumn("[bold cyan]{task.fields[speed]}[/bold cyan]"),
            TimeElapsedColumn(),
            console=console,
        )
        self._tasks: dict = {}
        self._last_speed = 0.0
        self._last_prog = 0.0
        self._started = False

    def start(self) -> None:
        self.progress.start()
        self._started = True

    def __call__(self, update: ProgressUpdate) -> None:
        self.update(update)

    def update(self, update: ProgressUpdate) -> None:
        if not self._started:
            return
        label = _LABELS.get(update.phase)
        if label is None:
            return

        task_id = self._tasks.get(update.phase)
        if task_id is None:
            self._complete_others()
            task_id = self.progress.add_task(label, total=100, speed="")
            self._tasks[update.phase] = task_id
            self._last_speed = self._last_prog = 0.0

        # Debounce: only update when values change noticeably
        if (
            abs(update.progress_percent - self._last_prog) < 1.0
            and abs(update.instantaneous_speed_mbps - self._last_speed) < 1.0
        ):
            return
        speed = update.instantaneous_speed_mbps
        speed_str = format_speed(speed) if speed > 0 else "..."
        self.progress.update(task_id, completed=update.progress_percent, speed=speed_str)
        self._last_prog = update.progress_percent
        self._last_speed = speed

    def _complete_others(self) -> None:
        for task_id in self._tasks.values():
            self.progress.update(task_id, completed=100)

    def stop(self) -> None:
        if self._started:
            self._complete_others()
            self.progress.stop()
            self._started = False
