"""
Dispatch metrics.

Использование:
    from shellhost.monitoring.metrics import MetricsCollector

    collector = MetricsCollector(active_sessions=lambda: len(registry))
    collector.record(12.5)
    snapshot = collector.snapshot()
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Callable, Optional

from rich.console import Console
from rich.table import Table

console = Console()


@dataclass
class MetricsSnapshot:
    """Срез метрик на момент запроса."""
    commands_executed: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    active_sessions: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class MetricsCollector:
    """
    Aggregates counts and timings over every dispatch.

    The active session count is not stored: it is read from the provider
    each time a snapshot is taken.
    """

    def __init__(self, active_sessions: Optional[Callable[[], int]] = None):
        self._active_sessions = active_sessions
        self._commands_executed = 0
        self._total_execution_time = 0.0

    def record(self, execution_time_ms: float) -> None:
        self._commands_executed += 1
        self._total_execution_time += max(0.0, float(execution_time_ms))

    def snapshot(self) -> MetricsSnapshot:
        executed = self._commands_executed
        return MetricsSnapshot(
            commands_executed=executed,
            total_execution_time=self._total_execution_time,
            average_execution_time=self._total_execution_time / executed if executed else 0.0,
            active_sessions=self._active_sessions() if self._active_sessions else 0,
        )


def print_metrics_summary(snapshot: MetricsSnapshot, out: Optional[Console] = None) -> None:
    """Вывести сводку метрик."""
    out = out or console

    table = Table(title="Engine metrics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Commands executed", str(snapshot.commands_executed))
    table.add_row("Total execution time", f"{snapshot.total_execution_time:.1f} ms")
    table.add_row("Average execution time", f"{snapshot.average_execution_time:.1f} ms")
    table.add_row("Active sessions", str(snapshot.active_sessions))

    out.print(table)
