"""
Monitoring module - dispatch metrics.
"""

from .metrics import (
    MetricsCollector,
    MetricsSnapshot,
    print_metrics_summary,
)

__all__ = [
    "MetricsCollector",
    "MetricsSnapshot",
    "print_metrics_summary",
]
