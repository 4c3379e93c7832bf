"""blkarbs-callprof: Call-hierarchy execution-time profiling.

Provides:
- TimeProfiler: Wraps callables and attributes nested instrumented calls to
  the outermost ("primary") call in flight
- MetricsStore / MetricsSnapshot / CallMetrics: Thread-safe metric tables and
  their read-only views
- callable_identity: Stable aggregation key from a callable's static shape
- render_report / format_time: Report building from a snapshot

Usage:
    from blkarbs_callprof import TimeProfiler

    profiler = TimeProfiler(realtime=False)
    search = profiler.wrap(binary_search)
    for value in values:
        search(values, value)

    profiler.print_report()
"""

from blkarbs_callprof._core import CallRole, TimeProfiler
from blkarbs_callprof._identity import callable_identity, callable_name
from blkarbs_callprof._metrics import CallMetrics, MetricsSnapshot, MetricsStore
from blkarbs_callprof._report import (
    format_time,
    relative_percentage,
    render_report,
    snapshot_to_results,
)

__all__ = [
    "CallMetrics",
    "CallRole",
    "MetricsSnapshot",
    "MetricsStore",
    "TimeProfiler",
    "callable_identity",
    "callable_name",
    "format_time",
    "relative_percentage",
    "render_report",
    "snapshot_to_results",
]

__version__ = "0.1.0"
