"""Report building from a MetricsSnapshot.

Rendering is pure: it reads a snapshot and returns text lines or a plain dict.
The profiler decides where the lines go (loguru by default).
"""

from collections.abc import Mapping
from typing import Any

from beartype import beartype

from blkarbs_callprof._metrics import CallMetrics, MetricsSnapshot

NAME_WIDTH = 40
WIDTH = 90
WIDTH_WITH_MEMORY = 112


@beartype
def format_time(nanos: int | float) -> str:
    """Auto-scale a nanosecond duration to s, ms, μs or ns."""
    if nanos >= 1e9:
        return f"{nanos / 1e9:.2f}s"
    if nanos >= 1e6:
        return f"{nanos / 1e6:.2f}ms"
    if nanos >= 1e3:
        return f"{nanos / 1e3:.2f}μs"
    return f"{nanos:.2f}ns"


@beartype
def relative_percentage(primary_ns: int | float, call_ns: int | float) -> float:
    """Share of ``call_ns`` in ``primary_ns`` (0 when either side is zero)."""
    if primary_ns > 0 and call_ns > 0:
        return call_ns / primary_ns * 100.0
    return 0.0


def _labels(snapshot: MetricsSnapshot) -> dict[int, str]:
    """Display label per identity; duplicate names get the identity appended."""
    labels: dict[int, str] = {}
    seen: set[str] = set()
    for identity, metrics in snapshot.callables.items():
        label = metrics.name
        if label in seen:
            label = f"{label} [{identity:#018x}]"
        seen.add(label)
        labels[identity] = label
    return labels


def _row(
    label: str,
    metrics: CallMetrics,
    percentage: float,
    has_memory: bool,
) -> str:
    line = (
        f"{label[:NAME_WIDTH]:<{NAME_WIDTH}} "
        f"{format_time(metrics.time_ns):>12} "
        f"{percentage:>8.2f}% "
        f"{metrics.ncalls:>10} "
        f"{format_time(metrics.per_call_ns):>12}"
    )
    if has_memory:
        mem_delta = metrics.memory_delta
        peak_mem = metrics.peak_memory
        mem_delta_str = f"{mem_delta:>9.2f}G" if mem_delta != 0.0 else f"{'-':>10}"
        peak_mem_str = f"{peak_mem:>9.2f}G" if peak_mem != 0.0 else f"{'-':>10}"
        line += f" {mem_delta_str:>10} {peak_mem_str:>10}"
    return line


@beartype
def render_report(snapshot: MetricsSnapshot, title: str = "PROFILING REPORT") -> list[str]:
    """Render one section per primary call plus a grand total.

    Each section lists every subcall (except the primary's self-entry) with its
    time, share of the primary's time, call count and per-call average, then
    the primary's own totals.
    """
    labels = _labels(snapshot)
    has_memory = any(
        snapshot.primary_metrics(pcall).peak_memory != 0.0
        or snapshot.primary_metrics(pcall).memory_delta != 0.0
        for pcall in snapshot.primaries
    )
    width = WIDTH_WITH_MEMORY if has_memory else WIDTH

    header = (
        f"{'Call':<{NAME_WIDTH}} {'Time':>12} {'T%':>9} {'NCalls':>10} {'Per-Call':>12}"
    )
    if has_memory:
        header += f" {'Mem Δ':>10} {'Peak':>10}"

    lines = ["", "=" * width, f"{title:^{width}}", "=" * width]
    if not snapshot.primaries:
        lines.append("No primary calls recorded")

    for pcall in snapshot.primaries:
        pcall_metrics = snapshot.primary_metrics(pcall)
        lines.append(f"█ PROFILE: {labels.get(pcall, pcall_metrics.name)} █")
        lines.append(header)
        lines.append("-" * width)
        for subcall in snapshot.subcalls(pcall):
            prc = relative_percentage(pcall_metrics.time_ns, subcall.time_ns)
            lines.append(
                _row(labels.get(subcall.identity, subcall.name), subcall, prc, has_memory)
            )
        lines.append("-" * width)
        own_prc = 100.0 if pcall_metrics.time_ns > 0 else 0.0
        lines.append(_row("Profile Time", pcall_metrics, own_prc, has_memory))
        lines.append("")

    lines.append("=" * width)
    lines.append(f"{'TOTAL':^{NAME_WIDTH}} {format_time(snapshot.total_time_ns):>12}")
    lines.append("=" * width)
    lines.append("")
    return lines


def _metrics_dict(metrics: CallMetrics) -> dict[str, Any]:
    return {
        "total_time": metrics.time_ns / 1e9,
        "ncalls": metrics.ncalls,
        "per_call": metrics.per_call_ns / 1e9,
    }


@beartype
def snapshot_to_results(snapshot: MetricsSnapshot) -> dict[str, dict[str, Any]]:
    """Aggregate a snapshot into plain, JSON-serializable dicts (times in seconds).

    Returns:
        Mapping of primary label to its totals, optional memory_delta and
        peak_memory, and a "subcalls" mapping of subcall label to total_time,
        ncalls, per_call and percentage.
    """
    labels = _labels(snapshot)
    results: dict[str, dict[str, Any]] = {}
    for pcall in snapshot.primaries:
        pcall_metrics = snapshot.primary_metrics(pcall)
        result = _metrics_dict(pcall_metrics)
        if pcall_metrics.memory_delta != 0.0:
            result["memory_delta"] = pcall_metrics.memory_delta
        if pcall_metrics.peak_memory != 0.0:
            result["peak_memory"] = pcall_metrics.peak_memory

        subcalls: dict[str, Mapping[str, Any]] = {}
        for subcall in snapshot.subcalls(pcall):
            entry = _metrics_dict(subcall)
            entry["percentage"] = relative_percentage(pcall_metrics.time_ns, subcall.time_ns)
            subcalls[labels.get(subcall.identity, subcall.name)] = entry
        result["subcalls"] = subcalls

        results[labels.get(pcall, pcall_metrics.name)] = result
    return results
