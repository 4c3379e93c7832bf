"""Tests for report rendering and result aggregation."""

import pytest

from blkarbs_callprof import (
    MetricsStore,
    format_time,
    relative_percentage,
    render_report,
    snapshot_to_results,
)

OUTER = 0x10
INNER = 0x20
OTHER = 0x30


def build_store() -> MetricsStore:
    """outer (1 call, 2μs) with inner as subcall (2 calls, 1μs total)."""
    store = MetricsStore()
    store.register(OUTER, name="outer", module="tests")
    store.register(INNER, name="inner", module="tests")
    store.ensure_primary(OUTER)
    store.enter_as_subcall(OUTER, INNER)
    for _ in range(2):
        store.record(INNER, 500)
        store.record_subcall(OUTER, INNER, 500)
    store.record(OUTER, 2_000)
    store.record_subcall(OUTER, OUTER, 2_000)
    return store


# ---------------------------------------------------------------------------
# format_time / relative_percentage
# ---------------------------------------------------------------------------

class TestFormatTime:
    @pytest.mark.parametrize(
        "nanos,expected",
        [
            (1_500_000_000, "1.50s"),
            (2_500_000, "2.50ms"),
            (1_500, "1.50μs"),
            (12, "12.00ns"),
            (0, "0.00ns"),
        ],
        ids=["seconds", "milliseconds", "microseconds", "nanoseconds", "zero"],
    )
    def test_auto_scales(self, nanos, expected):
        assert format_time(nanos) == expected


class TestRelativePercentage:
    def test_share_of_primary(self):
        assert relative_percentage(200, 50) == pytest.approx(25.0)

    @pytest.mark.parametrize("primary,call", [(0, 50), (50, 0), (0, 0)])
    def test_zero_on_either_side_is_zero(self, primary, call):
        assert relative_percentage(primary, call) == 0.0


# ---------------------------------------------------------------------------
# render_report
# ---------------------------------------------------------------------------

class TestRenderReport:
    def test_sections_and_rows(self):
        lines = render_report(build_store().snapshot())

        assert "█ PROFILE: outer █" in lines
        [inner_row] = [line for line in lines if line.startswith("inner")]
        assert "1.00μs" in inner_row
        assert "50.00%" in inner_row
        assert "500.00ns" in inner_row
        assert inner_row.split()[3] == "2"

    def test_self_entry_not_listed_as_subcall(self):
        lines = render_report(build_store().snapshot())
        assert not [line for line in lines if line.startswith("outer")]
        [summary] = [line for line in lines if line.startswith("Profile Time")]
        assert "2.00μs" in summary
        assert "100.00%" in summary

    def test_grand_total(self):
        store = build_store()
        store.register(OTHER, name="other", module="tests")
        store.ensure_primary(OTHER)
        store.record(OTHER, 3_000)
        store.record_subcall(OTHER, OTHER, 3_000)

        lines = render_report(store.snapshot())
        [total] = [line for line in lines if line.strip().startswith("TOTAL")]
        assert "5.00μs" in total

    def test_empty_snapshot(self):
        lines = render_report(MetricsStore().snapshot(), "Empty")
        assert "No primary calls recorded" in lines
        [total] = [line for line in lines if line.strip().startswith("TOTAL")]
        assert "0.00ns" in total

    def test_primary_without_time_reports_zero_share(self):
        store = MetricsStore()
        store.register(OUTER, name="outer", module="tests")
        store.register(INNER, name="inner", module="tests")
        store.ensure_primary(OUTER)
        store.enter_as_subcall(OUTER, INNER)
        store.record_subcall(OUTER, INNER, 100)

        lines = render_report(store.snapshot())
        [inner_row] = [line for line in lines if line.startswith("inner")]
        assert "0.00%" in inner_row

    def test_memory_columns_only_when_tracked(self):
        store = build_store()
        assert not any("Mem Δ" in line for line in render_report(store.snapshot()))

        store.record_memory(OUTER, 0.25, 1.5)
        lines = render_report(store.snapshot())
        assert any("Mem Δ" in line for line in lines)
        [summary] = [line for line in lines if line.startswith("Profile Time")]
        assert "1.50G" in summary

    def test_duplicate_names_are_disambiguated(self):
        store = MetricsStore()
        store.register(OUTER, name="<lambda>", module="tests")
        store.register(INNER, name="<lambda>", module="tests")
        store.ensure_primary(OUTER)
        store.ensure_primary(INNER)

        headers = [line for line in render_report(store.snapshot()) if "PROFILE:" in line]
        assert len(set(headers)) == 2


# ---------------------------------------------------------------------------
# snapshot_to_results
# ---------------------------------------------------------------------------

class TestSnapshotToResults:
    def test_nested_results(self):
        results = snapshot_to_results(build_store().snapshot())

        outer = results["outer"]
        assert outer["ncalls"] == 1
        assert outer["total_time"] == pytest.approx(2e-6)
        assert outer["per_call"] == pytest.approx(2e-6)
        assert "memory_delta" not in outer

        inner = outer["subcalls"]["inner"]
        assert inner["ncalls"] == 2
        assert inner["total_time"] == pytest.approx(1e-6)
        assert inner["per_call"] == pytest.approx(5e-7)
        assert inner["percentage"] == pytest.approx(50.0)

    def test_self_entry_excluded(self):
        results = snapshot_to_results(build_store().snapshot())
        assert "outer" not in results["outer"]["subcalls"]

    def test_memory_included_when_recorded(self):
        store = build_store()
        store.record_memory(OUTER, -0.1, 2.0)
        outer = snapshot_to_results(store.snapshot())["outer"]
        assert outer["memory_delta"] == pytest.approx(-0.1)
        assert outer["peak_memory"] == 2.0
