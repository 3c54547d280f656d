"""Tests for metric extraction and structural flags."""

import pytest

from ecoplan.extraction import (
    COST_TO_MS,
    EXECUTION_TIME_EPSILON_MS,
    TimeSource,
    calculate_waste_ratio,
    classify,
    extract_metrics,
)
from ecoplan.extraction.extractor import is_cartesian_text, parse_node_lines


def single_node(rows: int = 1, actual_rows: int = 1, loops: int = 1, extra: str = "") -> str:
    """Build a one-node plan with optional detail lines."""
    plan = (
        f"Seq Scan on t  (cost=0.00..10.00 rows={rows} width=4) "
        f"(actual time=0.010..5.000 rows={actual_rows} loops={loops})"
    )
    if extra:
        plan += "\n" + extra
    return plan


class TestExecutionTime:
    """Tests for the execution time fallback tiers."""

    def test_explicit_execution_time(self, recursive_cte_plan):
        """Execution Time line wins over everything else."""
        metrics = extract_metrics(recursive_cte_plan)

        assert metrics.execution_time_ms == pytest.approx(9100.45)
        assert metrics.execution_time_source is TimeSource.EXPLICIT
        assert metrics.exec_time_in_explain is True

    def test_legacy_total_runtime(self):
        """Older servers print 'Total runtime'."""
        metrics = extract_metrics(single_node(extra="Total runtime: 12.500 ms"))

        assert metrics.execution_time_ms == pytest.approx(12.5)
        assert metrics.execution_time_source is TimeSource.EXPLICIT

    def test_root_actual_time_fallback(self, cartesian_plan):
        """Without an Execution Time line, the root's actual time upper bound is used."""
        metrics = extract_metrics(cartesian_plan)

        assert metrics.execution_time_ms == pytest.approx(15420.5)
        assert metrics.execution_time_source is TimeSource.ACTUAL_TIME
        assert metrics.exec_time_in_explain is True

    def test_cost_estimate_fallback(self, estimate_only_plan):
        """Plain EXPLAIN output is estimated from the root total cost."""
        metrics = extract_metrics(estimate_only_plan)

        assert metrics.execution_time_ms == pytest.approx(155.0 * COST_TO_MS)
        assert metrics.execution_time_source is TimeSource.COST_ESTIMATE
        assert metrics.exec_time_in_explain is False

    def test_epsilon_for_empty_text(self):
        """Empty text falls through to epsilon."""
        metrics = extract_metrics("")

        assert metrics.execution_time_ms == EXECUTION_TIME_EPSILON_MS
        assert metrics.execution_time_source is TimeSource.EPSILON
        assert metrics.exec_time_in_explain is False

    def test_planning_time(self, recursive_cte_plan):
        """Planning time is captured separately."""
        assert extract_metrics(recursive_cte_plan).planning_time_ms == pytest.approx(0.89)


class TestWasteRatio:
    """Tests for the damped waste ratio."""

    def test_nothing_read(self):
        """No rows means no waste."""
        assert calculate_waste_ratio(0, 0) == 0.0

    def test_nothing_removed(self):
        """Rows returned but none removed."""
        assert calculate_waste_ratio(0, 100_000) == 0.0

    def test_full_strength_at_volume(self):
        """At 10^5 rows read the damping no longer applies."""
        assert calculate_waste_ratio(90_000, 10_000) == pytest.approx(0.9)

    def test_small_volumes_are_damped(self):
        """9 of 10 rows removed is not alarming."""
        assert calculate_waste_ratio(9, 1) == pytest.approx(0.9 * 0.2)

    def test_negative_inputs_are_clamped(self):
        """Garbage input still stays in [0, 1]."""
        assert calculate_waste_ratio(-5, -10) == 0.0
        assert 0.0 <= calculate_waste_ratio(10**12, 0) <= 1.0


class TestExtractMetrics:
    """Tests for extract_metrics on representative plans."""

    def test_needle_in_haystack(self, high_waste_plan):
        """A filter that keeps one row out of five million."""
        metrics = extract_metrics(high_waste_plan)

        assert metrics.rows_removed_by_filter == 4_999_999
        assert metrics.actual_rows == 1
        assert metrics.waste_ratio == pytest.approx(1.0, abs=1e-5)

    def test_cartesian_plan(self, cartesian_plan):
        """Loops come from the worst node, not the sum."""
        metrics = extract_metrics(cartesian_plan)

        assert metrics.is_cartesian is True
        assert metrics.max_loops == 1_000_000
        assert metrics.rows_per_iteration == 100
        assert metrics.seq_scan_in_loop is False
        assert metrics.rows_removed_by_join_filter == 45_000_000
        assert metrics.node_count == 4
        assert metrics.max_depth == 2

    def test_recursive_cte(self, recursive_cte_plan):
        """Recursion depth is the iteration count under Recursive Union."""
        metrics = extract_metrics(recursive_cte_plan)

        assert metrics.recursive_depth == 10
        assert metrics.rows_per_iteration == 99_999
        assert metrics.max_loops == 10
        assert metrics.seq_scan_in_loop is True
        assert metrics.hash_batches == 1
        assert metrics.node_count == 7

    def test_explicit_recursive_depth(self):
        """An explicit depth annotation takes precedence."""
        metrics = extract_metrics(single_node(extra="recursive depth: 2500"))
        assert metrics.recursive_depth == 2500

    def test_hash_batches(self, memory_killer_plan):
        """Batches > 1 without Disk is not a disk sort."""
        metrics = extract_metrics(memory_killer_plan)

        assert metrics.hash_batches == 256
        assert metrics.has_disk_sort is False
        assert metrics.temp_files_mb == 0.0

    def test_external_sort(self, external_sort_plan):
        """Disk: NkB is converted to MB."""
        metrics = extract_metrics(external_sort_plan)

        assert metrics.has_disk_sort is True
        assert metrics.temp_files_mb == pytest.approx(54240 / 1024)

    def test_temp_written_pages(self):
        """temp written= pages count as 8kB each."""
        metrics = extract_metrics(
            single_node(extra="  Buffers: shared hit=10, temp read=5 written=256")
        )
        assert metrics.temp_files_mb == pytest.approx(2.0)

    def test_buffers(self):
        """Shared hit and read are summed."""
        metrics = extract_metrics(single_node(extra="  Buffers: shared hit=120 read=30"))
        assert metrics.total_buffers_read == 150

    def test_buffers_exclude_temp_pages(self):
        """Temp reads belong to the spill metrics, not the shared/local page count."""
        metrics = extract_metrics(
            single_node(
                extra="  Buffers: shared hit=10 read=5 dirtied=2, local hit=3, temp read=700 written=256"
            )
        )
        assert metrics.total_buffers_read == 18
        assert metrics.temp_files_mb == pytest.approx(2.0)

    def test_heap_fetches(self):
        """Heap fetches are summed over nodes."""
        metrics = extract_metrics(
            single_node(extra="  Heap Fetches: 1200\n  Heap Fetches: 300")
        )
        assert metrics.heap_fetches == 1500

    def test_jit_and_workers(self, jit_parallel_plan):
        """JIT total and worker counts."""
        metrics = extract_metrics(jit_parallel_plan)

        assert metrics.jit_time_ms == pytest.approx(556.254)
        assert metrics.workers_planned == 4
        assert metrics.workers_launched == 4

    def test_parallel_scan_is_not_a_loop(self, parallel_plan):
        """loops=3 on a Parallel Seq Scan counts workers, not re-scans."""
        metrics = extract_metrics(parallel_plan)

        assert metrics.max_loops == 3
        assert metrics.seq_scan_in_loop is False

    def test_garbage_text(self):
        """Any string produces a complete record."""
        metrics = extract_metrics("definitely not a query plan )( cost=abc")

        assert metrics.node_count == 0
        assert metrics.execution_time_source is TimeSource.EPSILON
        assert metrics.waste_ratio == 0.0
        assert metrics.is_cartesian is False


class TestNodeLines:
    """Tests for plan node line parsing."""

    def test_levels_follow_indentation(self, cartesian_plan):
        """Children are one level deeper per six columns."""
        levels = [node.level for node in parse_node_lines(cartesian_plan)]
        assert levels == [0, 1, 1, 2]

    def test_plain_explain_has_no_actuals(self, estimate_only_plan):
        """Cost-only lines still parse."""
        (node,) = parse_node_lines(estimate_only_plan)

        assert node.total_cost == pytest.approx(155.0)
        assert node.plan_rows == 10_000
        assert node.actual_rows is None
        assert node.loops is None


class TestCartesianText:
    """Tests for the cartesian product pattern."""

    def test_cross_join(self):
        assert is_cartesian_text("Cross Join on a, b") is True

    def test_nested_loop_with_index_cond_is_not_cartesian(self):
        assert is_cartesian_text("Nested Loop\n  ->  Index Scan\n    Index Cond: (a = b)") is False

    def test_hash_join_is_not_cartesian(self, memory_killer_plan):
        assert is_cartesian_text(memory_killer_plan) is False


class TestClassify:
    """Tests for structural flag classification."""

    def test_cartesian_flags(self, cartesian_plan):
        """Nested loop without condition, materialized, filtered after the join."""
        flags = classify(cartesian_plan, extract_metrics(cartesian_plan))

        assert flags.has_nested_loop
        assert flags.has_cartesian_product
        assert flags.has_join
        assert flags.has_forced_materialization
        assert flags.has_late_filtering
        assert not flags.has_recursive_cte

    def test_recursive_flags(self, recursive_cte_plan):
        """Recursive CTE with a seq scan repeated per iteration."""
        flags = classify(recursive_cte_plan, extract_metrics(recursive_cte_plan))

        assert flags.has_recursive_cte
        assert flags.has_seq_scan_in_loop
        assert flags.has_join
        assert not flags.has_cartesian_product

    def test_index_scan(self, correlated_subplan_plan):
        flags = classify(correlated_subplan_plan, extract_metrics(correlated_subplan_plan))

        assert flags.has_index_scan
        assert not flags.has_nested_loop

    def test_external_sort(self, external_sort_plan):
        flags = classify(external_sort_plan, extract_metrics(external_sort_plan))
        assert flags.has_external_sort_or_hash

    def test_worker_starvation(self):
        """Planned workers with none launched."""
        plan = single_node(extra="  Workers Planned: 2\n  Workers Launched: 0")
        flags = classify(plan, extract_metrics(plan))
        assert flags.has_worker_starvation

    def test_launched_workers_are_not_starved(self, parallel_plan):
        flags = classify(parallel_plan, extract_metrics(parallel_plan))
        assert not flags.has_worker_starvation

    def test_row_estimate_drift(self):
        """Estimated 10 rows, got 5000."""
        plan = single_node(rows=10, actual_rows=5000)
        flags = classify(plan, extract_metrics(plan))
        assert flags.has_row_estimate_drift

    def test_clean_plan(self, clean_plan):
        """An index lookup sets only the index flag."""
        flags = classify(clean_plan, extract_metrics(clean_plan))
        assert flags.active() == ["has_index_scan"]
