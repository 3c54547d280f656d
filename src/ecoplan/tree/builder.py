"""
Impact tree construction.

Builds the fixed three-branch tree and populates leaf values from metrics
and flags. Branch values are left at 0; aggregation is the resolver's job.

    query_impact
    ├── perf          cpu / mem / io
    ├── scalability   complexity / recursive_expansion / waste / parallel
    └── eco           energy / io_energy

Two normalization modes are used for leaves:
- Logarithmic saturation for exponentially growing metrics (time, batches,
  temp volume, loops, buffers)
- Linear/conditional pass-through for ratios and flags (waste ratio,
  cartesian, worker starvation), gated by structural context
"""

from __future__ import annotations

import logging
from typing import Mapping

from ecoplan.economics import io_energy_units
from ecoplan.extraction.models import RawMetrics, StructuralFlags
from ecoplan.tree.node import ImpactNode
from ecoplan.tree.normalize import clamp, log_normalize

logger = logging.getLogger(__name__)

ROOT_ID = "query_impact"

DEFAULT_BRANCH_WEIGHTS: Mapping[str, float] = {
    "perf": 0.50,
    "scalability": 0.35,
    "eco": 0.15,
}

# Critical thresholds at which a log-normalized leaf saturates
CPU_CRITICAL_MS = 10_000
HASH_BATCHES_CRITICAL = 256
TEMP_MB_CRITICAL = 1024
BUFFERS_CRITICAL = 1_000_000
HEAP_FETCHES_CRITICAL = 100_000
LOOPS_CRITICAL = 1_000_000
RECURSIVE_ROWS_CRITICAL = 1_000_000
ENERGY_TIME_CRITICAL_MS = 60_000
IO_ENERGY_CRITICAL = 1_000_000

# Floors applied when a structural pattern is present
SEQ_SCAN_IN_LOOP_COMPLEXITY = 0.6
ROW_DRIFT_COMPLEXITY = 0.4
SEQ_SCAN_IN_LOOP_RECURSION = 0.7

# Waste on fast, join-free queries is mostly noise
FAST_QUERY_MS = 100
FAST_QUERY_WASTE_DISCOUNT = 0.1

CRITICAL_LEAF_VALUE = 0.9


def _leaf(
    node_id: str,
    label: str,
    value: float,
    weight: float,
    description: str,
) -> ImpactNode:
    value = clamp(value)
    return ImpactNode(
        id=node_id,
        label=label,
        value=value,
        weight=weight,
        is_critical=value >= CRITICAL_LEAF_VALUE,
        description=description,
    )


class ImpactTreeBuilder:
    """
    Constructs a fresh impact tree per analysis.

    Example:
        builder = ImpactTreeBuilder()
        tree = builder.build(metrics, flags)
        TreeResolver().resolve(tree)
    """

    def __init__(self, branch_weights: Mapping[str, float] | None = None) -> None:
        self.branch_weights = dict(DEFAULT_BRANCH_WEIGHTS)
        if branch_weights:
            self.branch_weights.update(branch_weights)

    def build(self, metrics: RawMetrics, flags: StructuralFlags) -> ImpactNode:
        """
        Build the unresolved tree.

        Args:
            metrics: Extracted metrics
            flags: Structural flags for the same plan

        Returns:
            Root node with populated leaves and zero-valued branches
        """
        root = ImpactNode(
            id=ROOT_ID,
            label="Query Impact",
            weight=1.0,
            children=[
                self._performance(metrics),
                self._scalability(metrics, flags),
                self._eco(metrics),
            ],
        )
        logger.debug(
            "Built impact tree leaves: %s",
            {leaf.id: round(leaf.value, 3) for leaf in root.leaves()},
        )
        return root

    def _performance(self, metrics: RawMetrics) -> ImpactNode:
        cpu = log_normalize(metrics.execution_time_ms + metrics.jit_time_ms, CPU_CRITICAL_MS)

        if metrics.has_disk_sort:
            mem = 1.0
        else:
            mem = max(
                log_normalize(metrics.hash_batches, HASH_BATCHES_CRITICAL),
                log_normalize(metrics.temp_files_mb, TEMP_MB_CRITICAL),
            )

        io = max(
            log_normalize(metrics.total_buffers_read, BUFFERS_CRITICAL),
            log_normalize(metrics.heap_fetches, HEAP_FETCHES_CRITICAL),
            log_normalize(metrics.temp_files_mb, TEMP_MB_CRITICAL),
        )

        return ImpactNode(
            id="perf",
            label="Performance",
            weight=self.branch_weights["perf"],
            children=[
                _leaf("cpu", "CPU", cpu, 0.4, "Execution and JIT time"),
                _leaf("mem", "Memory", mem, 0.3, "Hash batches and disk spill"),
                _leaf("io", "I/O", io, 0.3, "Buffers, heap fetches and temp files"),
            ],
        )

    def _scalability(self, metrics: RawMetrics, flags: StructuralFlags) -> ImpactNode:
        if flags.has_cartesian_product:
            complexity = 1.0
        else:
            complexity = max(
                log_normalize(metrics.max_loops, LOOPS_CRITICAL),
                SEQ_SCAN_IN_LOOP_COMPLEXITY if flags.has_seq_scan_in_loop else 0.0,
                ROW_DRIFT_COMPLEXITY if flags.has_row_estimate_drift else 0.0,
            )

        recursion = 0.0
        if flags.has_recursive_cte:
            expansion = max(1, metrics.recursive_depth) * metrics.rows_per_iteration
            recursion = max(
                log_normalize(expansion, RECURSIVE_ROWS_CRITICAL),
                SEQ_SCAN_IN_LOOP_RECURSION if flags.has_seq_scan_in_loop else 0.0,
            )

        # Same ratio, different meaning: discarded rows only hurt at volume or in joins
        waste = metrics.waste_ratio
        if (
            metrics.execution_time_ms < FAST_QUERY_MS
            and not flags.has_join
            and not flags.has_nested_loop
        ):
            waste *= FAST_QUERY_WASTE_DISCOUNT

        parallel = 0.0
        if flags.has_worker_starvation:
            parallel = 1.0
        elif metrics.workers_planned > 0 and metrics.workers_launched < metrics.workers_planned:
            parallel = (
                (metrics.workers_planned - metrics.workers_launched) / metrics.workers_planned
            )

        return ImpactNode(
            id="scalability",
            label="Scalability",
            weight=self.branch_weights["scalability"],
            children=[
                _leaf("complexity", "Complexity", complexity, 0.4,
                      "Loop depth, cartesian joins and estimate drift"),
                _leaf("recursive_expansion", "Recursive Expansion", recursion, 0.3,
                      "Rows generated by recursive CTE iterations"),
                _leaf("waste", "Data Waste", waste, 0.2,
                      "Rows read and discarded by filters"),
                _leaf("parallel", "Parallelism", parallel, 0.1,
                      "Planned workers that never launched"),
            ],
        )

    def _eco(self, metrics: RawMetrics) -> ImpactNode:
        return ImpactNode(
            id="eco",
            label="Eco",
            weight=self.branch_weights["eco"],
            children=[
                _leaf("energy", "Energy", log_normalize(metrics.execution_time_ms,
                                                        ENERGY_TIME_CRITICAL_MS),
                      0.6, "Compute energy drawn by execution time"),
                _leaf("io_energy", "I/O Energy", log_normalize(io_energy_units(metrics),
                                                               IO_ENERGY_CRITICAL),
                      0.4, "Energy-weighted shared and temp I/O"),
            ],
        )
