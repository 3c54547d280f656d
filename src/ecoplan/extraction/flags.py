"""
Structural flag classification.

Pure function from (plan text, RawMetrics) to StructuralFlags. Each flag is
an independent substring/regex test or a comparison on extracted metrics;
no flag depends on another.
"""

from __future__ import annotations

import re

from ecoplan.extraction.models import RawMetrics, StructuralFlags

# Planner estimate considered drifted beyond this actual/planned gap
ROW_ESTIMATE_DRIFT_RATIO = 10.0

HEAVY_HEAP_FETCHES = 1000

_JOIN_RE = re.compile(r"\bJoin\b|Hash Cond:|Merge Cond:|Nested Loop")
_MATERIALIZE_RE = re.compile(r"(?:->\s*|^\s*)Materialize\b|\bMATERIALIZED\b", re.MULTILINE)
_RECURSIVE_RE = re.compile(r"Recursive Union|WorkTable Scan")
_INDEX_SCAN_RE = re.compile(r"Index (?:Only )?Scan")


def has_row_estimate_drift(metrics: RawMetrics) -> bool:
    """|actual - planned| / planned > 10, only when the planner estimated rows."""
    if metrics.planned_rows <= 0:
        return False
    drift = abs(metrics.actual_rows - metrics.planned_rows) / metrics.planned_rows
    return drift > ROW_ESTIMATE_DRIFT_RATIO


def classify(text: str, metrics: RawMetrics) -> StructuralFlags:
    """
    Derive architecture flags from plan text and extracted metrics.

    Args:
        text: The same plan text metrics were extracted from
        metrics: Output of extract_metrics(text)

    Returns:
        Frozen StructuralFlags
    """
    text = text or ""
    has_join = bool(_JOIN_RE.search(text))

    return StructuralFlags(
        has_nested_loop="Nested Loop" in text,
        has_cartesian_product=metrics.is_cartesian,
        has_seq_scan_in_loop=metrics.seq_scan_in_loop,
        has_join=has_join,
        has_recursive_cte=bool(_RECURSIVE_RE.search(text)) or metrics.recursive_depth > 0,
        has_forced_materialization=bool(_MATERIALIZE_RE.search(text)),
        has_row_estimate_drift=has_row_estimate_drift(metrics),
        has_late_filtering=(
            metrics.rows_removed_by_join_filter > 0
            or (has_join and metrics.rows_removed_by_filter > 0)
        ),
        has_external_sort_or_hash=metrics.has_disk_sort or metrics.hash_batches > 1,
        has_index_scan=bool(_INDEX_SCAN_RE.search(text)),
        has_heavy_heap_usage=metrics.heap_fetches > HEAVY_HEAP_FETCHES,
        has_worker_starvation=(
            "Workers Planned" in text and metrics.workers_launched < 1
        ),
    )
