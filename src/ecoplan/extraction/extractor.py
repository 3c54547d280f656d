"""
Metric extraction from EXPLAIN ANALYZE text.

This is pattern-based extraction, not a SQL or plan grammar. Each signal is
found with an independent regex and every miss has a deterministic fallback:
- Absent pattern -> 0 / False (or the documented epsilon for time)
- Unparsable capture -> 0
- Divisions are guarded and return 0

Execution time falls back through four tiers:
1. "Execution Time: X ms" (or legacy "Total runtime: X ms")
2. Root node "actual time=a..b" upper bound
3. Root node "cost=a..b" upper bound scaled by COST_TO_MS
4. EXECUTION_TIME_EPSILON_MS

Per-node values (loops, rows, indentation) are read from plan node lines,
i.e. lines carrying a "(cost=..." or "(actual ..." annotation.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from ecoplan.extraction.models import RawMetrics, TimeSource

logger = logging.getLogger(__name__)

EXECUTION_TIME_EPSILON_MS = 0.01
COST_TO_MS = 0.01
PAGE_SIZE_KB = 8

# Waste damping reaches full strength at 10^5 rows read
WASTE_DAMPING_LOG10 = 5.0

_NUM = r"(\d+(?:\.\d+)?)"

_EXECUTION_TIME_RE = re.compile(
    rf"(?:Execution Time|Total runtime):\s*{_NUM}\s*ms", re.IGNORECASE
)
_PLANNING_TIME_RE = re.compile(rf"Planning Time:\s*{_NUM}\s*ms", re.IGNORECASE)
_JIT_TOTAL_RE = re.compile(rf"JIT:[\s\S]*?Total\s+{_NUM}\s*ms")
_COST_RE = re.compile(rf"cost={_NUM}\.\.{_NUM}\s+rows=(\d+)")
_ACTUAL_RE = re.compile(
    rf"actual(?:\s+time={_NUM}\.\.{_NUM})?\s+rows=(\d+)\s+loops=(\d+)"
)
_NODE_LINE_RE = re.compile(r"\((?:cost=|actual\s)")
_BATCHES_RE = re.compile(r"Batches:\s*(\d+)")
_DISK_KB_RE = re.compile(r"Disk(?: Usage)?:\s*(\d+)\s*kB")
_EXTERNAL_SORT_RE = re.compile(r"Sort Method:\s*external", re.IGNORECASE)
_TEMP_WRITTEN_RE = re.compile(r"temp(?:\s+read=\d+)?\s+written=(\d+)")
_BUFFER_GROUP_RE = re.compile(r"\b(?:shared|local)((?:\s+\w+=\d+)+)")
_BUFFER_COUNTS_RE = re.compile(r"\b(?:hit|read)=(\d+)")
_ROWS_REMOVED_FILTER_RE = re.compile(r"Rows Removed by Filter:\s*(\d+)")
_ROWS_REMOVED_JOIN_RE = re.compile(r"Rows Removed by Join Filter:\s*(\d+)")
_HEAP_FETCHES_RE = re.compile(r"Heap Fetches:\s*(\d+)")
_WORKERS_PLANNED_RE = re.compile(r"Workers Planned:\s*(\d+)")
_WORKERS_LAUNCHED_RE = re.compile(r"Workers Launched:\s*(\d+)")
_RECURSIVE_DEPTH_RE = re.compile(r"recursive[\s_]?depth[:=]\s*(\d+)", re.IGNORECASE)
_JOIN_CONDITION_RE = re.compile(r"(?:Index|Hash|Merge) Cond:")


@dataclass(frozen=True)
class PlanNodeLine:
    """Numbers read from a single plan node line."""

    line_no: int
    text: str
    level: int
    startup_cost: float | None = None
    total_cost: float | None = None
    plan_rows: int | None = None
    actual_end_ms: float | None = None
    actual_rows: int | None = None
    loops: int | None = None


def _to_int(value: str | None) -> int:
    """Parse an int capture, treating anything unparsable as 0."""
    if value is None:
        return 0
    try:
        return int(value)
    except ValueError:
        return 0


def _to_float(value: str | None) -> float:
    """Parse a float capture, treating anything unparsable or non-finite as 0."""
    if value is None:
        return 0.0
    try:
        parsed = float(value)
    except ValueError:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


def _node_level(line: str) -> int:
    """
    Nesting level of a node line from its "->" arrow position.

    PostgreSQL indents children six columns per level, with the first
    arrow at column 2. Lines without an arrow are the root (or a CTE/SubPlan
    header at the root's level).
    """
    arrow = line.find("->")
    if arrow < 0:
        return 0
    return max(0, (arrow - 2) // 6) + 1


def parse_node_lines(text: str) -> list[PlanNodeLine]:
    """Collect every plan node line with its cost and actual annotations."""
    nodes: list[PlanNodeLine] = []

    for line_no, line in enumerate(text.splitlines()):
        if not _NODE_LINE_RE.search(line):
            continue

        cost = _COST_RE.search(line)
        actual = _ACTUAL_RE.search(line)

        nodes.append(PlanNodeLine(
            line_no=line_no,
            text=line,
            level=_node_level(line),
            startup_cost=_to_float(cost.group(1)) if cost else None,
            total_cost=_to_float(cost.group(2)) if cost else None,
            plan_rows=_to_int(cost.group(3)) if cost else None,
            actual_end_ms=(
                _to_float(actual.group(2)) if actual and actual.group(2) else None
            ),
            actual_rows=_to_int(actual.group(3)) if actual else None,
            loops=_to_int(actual.group(4)) if actual else None,
        ))

    return nodes


def _sum_matches(pattern: re.Pattern[str], text: str) -> int:
    return sum(_to_int(m) for m in pattern.findall(text))


def _max_match(pattern: re.Pattern[str], text: str) -> int:
    return max((_to_int(m) for m in pattern.findall(text)), default=0)


def extract_execution_time(
    text: str,
    root: PlanNodeLine | None,
) -> tuple[float, TimeSource]:
    """
    Resolve execution time through the fallback tiers.

    Returns:
        Tuple of (milliseconds, tier used)
    """
    match = _EXECUTION_TIME_RE.search(text)
    if match:
        return _to_float(match.group(1)), TimeSource.EXPLICIT

    if root is not None and root.actual_end_ms is not None:
        return root.actual_end_ms, TimeSource.ACTUAL_TIME

    if root is not None and root.total_cost is not None:
        return root.total_cost * COST_TO_MS, TimeSource.COST_ESTIMATE

    return EXECUTION_TIME_EPSILON_MS, TimeSource.EPSILON


def calculate_waste_ratio(removed: int, returned: int) -> float:
    """
    Fraction of read rows that were discarded, damped for small volumes.

    raw = removed / (removed + returned), scaled by
    min(1, log10(removed + returned) / 5) so that a handful of discarded
    rows does not look alarming. Always in [0, 1].
    """
    removed = max(0, removed)
    returned = max(0, returned)
    total = removed + returned
    if total <= 1:
        return 0.0

    raw = removed / total
    damping = min(1.0, math.log10(total) / WASTE_DAMPING_LOG10)
    return max(0.0, min(1.0, raw * damping))


def _extract_temp_mb(text: str) -> float:
    disk_mb = _sum_matches(_DISK_KB_RE, text) / 1024
    written_mb = _sum_matches(_TEMP_WRITTEN_RE, text) * PAGE_SIZE_KB / 1024
    return max(disk_mb, written_mb)


def _extract_buffers(text: str) -> int:
    """
    Largest shared+local hit+read total over "Buffers:" lines.

    The root line is cumulative. Temp pages are left to the spill metrics.
    """
    best = 0
    for line in text.splitlines():
        if "Buffers:" not in line:
            continue
        pages = sum(
            _to_int(m)
            for group in _BUFFER_GROUP_RE.findall(line)
            for m in _BUFFER_COUNTS_RE.findall(group)
        )
        best = max(best, pages)
    return best


def _extract_recursive_depth(text: str, nodes: list[PlanNodeLine]) -> int:
    """Explicit "recursive depth: N", else the iteration count under Recursive Union."""
    explicit = _RECURSIVE_DEPTH_RE.search(text)
    if explicit:
        return _to_int(explicit.group(1))

    for index, node in enumerate(nodes):
        if "Recursive Union" not in node.text:
            continue
        depth = 0
        for child in nodes[index + 1:]:
            if child.level <= node.level:
                break
            depth = max(depth, child.loops or 0)
        return depth

    return 0


def is_cartesian_text(text: str) -> bool:
    """Cross Join, or a Nested Loop with no index/hash/merge join condition."""
    if "Cross Join" in text or "CROSS JOIN" in text:
        return True
    return "Nested Loop" in text and not _JOIN_CONDITION_RE.search(text)


def extract_metrics(text: str) -> RawMetrics:
    """
    Turn EXPLAIN ANALYZE text into a RawMetrics record.

    Never raises for any string input.

    Args:
        text: Plan text, already sanitized and length-capped by the caller

    Returns:
        Complete RawMetrics with fallbacks for every absent signal
    """
    text = text or ""
    nodes = parse_node_lines(text)
    root = nodes[0] if nodes else None

    execution_time_ms, time_source = extract_execution_time(text, root)
    logger.debug("Execution time %.3f ms from %s", execution_time_ms, time_source.value)

    # Loop depth uses the worst node, not the sum
    max_loops = 0
    rows_per_iteration = 0
    seq_scan_in_loop = False
    for node in nodes:
        loops = node.loops or 0
        if loops > max_loops:
            max_loops = loops
            rows_per_iteration = node.actual_rows or 0
        if loops > 1 and "Seq Scan" in node.text and "Parallel Seq Scan" not in node.text:
            seq_scan_in_loop = True

    actual_rows = root.actual_rows if root and root.actual_rows is not None else 0
    planned_rows = root.plan_rows if root and root.plan_rows is not None else 0

    rows_removed_by_filter = _sum_matches(_ROWS_REMOVED_FILTER_RE, text)
    rows_removed_by_join_filter = _sum_matches(_ROWS_REMOVED_JOIN_RE, text)
    waste_ratio = calculate_waste_ratio(
        rows_removed_by_filter + rows_removed_by_join_filter,
        actual_rows,
    )

    jit_match = _JIT_TOTAL_RE.search(text)
    planning_match = _PLANNING_TIME_RE.search(text)

    metrics = RawMetrics(
        execution_time_ms=max(0.0, execution_time_ms),
        exec_time_in_explain=time_source.is_measured,
        execution_time_source=time_source,
        planning_time_ms=_to_float(planning_match.group(1)) if planning_match else 0.0,
        jit_time_ms=_to_float(jit_match.group(1)) if jit_match else 0.0,
        hash_batches=_max_match(_BATCHES_RE, text),
        has_disk_sort=bool(_EXTERNAL_SORT_RE.search(text) or _DISK_KB_RE.search(text)),
        temp_files_mb=_extract_temp_mb(text),
        total_buffers_read=_extract_buffers(text),
        heap_fetches=_sum_matches(_HEAP_FETCHES_RE, text),
        rows_removed_by_filter=rows_removed_by_filter,
        rows_removed_by_join_filter=rows_removed_by_join_filter,
        waste_ratio=waste_ratio,
        is_cartesian=is_cartesian_text(text),
        workers_planned=_max_match(_WORKERS_PLANNED_RE, text),
        workers_launched=_max_match(_WORKERS_LAUNCHED_RE, text),
        recursive_depth=_extract_recursive_depth(text, nodes),
        max_loops=max_loops,
        rows_per_iteration=rows_per_iteration,
        seq_scan_in_loop=seq_scan_in_loop,
        planned_rows=planned_rows,
        actual_rows=actual_rows,
        node_count=len(nodes),
        max_depth=max((node.level for node in nodes), default=0),
    )

    logger.debug(
        "Extracted %d nodes: loops=%d waste=%.3f temp=%.1fMB buffers=%d",
        metrics.node_count,
        metrics.max_loops,
        metrics.waste_ratio,
        metrics.temp_files_mb,
        metrics.total_buffers_read,
    )
    return metrics
