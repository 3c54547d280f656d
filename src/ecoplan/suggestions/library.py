"""
Static suggestion library.

Each template declares which impact tree nodes it watches, the minimum
resolved value required to fire, and an optional plan-text validator that
must corroborate the match. Validators are pure `text -> bool` predicates
over module-level compiled patterns.

Historical near-duplicates are merged by intent:
- DISK_SORT covers work_mem spills of sorts and hashes
- HIGH_WASTE_SCAN covers high-waste filters and needle-in-haystack scans
- CARTESIAN_PRODUCT covers cartesian risk and join explosion
- INEFFICIENT_INDEX covers heap-fetch heavy index scans
- JSONB_FILTER covers JSON filters in serial and parallel scans
- MISSING_SORT_INDEX covers large sorts, in memory or external

Remedy placeholders ({work_mem}, {loops}, {jit_ms}, {rows}) are filled from
metrics by finalize_remedy(), which then applies any REMEDY_FINALIZERS entry
for the template.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

from ecoplan.extraction.extractor import is_cartesian_text, parse_node_lines
from ecoplan.extraction.flags import ROW_ESTIMATE_DRIFT_RATIO
from ecoplan.extraction.models import RawMetrics
from ecoplan.suggestions.models import Severity, SuggestionKind, SuggestionTemplate

if TYPE_CHECKING:
    from ecoplan.tree.node import ImpactNode

logger = logging.getLogger(__name__)

WORK_MEM_FLOOR_MB = 64
WORK_MEM_STEP_MB = 32
WORK_MEM_HEADROOM = 1.5

_WORKERS_PLANNED_RE = re.compile(r"Workers Planned:\s*(\d+)")
_WORKERS_LAUNCHED_RE = re.compile(r"Workers Launched:\s*(\d+)")
_LOOPS_RE = re.compile(r"loops=(\d+)")
_BATCHES_RE = re.compile(r"Batches:\s*(\d+)")
_RECURSIVE_SEQ_SCAN_RE = re.compile(r"Recursive Union[\s\S]*?Seq Scan")
_SCAN_FILTER_RE = re.compile(r"^\s*Filter:", re.MULTILINE)
_JSON_FILTER_RE = re.compile(r"Filter:[^\n]*->")
_ROWS_REMOVED_FILTER_RE = re.compile(r"Rows Removed by Filter:\s*(\d+)")
_HEAP_FETCHES_RE = re.compile(r"Heap Fetches:\s*(\d+)")
_JIT_TOTAL_RE = re.compile(r"JIT:[\s\S]*?Total\s+(\d+(?:\.\d+)?)\s*ms")
_PARTITION_SCAN_RE = re.compile(r"Scan (?:using \S+ )?on \w+_(?:p)?\d+")
_SORT_ROWS_RE = re.compile(r"Sort\s+\([^)]*?rows=(\d+)")
_PARTIAL_PATTERNS = (
    re.compile(r"=\s*(?:true|false|NULL)\b", re.IGNORECASE),
    re.compile(r"status\s*=\s*'\w+'", re.IGNORECASE),
    re.compile(r"\bis_\w+\s*=", re.IGNORECASE),
    re.compile(r"\bIS (?:NOT )?NULL\b", re.IGNORECASE),
)


def _first_int(pattern: re.Pattern[str], plan: str) -> int:
    match = pattern.search(plan)
    return int(match.group(1)) if match else 0


def _max_int(pattern: re.Pattern[str], plan: str) -> int:
    return max((int(m) for m in pattern.findall(plan)), default=0)


def _max_loops(plan: str) -> int:
    return _max_int(_LOOPS_RE, plan)


# ── Validators ───────────────────────────────────────────────────────────


def _workers_never_launched(plan: str) -> bool:
    planned = _max_int(_WORKERS_PLANNED_RE, plan)
    launched = _max_int(_WORKERS_LAUNCHED_RE, plan)
    return planned > 0 and launched == 0


def _workers_partially_launched(plan: str) -> bool:
    planned = _max_int(_WORKERS_PLANNED_RE, plan)
    launched = _max_int(_WORKERS_LAUNCHED_RE, plan)
    return planned > 0 and 0 < launched < planned


def _nested_loop_over_seq_scan(plan: str) -> bool:
    return (
        _max_loops(plan) >= 10_000
        and "Nested Loop" in plan
        and "Seq Scan on" in plan
    )


def _recursive_seq_scan(plan: str) -> bool:
    return bool(_RECURSIVE_SEQ_SCAN_RE.search(plan))


def _json_filter(plan: str) -> bool:
    return bool(_JSON_FILTER_RE.search(plan))


def _spills_to_disk(plan: str) -> bool:
    batches = max((int(m) for m in _BATCHES_RE.findall(plan)), default=1)
    return batches > 1 or "Disk" in plan or "external" in plan.lower()


def _scan_filter_discards_rows(plan: str) -> bool:
    return bool(_SCAN_FILTER_RE.search(plan)) and "Rows Removed by Filter" in plan


def _join_filter_discards_rows(plan: str) -> bool:
    return "Rows Removed by Join Filter" in plan


def _loop_explosion(plan: str) -> bool:
    return _max_loops(plan) > 100_000


def _partial_index_candidate(plan: str) -> bool:
    if not _SCAN_FILTER_RE.search(plan):
        return False
    return any(pattern.search(plan) for pattern in _PARTIAL_PATTERNS)


def _partitions_scanned(plan: str) -> bool:
    return "Append" in plan and len(_PARTITION_SCAN_RE.findall(plan)) > 3


def _heavy_heap_fetches(plan: str) -> bool:
    return sum(int(m) for m in _HEAP_FETCHES_RE.findall(plan)) > 1000


def _correlated_subplan(plan: str) -> bool:
    return "SubPlan" in plan and _max_loops(plan) >= 1000


def _jit_overhead(plan: str) -> bool:
    match = _JIT_TOTAL_RE.search(plan)
    return bool(match) and float(match.group(1)) > 300


def _parallel_brute_force(plan: str) -> bool:
    removed = sum(int(m) for m in _ROWS_REMOVED_FILTER_RE.findall(plan))
    return "Parallel Seq Scan" in plan and "Filter:" in plan and removed > 10_000


def _large_sort_over_seq_scan(plan: str) -> bool:
    if "Sort Key:" not in plan or "Seq Scan" not in plan:
        return False
    return _first_int(_SORT_ROWS_RE, plan) > 10_000


def _row_estimate_drift(plan: str) -> bool:
    for node in parse_node_lines(plan):
        if not node.plan_rows or node.actual_rows is None:
            continue
        if abs(node.actual_rows - node.plan_rows) / node.plan_rows > ROW_ESTIMATE_DRIFT_RATIO:
            return True
    return False


# ── Library ──────────────────────────────────────────────────────────────


SUGGESTION_LIBRARY: tuple[SuggestionTemplate, ...] = (
    SuggestionTemplate(
        id="PARALLEL_CRITICAL",
        text="Parallelism failed completely (resource contention).",
        remedy=(
            "The planner scheduled workers but none could start, so the query ran "
            "serially. Check max_parallel_workers, max_worker_processes and CPU load."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("parallel",),
        min_impact=0.5,
        severity=Severity.CRITICAL,
        validate=_workers_never_launched,
    ),
    SuggestionTemplate(
        id="PARALLEL_DEGRADED",
        text="Degraded parallelism.",
        remedy=(
            "Fewer workers launched than planned. The query is slower because the "
            "system ran out of parallel worker slots."
        ),
        kind=SuggestionKind.PREVENTIVE,
        trigger_nodes=("parallel",),
        min_impact=0.3,
        validate=_workers_partially_launched,
    ),
    SuggestionTemplate(
        id="NESTED_LOOP_BOMB",
        text="Inefficient nested loop over a sequential scan.",
        remedy=(
            "Add an index on the inner side's join key, or add the missing equality "
            "condition so the planner can choose a hash or merge join."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("complexity", "waste"),
        min_impact=0.8,
        severity=Severity.CRITICAL,
        validate=_nested_loop_over_seq_scan,
    ),
    SuggestionTemplate(
        id="RECURSIVE_BOMB",
        text="Recursive CTE degrades with every iteration.",
        remedy=(
            "The recursive CTE sequentially scans the base table on each step. Index "
            "the column used to join parent and child rows."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("recursive_expansion",),
        min_impact=0.7,
        validate=_recursive_seq_scan,
    ),
    SuggestionTemplate(
        id="JSONB_FILTER",
        text="Filtering on JSONB fields without an expression index.",
        remedy=(
            "Every row's document is parsed to evaluate the ->> filter. Create an "
            "expression index on the extracted key, or a GIN index on the column."
        ),
        kind=SuggestionKind.OPTIMIZATION,
        trigger_nodes=("waste", "complexity", "parallel"),
        min_impact=0.7,
        validate=_json_filter,
    ),
    SuggestionTemplate(
        id="DISK_SORT",
        text="Sort or hash spilled to disk.",
        remedy="Raise work_mem for this workload. Suggested value: {work_mem}.",
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("mem", "io"),
        min_impact=0.6,
        validate=_spills_to_disk,
    ),
    SuggestionTemplate(
        id="HIGH_WASTE_SCAN",
        text="Most rows read are discarded by a filter.",
        remedy=(
            "The scan reads far more rows than it returns. Index the filtered "
            "columns so the executor can go straight to the matching rows."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("waste",),
        min_impact=0.5,
        validate=_scan_filter_discards_rows,
    ),
    SuggestionTemplate(
        id="CARTESIAN_PRODUCT",
        text="Cartesian product or join without a join condition.",
        remedy=(
            "Every row of one input is combined with every row of the other. Add the "
            "missing ON / WHERE equality between the joined tables."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("complexity",),
        min_impact=0.9,
        validate=is_cartesian_text,
    ),
    SuggestionTemplate(
        id="INEFFICIENT_JOIN",
        text="Join evaluates and discards large numbers of row pairs.",
        remedy=(
            "Rows are filtered after the join instead of before it. Push the "
            "predicate into the inputs or replace inequality joins with window functions."
        ),
        kind=SuggestionKind.PREVENTIVE,
        trigger_nodes=("waste", "complexity"),
        min_impact=0.5,
        validate=_join_filter_discards_rows,
    ),
    SuggestionTemplate(
        id="LOOP_EXPLOSION",
        text="Excessive loop iterations (over 100k).",
        remedy=(
            "A node runs {loops} times. Consider a hash join or add indexes so the "
            "inner scans become index lookups."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("complexity",),
        min_impact=0.8,
        validate=_loop_explosion,
    ),
    SuggestionTemplate(
        id="PARTIAL_INDEX",
        text="Partial index opportunity.",
        remedy=(
            "The filter matches a constant, low-cardinality condition (e.g. "
            "is_active = true). A partial index would be smaller and faster."
        ),
        kind=SuggestionKind.OPPORTUNISTIC,
        trigger_nodes=("waste",),
        min_impact=0.6,
        severity=Severity.LOW,
        validate=_partial_index_candidate,
    ),
    SuggestionTemplate(
        id="PARTITION_PRUNING_FAIL",
        text="Partition pruning did not apply.",
        remedy=(
            "Irrelevant partitions are scanned. Filter on the partition key directly "
            "and avoid wrapping it in functions such as date_trunc()."
        ),
        kind=SuggestionKind.PREVENTIVE,
        trigger_nodes=("waste", "complexity"),
        min_impact=0.6,
        validate=_partitions_scanned,
    ),
    SuggestionTemplate(
        id="INEFFICIENT_INDEX",
        text="Index scan with heavy heap fetches.",
        remedy=(
            "The index is used but every match is re-checked in the table. Include "
            "the filtered/selected columns in the index (INCLUDE) to allow an "
            "index-only scan, and VACUUM to refresh the visibility map."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("io", "waste"),
        min_impact=0.3,
        severity=Severity.MEDIUM,
        validate=_heavy_heap_fetches,
    ),
    SuggestionTemplate(
        id="CORRELATED_SUBPLAN",
        text="Correlated subquery executed once per outer row.",
        remedy=(
            "The SubPlan runs {loops} times. Rewrite it as a LEFT JOIN or LATERAL "
            "join so the rows are processed as a set."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("complexity", "perf"),
        min_impact=0.6,
        severity=Severity.CRITICAL,
        validate=_correlated_subplan,
    ),
    SuggestionTemplate(
        id="JIT_OVERHEAD",
        text="JIT compilation overhead.",
        remedy=(
            "JIT spent {jit_ms} ms compiling. For this query the benefit is marginal; "
            "raise jit_above_cost or disable JIT for the session."
        ),
        kind=SuggestionKind.PREVENTIVE,
        trigger_nodes=("cpu",),
        min_impact=0.4,
        validate=_jit_overhead,
    ),
    SuggestionTemplate(
        id="PARALLEL_BRUTE_FORCE",
        text="Parallel sequential scan used as brute force.",
        remedy=(
            "Parallel workers scan and discard most of the table. A plain index on "
            "the filter columns is cheaper and frees the CPU cores."
        ),
        kind=SuggestionKind.CORRECTIVE,
        trigger_nodes=("waste", "parallel", "eco"),
        min_impact=0.4,
        validate=_parallel_brute_force,
    ),
    SuggestionTemplate(
        id="MISSING_SORT_INDEX",
        text="Large sort without a supporting index.",
        remedy=(
            "{rows} rows are sorted explicitly. An index matching the ORDER BY "
            "columns and direction removes the Sort step."
        ),
        kind=SuggestionKind.OPTIMIZATION,
        trigger_nodes=("perf", "scalability"),
        min_impact=0.4,
        severity=Severity.HIGH,
        validate=_large_sort_over_seq_scan,
    ),
    SuggestionTemplate(
        id="ROW_ESTIMATE_DRIFT",
        text="Planner row estimates are off by more than 10x.",
        remedy=(
            "Run ANALYZE on the involved tables, raise the statistics target for "
            "skewed columns, or add extended statistics for correlated columns."
        ),
        kind=SuggestionKind.PREVENTIVE,
        trigger_nodes=("complexity",),
        min_impact=0.4,
        validate=_row_estimate_drift,
    ),
)


def get_template(template_id: str) -> SuggestionTemplate | None:
    for template in SUGGESTION_LIBRARY:
        if template.id == template_id:
            return template
    return None


def recommended_work_mem_mb(temp_files_mb: float) -> int:
    """Spill volume plus headroom, rounded up to 32 MB steps, at least 64 MB."""
    if temp_files_mb <= 0:
        return WORK_MEM_FLOOR_MB
    stepped = math.ceil(temp_files_mb * WORK_MEM_HEADROOM / WORK_MEM_STEP_MB) * WORK_MEM_STEP_MB
    return max(WORK_MEM_FLOOR_MB, stepped)


def _discarded_share(remedy: str, dominant_nodes: list["ImpactNode"]) -> str:
    waste = next((node for node in dominant_nodes if node.id == "waste"), None)
    if waste is None:
        return remedy
    return f"{remedy} (~{round(waste.value * 100)}% of the rows read are discarded.)"


RemedyFinalizer = Callable[[str, list["ImpactNode"]], str]

# Template-specific notes drawn from the dominant nodes of the tree
REMEDY_FINALIZERS: dict[str, RemedyFinalizer] = {
    "HIGH_WASTE_SCAN": _discarded_share,
}


def _fill_placeholders(remedy: str, metrics: RawMetrics) -> str:
    if "{" not in remedy:
        return remedy

    rows = metrics.actual_rows or metrics.planned_rows
    values = {
        "work_mem": f"{recommended_work_mem_mb(metrics.temp_files_mb)}MB",
        "loops": f"{metrics.max_loops:,}",
        "jit_ms": f"{metrics.jit_time_ms:.0f}",
        "rows": f"{rows:,}",
    }
    try:
        return remedy.format_map(values)
    except (KeyError, IndexError, ValueError) as e:
        logger.debug("Could not finalize remedy %r: %s", remedy, e)
        return remedy


def finalize_remedy(
    remedy: str,
    metrics: RawMetrics,
    template_id: str | None = None,
    dominant_nodes: Iterable["ImpactNode"] = (),
) -> str:
    """
    Fill remedy placeholders from metrics, then apply the template's finalizer.

    Returns the raw text when a placeholder is unknown or malformed.
    """
    remedy = _fill_placeholders(remedy, metrics)

    finalizer = REMEDY_FINALIZERS.get(template_id) if template_id else None
    if finalizer is None:
        return remedy
    return finalizer(remedy, list(dominant_nodes))
