"""Explainers for plan-shape problems: correlated subplans, bad estimates, parallelism."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ecoplan.extraction.extractor import parse_node_lines
from ecoplan.suggestions.explainers.base import Explainer, strip_casts, truncate
from ecoplan.suggestions.registry import register_explainer

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics
    from ecoplan.suggestions.models import EvaluatedSuggestion, ExplanationContext
    from ecoplan.tree.node import ImpactNode

_SUBPLAN_RE = re.compile(r"SubPlan\s+(\d+)")
_INDEX_COND_RE = re.compile(r"Index Cond:\s*\((.+)\)")
_NODE_NAME_RE = re.compile(r"^[\s\->]*([A-Za-z][A-Za-z ]+?)(?:\s+using|\s+on|\s+\(|$)")


def _worst_drift(plan: str) -> tuple[str, int, int] | None:
    """(node name, planned rows, actual rows) with the largest estimate error."""
    worst: tuple[str, int, int] | None = None
    worst_ratio = 0.0
    for node in parse_node_lines(plan):
        if not node.plan_rows or node.actual_rows is None:
            continue
        ratio = abs(node.actual_rows - node.plan_rows) / node.plan_rows
        if ratio > worst_ratio:
            name = _NODE_NAME_RE.match(node.text)
            worst = (name.group(1).strip() if name else "node", node.plan_rows, node.actual_rows)
            worst_ratio = ratio
    return worst


@register_explainer
class StructuralComplexityExplainer(Explainer):
    """Plan shape that multiplies work: per-row subplans and misestimated joins."""

    template_ids = ("CORRELATED_SUBPLAN", "ROW_ESTIMATE_DRIFT")

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        subplans = _SUBPLAN_RE.findall(plan)
        if subplans:
            evidence.append(f"🧩 SubPlans: {len(subplans)}")
        if metrics.max_loops > 1:
            evidence.append(f"🔁 Executions of the worst node: {metrics.max_loops:,}")

        drift = _worst_drift(plan)
        if drift and drift[1]:
            name, planned, actual = drift
            evidence.append(f"📊 {name}: estimated {planned:,} rows, got {actual:,}")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        if suggestion.template_id == "CORRELATED_SUBPLAN":
            cond = _INDEX_COND_RE.search(context.plan)
            link = f"`{truncate(strip_casts(cond.group(1)))}`" if cond else "the outer row's key"
            return f"""
### 🧛 Correlated subquery runs once per row

A `SubPlan` is executed **{context.metrics.max_loops:,}** times, once for every row of
the outer query, each time looking up {link}.

#### ✅ Recommended fix
Rewrite the subquery as a `LEFT JOIN` (or `JOIN LATERAL`) with a `GROUP BY`, so the
database processes all rows as one set instead of row by row.
""".strip()

        drift = _worst_drift(context.plan)
        detail = (
            f"The **{drift[0]}** node expected **{drift[1]:,}** rows and produced **{drift[2]:,}**."
            if drift
            else "Estimated and actual row counts differ by more than 10x."
        )
        return f"""
### 📊 Planner estimates are off

{detail}
Join strategies and memory grants are chosen from these estimates, so a wrong count
can turn a cheap plan into an expensive one.

#### ✅ Recommended fix
1. `ANALYZE` the involved tables.
2. Raise `default_statistics_target` (or per-column `SET STATISTICS`) for skewed columns.
3. Add `CREATE STATISTICS` for correlated columns used together in filters.
""".strip()


@register_explainer
class ParallelismExplainer(Explainer):
    """Planned parallel workers that did not (all) start."""

    template_ids = ("PARALLEL_CRITICAL", "PARALLEL_DEGRADED")

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        return [
            f"👷 Workers planned: {metrics.workers_planned}",
            f"🚀 Workers launched: {metrics.workers_launched}",
        ]

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        planned = context.metrics.workers_planned
        launched = context.metrics.workers_launched
        if launched == 0:
            outcome = "none of them started, so the query ran **serially**"
        else:
            outcome = f"only **{launched}** started"

        return f"""
### 👷 Parallel workers unavailable

The planner scheduled **{planned}** workers but {outcome}.
The plan was costed for parallel execution, so the actual runtime is worse than expected.

#### ✅ Recommended fix
1. Check `max_parallel_workers` and `max_worker_processes` against concurrent load.
2. Look for other sessions holding worker slots at the time of the query.
""".strip()
