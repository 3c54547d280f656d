"""Explainer for recursive CTEs that rescan their base table on every step."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ecoplan.extraction.extractor import parse_node_lines
from ecoplan.suggestions.explainers.base import Explainer, strip_aliases
from ecoplan.suggestions.registry import register_explainer

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics
    from ecoplan.suggestions.models import EvaluatedSuggestion, ExplanationContext
    from ecoplan.tree.node import ImpactNode

_JOIN_COND_RE = re.compile(r"(?:Hash|Merge) Cond:\s*\(([^)]+)\)")
_RECURSIVE_SCAN_RE = re.compile(r"Recursive Union[\s\S]*?Seq Scan on\s+(\w+)")
_SEQ_SCAN_TABLE_RE = re.compile(r"Seq Scan on\s+(\w+)")


def rescanned_table(plan: str) -> str | None:
    """Table sequentially scanned on more than one iteration."""
    for node in parse_node_lines(plan):
        match = _SEQ_SCAN_TABLE_RE.search(node.text)
        if match and (node.loops or 0) > 1:
            return match.group(1)
    # Plain EXPLAIN has no loop counts; the first scan under the union is the best guess
    fallback = _RECURSIVE_SCAN_RE.search(plan)
    return fallback.group(1) if fallback else None


@register_explainer
class RecursiveBombExplainer(Explainer):
    """Recursive CTE whose per-iteration join is a sequential scan."""

    template_ids = ("RECURSIVE_BOMB",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        if metrics.recursive_depth > 0:
            evidence.append(f"🔄 Recursion depth: {metrics.recursive_depth:,}")
        if metrics.max_loops > 1:
            evidence.append(f"🔁 Loops: {metrics.max_loops:,}")

        cond = _JOIN_COND_RE.search(plan)
        if cond:
            evidence.append(f"🔗 Join condition: {strip_aliases(cond.group(1))}")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        metrics = context.metrics
        cond = _JOIN_COND_RE.search(context.plan)
        culprit = f"**{cond.group(1)}**" if cond else "the parent/child join column (e.g. parent_id)"

        scanned = rescanned_table(context.plan)
        table = f"`{scanned}`" if scanned else "the base table"

        return f"""
### 💣 Recursive CTE bomb

The recursive CTE performs a **sequential scan** of {table} at every recursion level,
so its cost grows with each iteration.

#### 📉 Impact
- **Iterations:** {metrics.max_loops:,}
- **Depth:** {metrics.recursive_depth:,} levels
- **Rows per iteration:** {metrics.rows_per_iteration:,}

#### ✅ Recommended fix
Index the condition that joins parent rows to child rows:
{culprit}

With that index, each recursion step becomes an index lookup instead of a full scan.
""".strip()
