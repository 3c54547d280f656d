"""
Explainers for join pathologies.

- NestedLoopExplainer: nested loops re-running an inner scan many times
- CartesianExplainer: joins with no join condition (N x M rows)
- InefficientJoinExplainer: joins that discard most evaluated pairs
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ecoplan.extraction.extractor import parse_node_lines
from ecoplan.suggestions.explainers.base import Explainer
from ecoplan.suggestions.registry import register_explainer

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics
    from ecoplan.suggestions.models import EvaluatedSuggestion, ExplanationContext
    from ecoplan.tree.node import ImpactNode

_JOIN_FILTER_RE = re.compile(r"Join Filter:\s+\((.+)\)")
_ROWS_REMOVED_JOIN_RE = re.compile(r"Rows Removed by Join Filter:\s+(\d+)")
_INEQUALITY_RE = re.compile(r"[<>]")


def _impact_percent(node: "ImpactNode | None") -> int:
    return round((node.value if node is not None else 0.0) * 100)


@register_explainer
class NestedLoopExplainer(Explainer):
    """Nested loop whose inner side is executed once per outer row."""

    template_ids = ("NESTED_LOOP_BOMB", "LOOP_EXPLOSION")

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        if metrics.max_loops > 1:
            evidence.append(f"🔁 Worst node loops: {metrics.max_loops:,}")

        if "Nested Loop" in plan and "Index Cond" not in plan:
            evidence.append("⚠️ Nested Loop without Index Cond (scan inside the loop)")

        # Outer and first inner estimates of the join
        nodes = [n for n in parse_node_lines(plan) if n.actual_rows is not None]
        if len(nodes) > 2:
            outer = nodes[1].actual_rows or 0
            inner = nodes[2].actual_rows or 0
            if outer and inner:
                evidence.append(
                    f"📊 Potential pairs: {outer:,} × {inner:,} = {outer * inner:,}"
                )

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        label = node.label if node is not None else suggestion.triggering_node.id
        loops = context.metrics.max_loops

        return f"""
## 🚨 Inefficient Nested Loop

**{_impact_percent(node)}%** of the **{label}** score comes from this pattern.

### The dangerous pattern
A nested loop without an index on the inner side runs the inner scan once per outer row:

```
FOR EACH outer row:
  FOR EACH inner row:
    evaluate join condition
```

Here the worst node ran **{loops:,}** times.

### Fixes, by impact
1. **Index the inner join column** (best)
2. **Let the planner hash join**: test with `SET enable_nestloop = off;`
3. **Check cardinalities** in the WHERE clause so the planner estimates the outer side correctly
""".strip()


@register_explainer
class CartesianExplainer(Explainer):
    """Every row of one input combined with every row of the other."""

    template_ids = ("CARTESIAN_PRODUCT",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        if "Nested Loop" in plan:
            evidence.append("🔥 Strategy: Nested Loop with no usable join condition")
        elif "Cross Join" in plan or "CROSS JOIN" in plan:
            evidence.append("🔥 Strategy: explicit Cross Join")

        if metrics.actual_rows > 0:
            evidence.append(f"💥 Rows produced: {metrics.actual_rows:,}")

        if metrics.rows_removed_by_join_filter > 0:
            evidence.append(
                f"🗑️ Pairs discarded by join filter: {metrics.rows_removed_by_join_filter:,}"
            )

        if metrics.planned_rows > 0 and metrics.actual_rows > metrics.planned_rows * 10:
            ratio = round(metrics.actual_rows / metrics.planned_rows)
            evidence.append(f"⚠️ Drift: {ratio}x more rows than estimated")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        explicit = "CROSS JOIN" in context.plan or "Cross Join" in context.plan
        cause = (
            "You are running a `CROSS JOIN` that produces too many combinations."
            if explicit
            else "A join condition (`ON` or `WHERE`) between two tables appears to be missing."
        )

        return f"""
### ✖️ Cartesian product detected

The query combines **every row** of one table with **every row** of another (N × M).
The work grows multiplicatively with table size.

#### 📉 Impact
- **Row multiplication:** 1,000 users × 1,000 orders already means 1,000,000 rows in memory.
- **CPU saturation:** the executor spends its time pairing rows that have no relation.

#### ✅ Recommended fix
**{cause}**

Review your `JOIN` clauses:
1. Make sure every `JOIN` has its `ON a.id = b.a_id`.
2. With comma-separated tables, check the `WHERE` clause for the relating predicate.

Adding the relating condition reduces the result from N × M to the relevant rows only.
""".strip()


@register_explainer
class InefficientJoinExplainer(Explainer):
    """Join that evaluates many pairs and throws most of them away."""

    template_ids = ("INEFFICIENT_JOIN",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        if metrics.rows_removed_by_join_filter > 0:
            evidence.append(
                f"🗑️ CPU waste: **{metrics.rows_removed_by_join_filter:,}** "
                "pairs evaluated and discarded"
            )

        condition = _JOIN_FILTER_RE.search(plan)
        if condition:
            evidence.append(f"⚠️ Costly condition: `{condition.group(1)}`")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        removed_match = _ROWS_REMOVED_JOIN_RE.search(context.plan)
        removed = int(removed_match.group(1)) if removed_match else 0
        condition_match = _JOIN_FILTER_RE.search(context.plan)
        condition = condition_match.group(1) if condition_match else "unknown condition"

        triangular = bool(_INEQUALITY_RE.search(condition)) and "=" not in condition
        problem = "triangular (inequality) join" if triangular else "post-join filtering"

        if triangular:
            first_fix = (
                "**Replace the triangular logic**: inequalities (`>`, `<`) in a join compare "
                "every row with every other row. Window functions (`LEAD`, `LAG`) compute "
                "row-to-row differences without a self-join."
            )
        else:
            first_fix = (
                f"**Optimize the predicate**: move `{condition}` into the `WHERE` of the "
                "inputs so rows are filtered before they are joined."
            )

        return f"""
## 📉 Inefficient join ({problem})

This node carries **{_impact_percent(node)}%** impact. The problem is **wasted computation**.

### What happens
1. A join (usually a `Nested Loop`) runs.
2. It evaluates **{removed:,}** row combinations in memory.
3. **It throws them away** because they fail the filter `{condition}`.

```
Nested Loop
  -> Join Filter: ({condition})
  -> Rows Removed: {removed:,}   <-- bottleneck
```

### Recommended fixes
1. {first_fix}
2. **Composite index**: cover both columns used in `{condition}`.
3. **Check data types**: both sides of the comparison should share a type, since implicit casts disable indexes.
""".strip()
