"""
Explainers for scans that read far more than they return.

Several of these build a concrete CREATE INDEX statement from the plan's
Filter line, e.g.

    Filter: ((metadata->>'type'::text) = 'ERROR'::text)
    -> CREATE INDEX CONCURRENTLY idx_logs_metadata_type ON logs ((metadata->>'type'));
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ecoplan.suggestions.explainers.base import (
    Explainer,
    strip_aliases,
    strip_casts,
    truncate,
)
from ecoplan.suggestions.registry import register_explainer

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics
    from ecoplan.suggestions.models import EvaluatedSuggestion, ExplanationContext
    from ecoplan.tree.node import ImpactNode

_FILTER_RE = re.compile(r"^\s*Filter:\s*\((.+)\)\s*$", re.MULTILINE)
_SCANNED_TABLE_RE = re.compile(r"Seq Scan on\s+(\w+)")
_INDEX_SCAN_RE = re.compile(r"Index(?: Only)? Scan using\s+(\w+)\s+on\s+(\w+)")
_HEAP_FETCHES_RE = re.compile(r"Heap Fetches:\s*(\d+)")
_PARTITION_RE = re.compile(r"Scan (?:using \S+ )?on (\w+_(?:p)?\d+)")
_AND_SPLIT_RE = re.compile(r"\s+AND\s+", re.IGNORECASE)
# Operators, skipping the arrows of JSON extraction (->, ->>)
_COMPARISON_RE = re.compile(
    r"\s*(?<![-<>!])(?:=|<>|!=|>=|<=|>|<|~~\*?|\bIS\b|\bIN\b)", re.IGNORECASE
)
_JSON_KEY_RE = re.compile(r"(\w+)\s*->>?\s*'(\w+)'")

DEFAULT_TABLE = "your_table"


def scanned_table(plan: str) -> str:
    """First sequentially scanned table, or a placeholder."""
    match = _SCANNED_TABLE_RE.search(plan)
    return match.group(1) if match else DEFAULT_TABLE


def filter_condition(plan: str) -> str | None:
    """Contents of the first scan Filter line, without the outer parens."""
    match = _FILTER_RE.search(plan)
    return match.group(1) if match else None


def _wrapped(expr: str) -> bool:
    """True if the first paren closes at the last character."""
    if not (expr.startswith("(") and expr.endswith(")")):
        return False
    depth = 0
    for i, char in enumerate(expr):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth == 0 and i < len(expr) - 1:
                return False
    return depth == 0


def _strip_parens(expr: str) -> str:
    expr = expr.strip()
    while _wrapped(expr):
        expr = expr[1:-1].strip()
    return expr


def filter_columns(condition: str) -> list[str]:
    """
    Column expressions referenced by a filter condition.

    Plain columns come back bare; JSON key extractions come back as
    `col->>'key'` so they can be indexed as expressions.
    """
    columns: list[str] = []
    cleaned = strip_aliases(strip_casts(condition))
    for term in _AND_SPLIT_RE.split(cleaned):
        term = _strip_parens(term)
        left = _COMPARISON_RE.split(term, maxsplit=1)[0]
        left = _strip_parens(left)
        if not left:
            continue
        json_key = _JSON_KEY_RE.search(left)
        column = f"{json_key.group(1)}->>'{json_key.group(2)}'" if json_key else left
        if column not in columns:
            columns.append(column)
    return columns


def build_index_sql(table: str, columns: list[str], where: str | None = None) -> str:
    """CREATE INDEX CONCURRENTLY statement for the given column expressions."""
    name_parts = []
    index_exprs = []
    for column in columns:
        json_key = _JSON_KEY_RE.search(column)
        if json_key:
            name_parts.append(f"{json_key.group(1)}_{json_key.group(2)}")
            index_exprs.append(f"({column})")
        else:
            name_parts.append(re.sub(r"\W+", "_", column).strip("_"))
            index_exprs.append(column)

    name = "_".join(["idx", table, *name_parts])
    sql = f"CREATE INDEX CONCURRENTLY {name} ON {table} ({', '.join(index_exprs)})"
    if where:
        sql += f" WHERE {where}"
    return sql + ";"


@register_explainer
class HighWasteExplainer(Explainer):
    """Filter discards most of the rows a scan reads."""

    template_ids = ("HIGH_WASTE_SCAN",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        if metrics.rows_removed_by_filter > 0:
            evidence.append(f"🗑️ Rows discarded: {metrics.rows_removed_by_filter:,}")
        if metrics.waste_ratio > 0:
            evidence.append(f"📉 Waste ratio: {metrics.waste_ratio:.0%}")

        condition = filter_condition(plan)
        if condition:
            evidence.append(f"🔍 Filter: {truncate(strip_casts(condition))}")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        table = scanned_table(context.plan)
        condition = filter_condition(context.plan)
        columns = filter_columns(condition) if condition else []
        sql = build_index_sql(table, columns) if columns else None

        fix = f"```sql\n{sql}\n```" if sql else "Index the columns used in the WHERE clause."

        return f"""
### 🗑️ Most scanned rows are thrown away

The scan of `{table}` reads rows and discards **{context.metrics.rows_removed_by_filter:,}**
of them in a filter. Only a small fraction reaches the result.

#### 📉 Impact
- **Waste ratio:** {context.metrics.waste_ratio:.0%}
- **Effect:** CPU and I/O spent on rows nobody asked for; cost grows with the table.

#### ✅ Recommended fix
{fix}
""".strip()


@register_explainer
class MissingIndexExplainer(Explainer):
    """Brute-force scan whose filter an index could answer directly."""

    template_ids = ("JSONB_FILTER", "PARTIAL_INDEX", "PARALLEL_BRUTE_FORCE")

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = [f"📋 Table: {scanned_table(plan)}"]

        condition = filter_condition(plan)
        if condition:
            columns = filter_columns(condition)
            if columns:
                evidence.append(f"🔍 Filtered columns: {', '.join(columns)}")

        if metrics.workers_launched > 0:
            evidence.append(f"👷 Parallel workers: {metrics.workers_launched}")
        if metrics.rows_removed_by_filter > 0:
            evidence.append(f"🗑️ Rows discarded: {metrics.rows_removed_by_filter:,}")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        table = scanned_table(context.plan)
        condition = filter_condition(context.plan)
        columns = filter_columns(condition) if condition else []

        if suggestion.template_id == "PARTIAL_INDEX" and condition:
            where = strip_aliases(strip_casts(condition))
            sql = build_index_sql(table, columns[:1] or ["id"], where=where)
            title = "🎯 Partial index opportunity"
            lead = (
                "The filter selects rows by a constant condition. A partial index stores "
                "only those rows, so it stays small and fast."
            )
        elif suggestion.template_id == "JSONB_FILTER":
            sql = build_index_sql(table, columns) if columns else None
            title = "🧩 JSONB filter without an expression index"
            lead = (
                "Every row's document is decoded to evaluate the filter. An expression "
                "index on the extracted key lets the planner skip that work."
            )
        else:
            sql = build_index_sql(table, columns) if columns else None
            title = "💪 Parallel brute force"
            lead = (
                f"{context.metrics.workers_launched or 'Several'} workers scan the whole table "
                "in parallel and discard almost everything. More cores only hide the missing index."
            )

        fix = f"```sql\n{sql}\n```" if sql else "Index the filtered columns."

        return f"""
### {title}

{lead}

- **Table:** `{table}`
- **Rows discarded:** {context.metrics.rows_removed_by_filter:,}

#### ✅ Recommended fix
{fix}
""".strip()


@register_explainer
class PoorFilteringExplainer(Explainer):
    """Partitioned table scanned without pruning."""

    template_ids = ("PARTITION_PRUNING_FAIL",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        partitions = sorted(set(_PARTITION_RE.findall(plan)))
        evidence = [f"🧱 Partitions scanned: {len(partitions)}"]
        if partitions:
            evidence.append(f"📋 {truncate(', '.join(partitions))}")
        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        count = len(set(_PARTITION_RE.findall(context.plan)))
        return f"""
### 🧱 Partition pruning did not apply

The query touches **{count}** partitions. Pruning only works when the planner can
compare the partition key directly against constants or parameters.

#### ✅ Recommended fix
1. Filter on the partition key itself (`created_at >= '2024-01-01'`), not on an
   expression such as `date_trunc('month', created_at)`.
2. Avoid casts on the partition key; compare values of the same type.
""".strip()


@register_explainer
class InefficientIndexExplainer(Explainer):
    """Index used, but most matches are re-read from the heap."""

    template_ids = ("INEFFICIENT_INDEX",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        index = _INDEX_SCAN_RE.search(plan)
        if index:
            evidence.append(f"📇 Index: {index.group(1)} on {index.group(2)}")
        if metrics.heap_fetches > 0:
            evidence.append(f"📦 Heap fetches: {metrics.heap_fetches:,}")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        index = _INDEX_SCAN_RE.search(context.plan)
        index_name, table = (index.group(1), index.group(2)) if index else ("the index", "the table")

        return f"""
### 📦 Index scan with heavy heap access

`{index_name}` finds the rows, but **{context.metrics.heap_fetches:,}** of them are then
fetched from `{table}` itself to check visibility or read missing columns.

#### ✅ Recommended fix
1. Add the selected columns to the index with `INCLUDE (...)` so it becomes index-only.
2. Run `VACUUM {table};` to refresh the visibility map.
""".strip()
