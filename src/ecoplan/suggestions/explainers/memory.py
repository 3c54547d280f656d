"""Explainer for sorts and hashes that spill to temporary files."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from ecoplan.suggestions.explainers.base import Explainer, truncate
from ecoplan.suggestions.library import recommended_work_mem_mb
from ecoplan.suggestions.registry import register_explainer

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics
    from ecoplan.suggestions.models import EvaluatedSuggestion, ExplanationContext
    from ecoplan.tree.node import ImpactNode

_DISK_KB_RE = re.compile(r"Disk:\s*(\d+)\s*kB")
_SORT_METHOD_RE = re.compile(
    r"Sort Method:\s*([a-zA-Z\s]+?)(?:\s{2,}|\s+Disk:|\s+Memory:|$)",
    re.IGNORECASE | re.MULTILINE,
)
_SORT_KEY_RE = re.compile(r"Sort Key:\s*(.+)")

CRITICAL_SPILL_MB = 50


@register_explainer
class DiskSortExplainer(Explainer):
    """work_mem too small: the sort or hash wrote temporary files."""

    template_ids = ("DISK_SORT",)

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        evidence: list[str] = []

        if metrics.temp_files_mb > 0:
            evidence.append(f"💾 Disk space: {metrics.temp_files_mb:.2f} MB")
        else:
            disk = _DISK_KB_RE.search(plan)
            if disk:
                evidence.append(f"💾 Disk space: {int(disk.group(1)) / 1024:.2f} MB")

        method = _SORT_METHOD_RE.search(plan)
        if method:
            evidence.append(f"⚙️ Strategy: {method.group(1).strip()}")

        if metrics.hash_batches > 1:
            evidence.append(f"🧮 Hash batches: {metrics.hash_batches:,}")

        key = _SORT_KEY_RE.search(plan)
        if key:
            evidence.append(f"🔑 Sorting by: {truncate(key.group(1).strip(), 50)}")

        return evidence

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        temp_mb = context.metrics.temp_files_mb
        work_mem = recommended_work_mem_mb(temp_mb)

        key = _SORT_KEY_RE.search(context.plan)
        columns = f"**{key.group(1).strip()}**" if key else "the columns in ORDER BY"

        if temp_mb > CRITICAL_SPILL_MB:
            volume = "The spilled volume is **CRITICAL**."
        else:
            volume = "The disk spill is slowing the query down."

        return f"""
### 💾 Disk sort / hash spill

The database did not have enough memory (`work_mem`) for the operation and wrote
temporary files to disk.

#### 📉 Impact
Disk I/O is far slower than RAM.
- **Volume written:** {temp_mb:.2f} MB
- **Effect:** higher latency and more IOPS on the server.
- {volume}

#### ✅ Recommended fix
1. **Index (preferred):** an index already ordered by the needed columns removes the sort entirely.
   Column(s) to index: {columns}
2. **More memory (palliative):** raise `work_mem` for the session or role so the operation
   fits in RAM, e.g. `SET work_mem = '{work_mem}MB';`
""".strip()
