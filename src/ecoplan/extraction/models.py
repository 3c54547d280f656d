"""
Typed records produced by the extraction layer.

RawMetrics is the single canonical record of numeric signals pulled from
plan text. StructuralFlags holds the boolean architecture flags derived
from it. Both are frozen: they are created once per analysis and only read
afterwards.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TimeSource(str, Enum):
    """
    Which fallback tier produced the execution time.

    EXPLICIT and ACTUAL_TIME come from measured values in the plan;
    COST_ESTIMATE and EPSILON are estimates.
    """

    EXPLICIT = "explicit"            # "Execution Time: X ms"
    ACTUAL_TIME = "actual_time"      # root node actual time upper bound
    COST_ESTIMATE = "cost_estimate"  # root node total cost, scaled
    EPSILON = "epsilon"              # nothing usable in the text

    @property
    def is_measured(self) -> bool:
        return self in (TimeSource.EXPLICIT, TimeSource.ACTUAL_TIME)


class RawMetrics(BaseModel):
    """
    Flat record of signals extracted from EXPLAIN ANALYZE text.

    Every field has a deterministic default so that a plan missing any
    given annotation still produces a complete record.
    """

    model_config = ConfigDict(frozen=True)

    # Timing
    execution_time_ms: float = Field(default=0.01, ge=0, description="Execution time in ms")
    exec_time_in_explain: bool = Field(
        default=False,
        description="Whether execution time was measured in the text (vs. estimated)",
    )
    execution_time_source: TimeSource = Field(
        default=TimeSource.EPSILON,
        description="Fallback tier that produced execution_time_ms",
    )
    planning_time_ms: float = Field(default=0.0, ge=0, description="Planning time in ms")
    jit_time_ms: float = Field(default=0.0, ge=0, description="JIT total time in ms")

    # Memory / spill
    hash_batches: int = Field(default=0, ge=0, description="Largest hash batch count")
    has_disk_sort: bool = Field(default=False, description="Sort or hash spilled to disk")
    temp_files_mb: float = Field(default=0.0, ge=0, description="Temp file volume in MB")

    # I/O
    total_buffers_read: int = Field(default=0, ge=0, description="Shared hit + read buffers")
    heap_fetches: int = Field(default=0, ge=0, description="Sum of index heap fetches")

    # Filtering
    rows_removed_by_filter: int = Field(default=0, ge=0)
    rows_removed_by_join_filter: int = Field(default=0, ge=0)
    waste_ratio: float = Field(default=0.0, ge=0, le=1, description="Damped discard ratio")

    # Structure
    is_cartesian: bool = Field(default=False, description="Join without any join condition")
    workers_planned: int = Field(default=0, ge=0)
    workers_launched: int = Field(default=0, ge=0)
    recursive_depth: int = Field(default=0, ge=0, description="Recursive CTE depth")
    max_loops: int = Field(default=0, ge=0, description="Largest per-node loop count")
    rows_per_iteration: int = Field(default=0, ge=0, description="Rows of the max-loop node")
    seq_scan_in_loop: bool = Field(default=False, description="Seq Scan executed more than once")
    planned_rows: int = Field(default=0, ge=0, description="Root node row estimate")
    actual_rows: int = Field(default=0, ge=0, description="Root node actual rows")
    node_count: int = Field(default=0, ge=0, description="Number of plan node lines")
    max_depth: int = Field(default=0, ge=0, description="Deepest plan nesting level")

    @property
    def rows_removed(self) -> int:
        """Rows discarded by scan and join filters."""
        return self.rows_removed_by_filter + self.rows_removed_by_join_filter

    @property
    def total_rows_read(self) -> int:
        """Rows kept plus rows discarded."""
        return self.rows_removed + self.actual_rows


class StructuralFlags(BaseModel):
    """Boolean architecture flags derived from plan text and metrics."""

    model_config = ConfigDict(frozen=True)

    # Join & loops
    has_nested_loop: bool = False
    has_cartesian_product: bool = False
    has_seq_scan_in_loop: bool = False
    has_join: bool = False

    # Recursion & materialization
    has_recursive_cte: bool = False
    has_forced_materialization: bool = False

    # Planner quality
    has_row_estimate_drift: bool = False
    has_late_filtering: bool = False

    # Memory & I/O structure
    has_external_sort_or_hash: bool = False
    has_index_scan: bool = False
    has_heavy_heap_usage: bool = False

    # Parallelism
    has_worker_starvation: bool = False

    def active(self) -> list[str]:
        """Names of the flags that are set."""
        return [name for name, value in self.model_dump().items() if value]
