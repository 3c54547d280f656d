"""
Data models for the suggestion engine.

SuggestionTemplate is static rule-library data. EvaluatedSuggestion is a
transient (template, node) match. ExplainedSuggestion is the terminal unit
handed to consumers. RuleRun records what happened to each template during
one analysis so that "no suggestion" can be told apart from "rule skipped"
and "rule crashed".
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics, StructuralFlags
    from ecoplan.tree.node import ImpactNode


class Severity(str, Enum):
    """
    Severity levels for suggestions, ordered INFO < LOW < MEDIUM < HIGH < CRITICAL.
    """

    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Severity):
            return NotImplemented
        return self.rank >= other.rank


_SEVERITY_RANK = {
    Severity.INFO: 1,
    Severity.LOW: 2,
    Severity.MEDIUM: 3,
    Severity.HIGH: 4,
    Severity.CRITICAL: 5,
}


class SuggestionKind(str, Enum):
    """What a suggestion is for; sets the baseline severity."""

    CORRECTIVE = "corrective"        # fixes an active defect
    PREVENTIVE = "preventive"        # heads off degradation under load
    OPTIMIZATION = "optimization"    # structural speedup
    OPPORTUNISTIC = "opportunistic"  # nice-to-have

    @property
    def baseline_severity(self) -> Severity:
        if self is SuggestionKind.CORRECTIVE:
            return Severity.HIGH
        if self is SuggestionKind.OPPORTUNISTIC:
            return Severity.INFO
        return Severity.MEDIUM


class RuleRunStatus(str, Enum):
    """Status of one template evaluation."""

    PASS = "pass"  # Template evaluated normally (zero or more matches)
    SKIP = "skip"  # Disabled by configuration
    FAIL = "fail"  # Validator raised


PlanValidator = Callable[[str], bool]


@dataclass(frozen=True)
class SuggestionTemplate:
    """
    A rule in the static library.

    Attributes:
        id: Stable template id (also the explainer registry key)
        text: Short narrative / title
        remedy: Remedy text, may contain {work_mem}, {loops}, {jit_ms}, {rows}
        kind: Rule kind; sets the baseline severity
        trigger_nodes: Impact tree node ids this rule watches
        min_impact: Minimum resolved node value required to fire
        severity: Optional base severity overriding the kind baseline
        validate: Optional plan-text predicate corroborating the match
    """

    id: str
    text: str
    remedy: str
    kind: SuggestionKind
    trigger_nodes: tuple[str, ...]
    min_impact: float
    severity: Severity | None = None
    validate: PlanValidator | None = field(default=None, compare=False)

    @property
    def base_severity(self) -> Severity:
        return self.severity or self.kind.baseline_severity


class TriggeringNode(BaseModel):
    """The tree node that caused a template to fire."""

    model_config = ConfigDict(frozen=True)

    id: str
    value: float


class EvaluatedSuggestion(BaseModel):
    """A template bound to a triggering node, with computed severity and score."""

    model_config = ConfigDict(frozen=True)

    template_id: str = Field(..., description="Source template id")
    kind: SuggestionKind
    severity: Severity
    text: str
    remedy: str
    triggering_node: TriggeringNode
    score: float = Field(..., description="Resolved value of the triggering node")


class ImpactSummary(BaseModel):
    """Share of blame for one suggestion."""

    model_config = ConfigDict(frozen=True)

    node: str = Field(..., description="Triggering node id")
    value: float = Field(..., description="Resolved node value")
    contribution: int = Field(..., description="Percent of total tree impact")


class ExplainedSuggestion(BaseModel):
    """Terminal output unit: evidenced, narrated recommendation."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: SuggestionKind
    severity: Severity
    title: str
    explanation: str = Field(..., description="Markdown diagnosis and remedy")
    evidence: list[str] = Field(default_factory=list)
    remedy: str
    impact_summary: ImpactSummary


class RuleRun(BaseModel):
    """Record of a single template evaluation."""

    model_config = ConfigDict(frozen=True)

    rule_id: str = Field(..., description="Template id")
    status: RuleRunStatus = Field(..., description="Execution status")
    runtime_ms: float = Field(default=0.0, description="Evaluation time in milliseconds")
    matches: int = Field(default=0, description="Number of (template, node) matches")
    error_summary: str | None = Field(default=None, description="Error message if FAIL")
    skip_reason: str | None = Field(default=None, description="Reason if SKIP")


@dataclass
class ExplanationContext:
    """Everything an explainer may read while narrating a suggestion."""

    impact_tree: "ImpactNode"
    impact_saturation: float
    dominant_nodes: list["ImpactNode"]
    metrics: "RawMetrics"
    flags: "StructuralFlags"
    plan: str
