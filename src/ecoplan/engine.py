"""
Analysis service: the single entry point that runs the whole pipeline.

    plan text
      -> extraction (RawMetrics, StructuralFlags)
      -> impact tree (build, resolve)
      -> economics (cost, green metrics)
      -> suggestions (evaluate, severity, filter, collapse, explain)
      -> AnalysisReport

The service never raises for any text input: an empty or unparseable plan
yields a best-effort report built from an epsilon execution time.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ecoplan.config import Config, get_config
from ecoplan.economics import (
    CloudProvider,
    GreenMetrics,
    calculate_cost,
    calculate_environmental_impact,
)
from ecoplan.extraction import RawMetrics, StructuralFlags, TimeSource, classify, extract_metrics
from ecoplan.suggestions import (
    ExplainedSuggestion,
    ExplanationContext,
    RuleRun,
    RuleRunStatus,
    Severity,
    SuggestionEngine,
)
from ecoplan.tree import ImpactNode, ImpactTreeBuilder, TreeResolver

logger = logging.getLogger(__name__)

STRUCTURAL_NODE_IDS = ("complexity", "recursive_expansion")
STRUCTURAL_BREAKDOWN_THRESHOLD = 0.9
LEAF_BREAKDOWN_THRESHOLD = 0.5
NO_BOTTLENECK = "No dominant bottleneck"


class Offender(BaseModel):
    """A high-impact leaf of the resolved tree."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    value: float
    description: str | None = None


class AnalysisReport(BaseModel):
    """
    Complete result of analyzing one plan.

    Contains:
    - execution_time_ms / exec_time_in_explain / execution_time_source:
      the time used for scoring and where it came from
    - economic_impact: projected cost for `frequency` executions on `provider`
    - efficiency_score: (1 - root impact) * 100
    - suggestions: explained suggestions, most severe first
    - impact_tree: resolved tree in dict form, for visualization
    - top_offenders / breakdown: the leaves to look at first
    - rule_runs: PASS/SKIP/FAIL status of each library template
    """

    model_config = ConfigDict(frozen=True)

    execution_time_ms: float = Field(..., description="Execution time used for scoring")
    exec_time_in_explain: bool = Field(
        ..., description="True if the time was measured, False if estimated from cost"
    )
    execution_time_source: TimeSource
    economic_impact: float = Field(..., description="Projected cost for `frequency` executions")
    provider: CloudProvider
    frequency: int = Field(..., description="Executions per accounting period")
    efficiency_score: float = Field(..., ge=0.0, le=100.0)
    suggestions: tuple[ExplainedSuggestion, ...] = Field(default_factory=tuple)
    impact_tree: dict[str, Any] = Field(default_factory=dict)
    top_offenders: tuple[Offender, ...] = Field(default_factory=tuple)
    breakdown: str = Field(default=NO_BOTTLENECK, description="One-line root cause")
    metrics: RawMetrics
    flags: StructuralFlags
    green: GreenMetrics
    rule_runs: tuple[RuleRun, ...] = Field(default_factory=tuple)
    analysis_duration_ms: float = Field(default=0.0, description="Wall time of the analysis")

    @property
    def has_critical(self) -> bool:
        """Check if any critical suggestion was produced."""
        return any(s.severity is Severity.CRITICAL for s in self.suggestions)

    def suggestions_by_severity(self, severity: Severity) -> list[ExplainedSuggestion]:
        """Get all suggestions of a specific severity."""
        return [s for s in self.suggestions if s.severity is severity]

    def rule_runs_by_status(self, status: RuleRunStatus) -> list[RuleRun]:
        """Get all rule runs with a specific status."""
        return [r for r in self.rule_runs if r.status is status]

    def headlines(self) -> dict[str, list[str]]:
        """Legacy shape: suggestion titles and their remedies, index-aligned."""
        return {
            "list": [s.title for s in self.suggestions],
            "solucion": [s.remedy for s in self.suggestions],
        }

    def summary(self) -> dict[str, int | float | str | bool]:
        """Counts by severity and rule status."""
        return {
            "total": len(self.suggestions),
            "critical": len(self.suggestions_by_severity(Severity.CRITICAL)),
            "high": len(self.suggestions_by_severity(Severity.HIGH)),
            "medium": len(self.suggestions_by_severity(Severity.MEDIUM)),
            "rules_passed": len(self.rule_runs_by_status(RuleRunStatus.PASS)),
            "rules_skipped": len(self.rule_runs_by_status(RuleRunStatus.SKIP)),
            "rules_failed": len(self.rule_runs_by_status(RuleRunStatus.FAIL)),
            "efficiency_score": round(self.efficiency_score, 2),
        }

    def to_json(self, indent: int = 2) -> str:
        """Serialize to JSON string."""
        return self.model_dump_json(indent=indent)


def build_breakdown(root: ImpactNode, offenders: list[ImpactNode]) -> str:
    """
    One-line root cause.

    A structural node at or above 0.9 wins; otherwise the top leaf if it
    reaches 0.5; otherwise no single bottleneck is named.
    """
    structural = [
        node for node in root.iter_nodes()
        if node.id in STRUCTURAL_NODE_IDS and node.value >= STRUCTURAL_BREAKDOWN_THRESHOLD
    ]
    if structural:
        worst = max(structural, key=lambda node: node.value)
        return f"Structural bottleneck: {worst.label} ({worst.value:.0%})"

    if offenders and offenders[0].value >= LEAF_BREAKDOWN_THRESHOLD:
        top = offenders[0]
        return f"Primary bottleneck: {top.label} ({top.value:.0%})"

    return NO_BOTTLENECK


class AnalysisService:
    """
    Runs extraction, scoring, economics and suggestions for a plan.

    Example:
        service = AnalysisService()
        report = service.analyze(plan_text, provider="GCP", frequency=5000)
        print(report.efficiency_score, report.breakdown)
    """

    def __init__(self, config: Config | None = None) -> None:
        self.config = config or get_config()
        self.config.validate_scoring()

        self.builder = ImpactTreeBuilder(branch_weights=self.config.branch_weights)
        self.resolver = TreeResolver(
            dominance_threshold=self.config.dominance_threshold,
            dominance_amplifier=self.config.dominance_amplifier,
            total_impact_tolerance=self.config.total_impact_tolerance,
        )
        self.engine = SuggestionEngine(config=self.config)

    def analyze(
        self,
        plan_text: str,
        provider: CloudProvider | str | None = None,
        frequency: int | float | None = None,
    ) -> AnalysisReport:
        """
        Analyze a textual EXPLAIN (ANALYZE) plan.

        Args:
            plan_text: Raw plan text (any string, including empty)
            provider: Cloud provider for the cost projection (default from config)
            frequency: Executions per accounting period (default from config, clamped)

        Returns:
            AnalysisReport for the plan
        """
        start_time = time.perf_counter()
        plan_text = plan_text or ""

        if provider is None:
            provider = self.config.default_provider
        elif not isinstance(provider, CloudProvider):
            provider = CloudProvider.from_string(provider)

        if frequency is None:
            frequency = self.config.default_frequency
        frequency = self.config.clamp_frequency(frequency)

        metrics = extract_metrics(plan_text)
        flags = classify(plan_text, metrics)
        logger.debug(
            "Extracted %d nodes, %.3f ms (%s), flags=%s",
            metrics.node_count,
            metrics.execution_time_ms,
            metrics.execution_time_source.value,
            flags.active(),
        )

        tree = self.builder.build(metrics, flags)
        saturation = self.resolver.resolve(tree)
        offenders = self.resolver.top_offenders(tree, self.config.top_offenders_count)

        context = ExplanationContext(
            impact_tree=tree,
            impact_saturation=saturation,
            dominant_nodes=[
                node for node in tree.iter_nodes()
                if node.value >= self.config.dominance_threshold
            ],
            metrics=metrics,
            flags=flags,
            plan=plan_text,
        )
        suggestions, rule_runs = self.engine.generate(context)

        duration_ms = (time.perf_counter() - start_time) * 1000
        logger.info(
            "Analysis complete: root=%.3f, %d suggestions in %.1fms",
            saturation, len(suggestions), duration_ms,
        )

        return AnalysisReport(
            execution_time_ms=metrics.execution_time_ms,
            exec_time_in_explain=metrics.exec_time_in_explain,
            execution_time_source=metrics.execution_time_source,
            economic_impact=calculate_cost(metrics, frequency, provider),
            provider=provider,
            frequency=frequency,
            efficiency_score=self.resolver.efficiency_score(saturation),
            suggestions=tuple(suggestions),
            impact_tree=tree.to_dict(),
            top_offenders=tuple(
                Offender(
                    id=leaf.id,
                    label=leaf.label,
                    value=round(leaf.value, 4),
                    description=leaf.description,
                )
                for leaf in offenders
            ),
            breakdown=build_breakdown(tree, offenders),
            metrics=metrics,
            flags=flags,
            green=calculate_environmental_impact(metrics.execution_time_ms, frequency),
            rule_runs=tuple(rule_runs),
            analysis_duration_ms=duration_ms,
        )
