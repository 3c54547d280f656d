"""
Suggestion engine: turns a resolved impact tree into explained suggestions.

Pipeline:
1. Evaluate  - match each library template against its trigger nodes
2. Severity  - baseline, rule escalations, saturation promotion
3. Filter    - drop low-value noise when the plan is saturated
4. Collapse  - deduplicate per template or per node
5. Explain   - evidence and narrative from the explainer registry

Each template evaluation is recorded as a RuleRun (PASS/SKIP/FAIL) so that
a crashing validator is visible without aborting the rest of the library.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Iterable

from ecoplan.config import CollapseMode, Config, get_config
from ecoplan.exceptions import ExplainerError, RuleError
from ecoplan.suggestions.library import SUGGESTION_LIBRARY, finalize_remedy
from ecoplan.suggestions.models import (
    EvaluatedSuggestion,
    ExplainedSuggestion,
    ExplanationContext,
    ImpactSummary,
    RuleRun,
    RuleRunStatus,
    Severity,
    SuggestionKind,
    SuggestionTemplate,
    TriggeringNode,
)
from ecoplan.suggestions.registry import ExplainerRegistry, get_registry
from ecoplan.suggestions.severity import evaluate_severity
from ecoplan.tree.resolver import TreeResolver

if TYPE_CHECKING:
    from ecoplan.suggestions.explainers.base import Explainer
    from ecoplan.tree.node import ImpactNode

logger = logging.getLogger(__name__)

# Tie-break between suggestions on different nodes in NODE collapse mode
NODE_PRECEDENCE: dict[str, int] = {
    "recursive_expansion": 100,
    "parallel": 90,
    "complexity": 85,
    "waste": 40,
    "mem": 30,
    "io": 20,
}


def _rank_key(suggestion: EvaluatedSuggestion) -> tuple[int, float]:
    return (-suggestion.severity.rank, -suggestion.score)


def _node_rank_key(suggestion: EvaluatedSuggestion) -> tuple[int, int, float]:
    return (
        -suggestion.severity.rank,
        -NODE_PRECEDENCE.get(suggestion.triggering_node.id, 0),
        -suggestion.score,
    )


def sort_suggestions(suggestions: Iterable[EvaluatedSuggestion]) -> list[EvaluatedSuggestion]:
    """Severity descending, then score descending (stable)."""
    return sorted(suggestions, key=_rank_key)


def filter_saturated(
    suggestions: list[EvaluatedSuggestion],
    impact_saturation: float,
    threshold: float,
) -> list[EvaluatedSuggestion]:
    """Drop info-level and opportunistic suggestions when saturation exceeds threshold."""
    if impact_saturation <= threshold:
        return list(suggestions)
    return [
        s for s in suggestions
        if s.severity is not Severity.INFO and s.kind is not SuggestionKind.OPPORTUNISTIC
    ]


def collapse(
    suggestions: list[EvaluatedSuggestion],
    mode: CollapseMode = CollapseMode.TEMPLATE,
    max_suggestions: int | None = None,
) -> list[EvaluatedSuggestion]:
    """
    Deduplicate suggestions.

    Args:
        suggestions: Evaluated suggestions in any order
        mode: TEMPLATE keeps the best match per template id,
              NODE keeps the best suggestion per triggering node
        max_suggestions: Optional cap on the result

    Returns:
        Deduplicated suggestions, severity then score descending
        (NODE mode breaks severity ties by NODE_PRECEDENCE first)
    """
    kept: dict[str, EvaluatedSuggestion] = {}

    if mode is CollapseMode.NODE:
        ordered = sorted(suggestions, key=_node_rank_key)
        for suggestion in ordered:
            kept.setdefault(suggestion.triggering_node.id, suggestion)
        result = sorted(kept.values(), key=_node_rank_key)
    else:
        for suggestion in sort_suggestions(suggestions):
            current = kept.get(suggestion.template_id)
            if current is None or suggestion.score > current.score:
                kept[suggestion.template_id] = suggestion
        result = sort_suggestions(kept.values())

    if max_suggestions is not None and max_suggestions >= 0:
        result = result[:max_suggestions]
    return result


class SuggestionEngine:
    """
    Runs the suggestion library against an explanation context.

    Example:
        engine = SuggestionEngine()
        explained, rule_runs = engine.generate(context)
    """

    def __init__(
        self,
        config: Config | None = None,
        registry: ExplainerRegistry | None = None,
        library: tuple[SuggestionTemplate, ...] = SUGGESTION_LIBRARY,
    ) -> None:
        self.config = config or get_config()
        self.registry = registry if registry is not None else get_registry()
        self.library = library
        self.resolver = TreeResolver(total_impact_tolerance=self.config.total_impact_tolerance)

    def generate(
        self,
        context: ExplanationContext,
    ) -> tuple[list[ExplainedSuggestion], list[RuleRun]]:
        """
        Run the full pipeline.

        Args:
            context: Resolved tree, saturation, metrics, flags and plan text

        Returns:
            Tuple of (explained suggestions, one RuleRun per template)

        Raises:
            RuleError: If a validator raises and fail_fast is enabled
            ExplainerError: If an explainer raises and fail_fast is enabled
        """
        evaluated, rule_runs = self.evaluate(context)
        evaluated = filter_saturated(
            evaluated,
            context.impact_saturation,
            self.config.saturation_filter_threshold,
        )
        evaluated = collapse(
            evaluated,
            mode=self.config.collapse_mode,
            max_suggestions=self.config.max_suggestions,
        )

        total = self.resolver.total_impact(context.impact_tree)
        explained = [self.explain(s, context, total) for s in evaluated]
        return explained, rule_runs

    def evaluate(
        self,
        context: ExplanationContext,
    ) -> tuple[list[EvaluatedSuggestion], list[RuleRun]]:
        """Match every template and compute severities, tracking PASS/SKIP/FAIL."""
        matches: list[EvaluatedSuggestion] = []
        rule_runs: list[RuleRun] = []

        for template in self.library:
            if not self.config.is_rule_enabled(template.id):
                rule_runs.append(RuleRun(
                    rule_id=template.id,
                    status=RuleRunStatus.SKIP,
                    skip_reason="Disabled by configuration",
                ))
                logger.debug("Rule %s skipped: disabled by configuration", template.id)
                continue

            rule_start = time.perf_counter()
            try:
                template_matches = self._match(template, context)
                runtime_ms = (time.perf_counter() - rule_start) * 1000
                matches.extend(template_matches)
                rule_runs.append(RuleRun(
                    rule_id=template.id,
                    status=RuleRunStatus.PASS,
                    runtime_ms=runtime_ms,
                    matches=len(template_matches),
                ))

            except Exception as e:
                runtime_ms = (time.perf_counter() - rule_start) * 1000

                if self.config.fail_fast:
                    raise RuleError(template.id, e) from e

                rule_runs.append(RuleRun(
                    rule_id=template.id,
                    status=RuleRunStatus.FAIL,
                    runtime_ms=runtime_ms,
                    error_summary=str(e),
                ))
                logger.warning("Rule %s failed: %s", template.id, e)

        return sort_suggestions(matches), rule_runs

    def _match(
        self,
        template: SuggestionTemplate,
        context: ExplanationContext,
    ) -> list[EvaluatedSuggestion]:
        nodes = [
            node for node in context.impact_tree.iter_nodes()
            if node.id in template.trigger_nodes and node.value >= template.min_impact
        ]
        if not nodes:
            return []

        if template.validate is not None and not template.validate(context.plan):
            return []

        severity = evaluate_severity(
            template,
            context.metrics,
            context.impact_saturation,
            self.config.saturation_escalation_threshold,
        )
        return [
            EvaluatedSuggestion(
                template_id=template.id,
                kind=template.kind,
                severity=severity,
                text=template.text,
                remedy=template.remedy,
                triggering_node=TriggeringNode(id=node.id, value=node.value),
                score=node.value,
            )
            for node in nodes
        ]

    def explain(
        self,
        suggestion: EvaluatedSuggestion,
        context: ExplanationContext,
        total_impact: float,
    ) -> ExplainedSuggestion:
        """Attach evidence, narrative and share of blame to one suggestion."""
        node = context.impact_tree.find(suggestion.triggering_node.id)
        value = node.value if node is not None else suggestion.score
        contribution = round(value / total_impact * 100) if total_impact > 0 else 0

        remedy = finalize_remedy(
            suggestion.remedy,
            context.metrics,
            template_id=suggestion.template_id,
            dominant_nodes=context.dominant_nodes,
        )
        suggestion = suggestion.model_copy(update={"remedy": remedy})

        explainer = self.registry.resolve(suggestion.template_id)
        evidence, explanation = self._run_explainer(explainer, suggestion, node, context)

        return ExplainedSuggestion(
            id=suggestion.template_id,
            kind=suggestion.kind,
            severity=suggestion.severity,
            title=suggestion.text,
            explanation=explanation,
            evidence=evidence,
            remedy=remedy,
            impact_summary=ImpactSummary(
                node=suggestion.triggering_node.id,
                value=round(value, 4),
                contribution=contribution,
            ),
        )

    def _run_explainer(
        self,
        explainer: "Explainer",
        suggestion: EvaluatedSuggestion,
        node: "ImpactNode | None",
        context: ExplanationContext,
    ) -> tuple[list[str], str]:
        try:
            evidence = explainer.extract_evidence(context.plan, context.metrics)
            explanation = explainer.build_explanation(suggestion, node, context)
            return evidence, explanation
        except Exception as e:
            if self.config.fail_fast:
                raise ExplainerError(suggestion.template_id, e) from e
            logger.warning(
                "Explainer for %s failed, using generic output: %s",
                suggestion.template_id, e,
            )

        fallback = self.registry.fallback
        return (
            fallback.extract_evidence(context.plan, context.metrics),
            fallback.build_explanation(suggestion, node, context),
        )
