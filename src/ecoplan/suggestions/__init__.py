"""Suggestion engine - rule library, severity, explainers and pipeline."""

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
from ecoplan.suggestions.library import SUGGESTION_LIBRARY, finalize_remedy, get_template
from ecoplan.suggestions.severity import evaluate_severity
from ecoplan.suggestions.registry import (
    ExplainerRegistry,
    get_registry,
    register_explainer,
)

# Registers the built-in explainers
from ecoplan.suggestions import explainers  # noqa: F401
from ecoplan.suggestions.engine import SuggestionEngine, collapse

__all__ = [
    "EvaluatedSuggestion",
    "ExplainedSuggestion",
    "ExplainerRegistry",
    "ExplanationContext",
    "ImpactSummary",
    "RuleRun",
    "RuleRunStatus",
    "SUGGESTION_LIBRARY",
    "Severity",
    "SuggestionEngine",
    "SuggestionKind",
    "SuggestionTemplate",
    "TriggeringNode",
    "collapse",
    "evaluate_severity",
    "finalize_remedy",
    "get_registry",
    "get_template",
    "register_explainer",
]
