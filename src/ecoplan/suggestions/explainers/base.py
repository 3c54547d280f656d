"""
Base class for suggestion explainers.

An explainer turns a matched suggestion into something a person can act on:
- extract_evidence(): short, concrete facts pulled from the plan and metrics
- build_explanation(): markdown diagnosis and remedy, often naming tables,
  columns and conditions parsed out of the plan text

Explainers register themselves for one or more template ids with the
@register_explainer decorator. GenericExplainer is the explicit fallback
for templates without a dedicated strategy.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from ecoplan.extraction.models import RawMetrics
    from ecoplan.suggestions.models import EvaluatedSuggestion, ExplanationContext
    from ecoplan.tree.node import ImpactNode

_ALIAS_PREFIX_RE = re.compile(r"\b[a-z0-9_]+\.")
_CAST_RE = re.compile(
    r"::(?:character varying|double precision|"
    r"timestamp with(?:out)? time zone|[a-zA-Z0-9_]+)(?:\[\])?"
)


def strip_aliases(condition: str) -> str:
    """Drop table/alias qualifiers: "t1.status = x" -> "status = x"."""
    return _ALIAS_PREFIX_RE.sub("", condition)


def strip_casts(condition: str) -> str:
    """Drop PostgreSQL casts: "'a'::text" -> "'a'"."""
    return _CAST_RE.sub("", condition)


def truncate(text: str, limit: int = 60) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


class Explainer(ABC):
    """
    Strategy for one family of suggestions.

    Subclasses set `template_ids` and implement both operations.

    Example:
        @register_explainer
        class DiskSortExplainer(Explainer):
            template_ids = ("DISK_SORT",)
            ...
    """

    template_ids: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        """
        Concrete evidence lines for the suggestion.

        Args:
            plan: Raw plan text
            metrics: Extracted metrics

        Returns:
            Short evidence strings (may be empty)
        """
        ...

    @abstractmethod
    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        """
        Markdown narrative: what is wrong, why it costs, how to fix it.

        Args:
            suggestion: The evaluated suggestion being explained
            node: Triggering node re-fetched from the resolved tree
            context: Tree, saturation, metrics, flags and plan text

        Returns:
            Markdown text
        """
        ...


class GenericExplainer(Explainer):
    """Fallback that renders only the template's static text."""

    def extract_evidence(self, plan: str, metrics: "RawMetrics") -> list[str]:
        return []

    def build_explanation(
        self,
        suggestion: "EvaluatedSuggestion",
        node: "ImpactNode | None",
        context: "ExplanationContext",
    ) -> str:
        label = node.label if node is not None else suggestion.triggering_node.id
        value = node.value if node is not None else suggestion.score
        return (
            f"### {suggestion.text}\n\n"
            f"Triggered by **{label}** at {value:.0%} impact.\n\n"
            f"#### Recommended fix\n{suggestion.remedy}"
        )
