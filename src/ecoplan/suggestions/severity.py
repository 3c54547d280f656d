"""
Severity computation for evaluated suggestions.

1. Baseline: the template's base severity, or its kind's baseline
   (corrective=high, preventive/optimization=medium, opportunistic=info).
2. Rule-specific escalation from domain thresholds (heap fetches, temp
   volume, recursion depth, cartesian row counts, loop counts).
3. Global escalation: under high saturation, medium is promoted to high.
   Crisis mode never downgrades anything.
"""

from __future__ import annotations

from typing import Callable

from ecoplan.extraction.models import RawMetrics
from ecoplan.suggestions.models import Severity, SuggestionTemplate

DEFAULT_ESCALATION_SATURATION = 0.8

Escalation = Callable[[Severity, RawMetrics], Severity]


def _max(a: Severity, b: Severity) -> Severity:
    return a if a >= b else b


def _inefficient_index(severity: Severity, metrics: RawMetrics) -> Severity:
    if metrics.heap_fetches > 50_000:
        return Severity.CRITICAL
    if metrics.waste_ratio > 0.9 or metrics.heap_fetches > 5_000:
        return _max(severity, Severity.HIGH)
    return severity


def _disk_sort(severity: Severity, metrics: RawMetrics) -> Severity:
    if metrics.temp_files_mb > 50:
        return Severity.CRITICAL
    if metrics.temp_files_mb > 10:
        return _max(severity, Severity.HIGH)
    return severity


def _recursive_bomb(severity: Severity, metrics: RawMetrics) -> Severity:
    if metrics.recursive_depth > 20_000:
        return Severity.CRITICAL
    if metrics.recursive_depth > 1_000:
        return _max(severity, Severity.HIGH)
    return severity


def _cartesian(severity: Severity, metrics: RawMetrics) -> Severity:
    # A cross join over a handful of rows is usually intentional
    if metrics.actual_rows < 100:
        return Severity.MEDIUM
    return Severity.CRITICAL


def _loop_explosion(severity: Severity, metrics: RawMetrics) -> Severity:
    if metrics.max_loops > 1_000_000:
        return Severity.CRITICAL
    return severity


RULE_ESCALATIONS: dict[str, Escalation] = {
    "INEFFICIENT_INDEX": _inefficient_index,
    "DISK_SORT": _disk_sort,
    "RECURSIVE_BOMB": _recursive_bomb,
    "CARTESIAN_PRODUCT": _cartesian,
    "LOOP_EXPLOSION": _loop_explosion,
}


def evaluate_severity(
    template: SuggestionTemplate,
    metrics: RawMetrics,
    impact_saturation: float,
    escalation_saturation: float = DEFAULT_ESCALATION_SATURATION,
) -> Severity:
    """
    Compute the severity of a template match.

    Args:
        template: Matched template
        metrics: Extracted metrics for the plan
        impact_saturation: Resolved root value of the impact tree
        escalation_saturation: Saturation above which medium becomes high

    Returns:
        Final severity
    """
    severity = template.base_severity

    escalate = RULE_ESCALATIONS.get(template.id)
    if escalate is not None:
        severity = escalate(severity, metrics)

    if impact_saturation > escalation_saturation and severity is Severity.MEDIUM:
        severity = Severity.HIGH

    return severity
