"""Extraction layer - plan text to typed metrics and structural flags."""

from ecoplan.extraction.extractor import (
    COST_TO_MS,
    EXECUTION_TIME_EPSILON_MS,
    calculate_waste_ratio,
    extract_metrics,
)
from ecoplan.extraction.flags import classify
from ecoplan.extraction.models import RawMetrics, StructuralFlags, TimeSource

__all__ = [
    "COST_TO_MS",
    "EXECUTION_TIME_EPSILON_MS",
    "RawMetrics",
    "StructuralFlags",
    "TimeSource",
    "calculate_waste_ratio",
    "classify",
    "extract_metrics",
]
