"""
Explainer strategies.

Importing this package registers every built-in explainer with the
global registry.
"""

from ecoplan.suggestions.explainers.base import (
    Explainer,
    GenericExplainer,
    strip_aliases,
    strip_casts,
    truncate,
)
from ecoplan.suggestions.explainers.filtering import (
    HighWasteExplainer,
    InefficientIndexExplainer,
    MissingIndexExplainer,
    PoorFilteringExplainer,
    build_index_sql,
    filter_columns,
)
from ecoplan.suggestions.explainers.joins import (
    CartesianExplainer,
    InefficientJoinExplainer,
    NestedLoopExplainer,
)
from ecoplan.suggestions.explainers.memory import DiskSortExplainer
from ecoplan.suggestions.explainers.recursion import RecursiveBombExplainer
from ecoplan.suggestions.explainers.structure import (
    ParallelismExplainer,
    StructuralComplexityExplainer,
)

__all__ = [
    "CartesianExplainer",
    "DiskSortExplainer",
    "Explainer",
    "GenericExplainer",
    "HighWasteExplainer",
    "InefficientIndexExplainer",
    "InefficientJoinExplainer",
    "MissingIndexExplainer",
    "NestedLoopExplainer",
    "ParallelismExplainer",
    "PoorFilteringExplainer",
    "RecursiveBombExplainer",
    "StructuralComplexityExplainer",
    "build_index_sql",
    "filter_columns",
    "strip_aliases",
    "strip_casts",
    "truncate",
]
