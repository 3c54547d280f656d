"""EcoPlan - performance, scalability and environmental scoring of PostgreSQL plans."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from ecoplan.exceptions import (
    EcoPlanError,
    ExtractionError,
    AnalyzerError,
    RuleError,
    ExplainerError,
    ConfigurationError,
)

from ecoplan.config import CollapseMode, Config, RuleConfig, get_config, reset_config
from ecoplan.economics import (
    CloudPricing,
    CloudProvider,
    GreenMetrics,
    calculate_cost,
    calculate_environmental_impact,
)
from ecoplan.extraction import RawMetrics, StructuralFlags, TimeSource, classify, extract_metrics
from ecoplan.tree import ImpactNode, ImpactTreeBuilder, TreeResolver
from ecoplan.suggestions import (
    ExplainedSuggestion,
    RuleRun,
    RuleRunStatus,
    Severity,
    SuggestionEngine,
    SuggestionKind,
)

# Public API exports
from ecoplan.engine import AnalysisReport, AnalysisService, Offender

__all__ = [
    "__version__",
    # Exceptions
    "EcoPlanError",
    "ExtractionError",
    "AnalyzerError",
    "RuleError",
    "ExplainerError",
    "ConfigurationError",
    # Configuration
    "CollapseMode",
    "Config",
    "RuleConfig",
    "get_config",
    "reset_config",
    # Economics
    "CloudPricing",
    "CloudProvider",
    "GreenMetrics",
    "calculate_cost",
    "calculate_environmental_impact",
    # Extraction
    "RawMetrics",
    "StructuralFlags",
    "TimeSource",
    "classify",
    "extract_metrics",
    # Impact tree
    "ImpactNode",
    "ImpactTreeBuilder",
    "TreeResolver",
    # Suggestions
    "ExplainedSuggestion",
    "RuleRun",
    "RuleRunStatus",
    "Severity",
    "SuggestionEngine",
    "SuggestionKind",
    # Service
    "AnalysisReport",
    "AnalysisService",
    "Offender",
]
