"""
Package-level exception hierarchy for EcoPlan.

The analysis pipeline is advisory and produces a best-effort report for any
plan text, so most of these are raised only at the edges:
- By configuration loading when a value cannot be interpreted
- By the suggestion engine when fail_fast is requested
- By the CLI when the input file cannot be read

Hierarchy:
    EcoPlanError
    ├── ExtractionError        – Plan text could not be accepted at all
    ├── AnalyzerError          – Errors during suggestion evaluation
    │   ├── RuleError          – A rule validator raised
    │   ├── ExplainerError     – An explainer strategy raised
    │   └── ConfigurationError – Invalid engine configuration
"""

from __future__ import annotations

from typing import Any


class EcoPlanError(Exception):
    """
    Base exception for all EcoPlan errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


class ExtractionError(EcoPlanError):
    """
    Plan input rejected before extraction.

    Attributes:
        source: Description of the input source (file path, "stdin", etc.).
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result


# ── Analysis Errors ──────────────────────────────────────────────────────


class AnalyzerError(EcoPlanError):
    """Errors during suggestion evaluation."""
    pass


class RuleError(AnalyzerError):
    """
    A suggestion template's validator failed.

    Attributes:
        rule_id: The template ID whose validator raised.
        original_error: The underlying exception.
    """

    def __init__(self, rule_id: str, original_error: Exception) -> None:
        self.rule_id = rule_id
        self.original_error = original_error
        message = (
            f"Rule '{rule_id}' failed: "
            f"{original_error.__class__.__name__}: {original_error}"
        )
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for JSON output / logging."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "rule_id": self.rule_id,
            "original_error_type": self.original_error.__class__.__name__,
            "original_error_message": str(self.original_error),
        }


class ExplainerError(AnalyzerError):
    """
    An explainer strategy failed while building evidence or narrative.

    Attributes:
        template_id: Template the explainer was handling.
        original_error: The underlying exception.
    """

    def __init__(self, template_id: str, original_error: Exception) -> None:
        self.template_id = template_id
        self.original_error = original_error
        super().__init__(
            f"Explainer for '{template_id}' failed: "
            f"{original_error.__class__.__name__}: {original_error}"
        )

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["template_id"] = self.template_id
        return result


class ConfigurationError(AnalyzerError):
    """
    Error in engine configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result
