"""
Configuration system for EcoPlan.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional JSON/YAML config file for local development
- Tunable scoring constants (dominance, branch weights, saturation gates)
- Per-rule enable/disable switches

The scoring constants have drifted across historical versions of the
engine (dominance 0.85/0.9/0.95, scalability weight 0.25/0.30/0.35), so
they live here rather than being hard-coded in the tree or the resolver.

Usage:
    from ecoplan.config import get_config

    config = get_config()

    if config.is_rule_enabled("DISK_SORT"):
        ...
"""

from __future__ import annotations

import json
import logging
import math
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ecoplan.economics import CloudProvider
from ecoplan.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "ECOPLAN_"


class CollapseMode(str, Enum):
    """How duplicate suggestions are grouped before explanation."""

    TEMPLATE = "template"  # one per template id
    NODE = "node"          # one per triggering tree node (stricter)

    @classmethod
    def from_string(cls, value: str) -> "CollapseMode":
        """Parse a collapse mode, defaulting to TEMPLATE."""
        try:
            return cls(value.lower())
        except ValueError:
            return cls.TEMPLATE


class RuleConfig(BaseModel):
    """Configuration for a single suggestion template."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(default=True, description="Whether the rule is enabled")


class Config(BaseModel):
    """
    EcoPlan configuration.

    Loaded from environment variables and optional config file.
    """

    model_config = ConfigDict(frozen=True)

    # Resolver
    dominance_threshold: float = Field(
        default=0.85,
        description="Weighted average at which a dominant branch is amplified",
    )
    dominance_amplifier: float = Field(
        default=1.1,
        description="Multiplier applied when the dominance threshold is reached",
    )

    # Branch weights under the root
    perf_weight: float = Field(default=0.50, description="Weight of the Performance branch")
    scalability_weight: float = Field(default=0.35, description="Weight of the Scalability branch")
    eco_weight: float = Field(default=0.15, description="Weight of the Eco branch")

    # Suggestion engine
    saturation_filter_threshold: float = Field(
        default=0.7,
        description="Root impact above which info/opportunistic suggestions are dropped",
    )
    saturation_escalation_threshold: float = Field(
        default=0.8,
        description="Root impact above which medium severities are promoted to high",
    )
    total_impact_tolerance: float = Field(
        default=1.5,
        description="Node values above this are excluded from the total impact sum",
    )
    top_offenders_count: int = Field(
        default=3,
        description="Number of leaves reported as top offenders",
    )
    collapse_mode: CollapseMode = Field(
        default=CollapseMode.TEMPLATE,
        description="Suggestion grouping strategy",
    )
    max_suggestions: int | None = Field(
        default=None,
        description="Upper bound on explained suggestions (None = unlimited)",
    )
    fail_fast: bool = Field(
        default=False,
        description="Raise on the first failing rule instead of isolating it",
    )

    # Economics
    default_provider: CloudProvider = Field(
        default=CloudProvider.AWS,
        description="Cloud rate table used when none is given",
    )
    default_frequency: int = Field(
        default=1000,
        description="Executions per accounting period used when none is given",
    )

    # Input hygiene (applied by callers such as the CLI)
    max_plan_chars: int = Field(
        default=200_000,
        description="Plan text is truncated to this many characters",
    )
    min_frequency: int = Field(default=1, description="Lower clamp for frequency")
    max_frequency: int = Field(default=20_000_000, description="Upper clamp for frequency")

    rules: dict[str, RuleConfig] = Field(
        default_factory=dict,
        description="Per-rule configurations",
    )

    @property
    def branch_weights(self) -> dict[str, float]:
        """Branch id to weight mapping used by the tree builder."""
        return {
            "perf": self.perf_weight,
            "scalability": self.scalability_weight,
            "eco": self.eco_weight,
        }

    def is_rule_enabled(self, rule_id: str) -> bool:
        """Check if a rule is enabled."""
        if rule_id in self.rules:
            return self.rules[rule_id].enabled
        return True  # Rules enabled by default

    def clamp_frequency(self, frequency: int | float) -> int:
        """Clamp an execution frequency to the configured sane range."""
        if math.isnan(frequency):
            return self.min_frequency
        return int(max(self.min_frequency, min(self.max_frequency, frequency)))

    def validate_scoring(self) -> None:
        """
        Check that scoring constants keep the resolver's guarantees.

        Raises:
            ConfigurationError: If amplification would attenuate, a gate lies
                outside [0, 1], or a branch weight is negative.
        """
        if self.dominance_amplifier < 1.0:
            raise ConfigurationError(
                f"dominance_amplifier must be >= 1.0, got {self.dominance_amplifier}",
                config_key="dominance_amplifier",
            )
        for key in (
            "dominance_threshold",
            "saturation_filter_threshold",
            "saturation_escalation_threshold",
        ):
            value = getattr(self, key)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(
                    f"{key} must lie in [0, 1], got {value}",
                    config_key=key,
                )
        for branch, weight in self.branch_weights.items():
            if weight < 0:
                raise ConfigurationError(
                    f"Weight for branch '{branch}' must be non-negative, got {weight}",
                    config_key=f"{branch}_weight",
                )


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_env_int(value: str | None, default: int | None) -> int | None:
    """Parse integer from environment variable."""
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Could not parse integer %r, using %s", value, default)
        return default


def _parse_env_float(value: str | None, default: float) -> float:
    """Parse float from environment variable."""
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Could not parse float %r, using %s", value, default)
        return default


def load_config_from_env() -> Config:
    """
    Load configuration from environment variables.

    Environment variable naming convention:
    - ECOPLAN_<SETTING> for global settings
    - ECOPLAN_RULE_<RULE_ID>_ENABLED for rule switches

    Examples:
    - ECOPLAN_DOMINANCE_THRESHOLD=0.9
    - ECOPLAN_SCALABILITY_WEIGHT=0.25
    - ECOPLAN_COLLAPSE_MODE=node
    - ECOPLAN_RULE_PARTIAL_INDEX_ENABLED=false
    """
    env = os.environ
    defaults = Config()

    config_kwargs: dict[str, Any] = {
        "dominance_threshold": _parse_env_float(
            env.get("ECOPLAN_DOMINANCE_THRESHOLD"), defaults.dominance_threshold
        ),
        "dominance_amplifier": _parse_env_float(
            env.get("ECOPLAN_DOMINANCE_AMPLIFIER"), defaults.dominance_amplifier
        ),
        "perf_weight": _parse_env_float(
            env.get("ECOPLAN_PERF_WEIGHT"), defaults.perf_weight
        ),
        "scalability_weight": _parse_env_float(
            env.get("ECOPLAN_SCALABILITY_WEIGHT"), defaults.scalability_weight
        ),
        "eco_weight": _parse_env_float(
            env.get("ECOPLAN_ECO_WEIGHT"), defaults.eco_weight
        ),
        "saturation_filter_threshold": _parse_env_float(
            env.get("ECOPLAN_SATURATION_FILTER_THRESHOLD"),
            defaults.saturation_filter_threshold,
        ),
        "saturation_escalation_threshold": _parse_env_float(
            env.get("ECOPLAN_SATURATION_ESCALATION_THRESHOLD"),
            defaults.saturation_escalation_threshold,
        ),
        "total_impact_tolerance": _parse_env_float(
            env.get("ECOPLAN_TOTAL_IMPACT_TOLERANCE"), defaults.total_impact_tolerance
        ),
        "top_offenders_count": _parse_env_int(
            env.get("ECOPLAN_TOP_OFFENDERS_COUNT"), defaults.top_offenders_count
        ),
        "collapse_mode": CollapseMode.from_string(
            env.get("ECOPLAN_COLLAPSE_MODE", defaults.collapse_mode.value)
        ),
        "max_suggestions": _parse_env_int(
            env.get("ECOPLAN_MAX_SUGGESTIONS"), defaults.max_suggestions
        ),
        "fail_fast": _parse_env_bool(env.get("ECOPLAN_FAIL_FAST"), False),
        "default_provider": CloudProvider.from_string(
            env.get("ECOPLAN_PROVIDER", defaults.default_provider.value)
        ),
        "default_frequency": _parse_env_int(
            env.get("ECOPLAN_FREQUENCY"), defaults.default_frequency
        ),
        "max_plan_chars": _parse_env_int(
            env.get("ECOPLAN_MAX_PLAN_CHARS"), defaults.max_plan_chars
        ),
    }

    # Parse rule switches
    rules: dict[str, RuleConfig] = {}
    rule_prefix = f"{ENV_PREFIX}RULE_"

    for key, value in env.items():
        if not key.startswith(rule_prefix) or not key.endswith("_ENABLED"):
            continue
        rule_id = key[len(rule_prefix):-len("_ENABLED")]
        if rule_id:
            rules[rule_id] = RuleConfig(enabled=_parse_env_bool(value, True))

    config_kwargs["rules"] = rules

    return Config(**config_kwargs)


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON or YAML file.

    Falls back to environment variables when the file is missing or invalid.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        return Config(**data)
    except (OSError, ValueError, yaml.YAMLError, ValidationError, TypeError) as e:
        logger.error("Failed to load config from %s: %s", path, e)
        return load_config_from_env()


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. ECOPLAN_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get(f"{ENV_PREFIX}CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
