"""Normalization functions mapping raw metrics onto [0, 1] leaf values."""

from __future__ import annotations

import math


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp to [low, high]; NaN collapses to low."""
    if math.isnan(value):
        return low
    return max(low, min(high, value))


def log_normalize(actual: float, critical: float) -> float:
    """
    Logarithmic saturation for exponentially growing metrics.

    clamp(log2(actual) / log2(critical)). Exactly 0 for actual <= 1 and for
    a degenerate critical threshold (<= 1). Monotonic in actual, and equal
    to 1 once actual reaches critical.
    """
    if actual <= 1 or critical <= 1:
        return 0.0
    if math.isinf(actual):
        return 1.0
    return clamp(math.log2(actual) / math.log2(critical))
