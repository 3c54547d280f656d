"""
Economic and environmental impact of a query.

Converts RawMetrics into a projected monetary cost for a cloud provider and
a carbon footprint. Both are pure functions over metrics and constant
tables, independent of the impact tree, so they can be re-run for other
providers or frequencies without re-extracting.

cost = (exec_ms * compute_rate + io_units * io_rate) * surcharge * frequency

where io_units weights temp/disk pages more heavily than shared buffers,
and surcharge is STRUCTURAL_RISK_SURCHARGE when a cartesian product or a
seq scan inside a loop is present.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from ecoplan.extraction.models import RawMetrics

PAGE_SIZE_KB = 8
STRUCTURAL_RISK_SURCHARGE = 1.2

# Green metrics: average database node draw, grid intensity, tree absorption
SERVER_WATTAGE = 250.0
CARBON_INTENSITY_G_PER_KWH = 475.0
TREE_ABSORPTION_G_PER_DAY = 60.0


class CloudProvider(str, Enum):
    """Supported cloud rate tables."""

    AWS = "AWS"
    GCP = "GCP"
    AZURE = "Azure"

    @classmethod
    def from_string(cls, value: str) -> "CloudProvider":
        """Parse a provider name case-insensitively, defaulting to AWS."""
        for provider in cls:
            if provider.value.lower() == value.strip().lower():
                return provider
        return cls.AWS


@dataclass(frozen=True)
class CloudPricing:
    """Reference rates for one provider (average memory-optimized instance)."""

    compute_unit_cost_per_ms: float
    io_cost_per_buffer: float


CLOUD_RATES: Mapping[CloudProvider, CloudPricing] = MappingProxyType({
    CloudProvider.AWS: CloudPricing(0.000012, 0.0000005),
    CloudProvider.GCP: CloudPricing(0.000010, 0.0000004),
    CloudProvider.AZURE: CloudPricing(0.000011, 0.0000006),
})

# Relative energy cost of one page of each I/O kind
ENERGY_INTENSITY: Mapping[str, float] = MappingProxyType({
    "shared_buffer": 1.0,
    "temp_page": 4.0,
})


@dataclass(frozen=True)
class GreenMetrics:
    """Carbon footprint for a frequency of executions."""

    energy_kwh: float
    co2_grams: float
    tree_equivalent: float


def io_energy_units(metrics: RawMetrics) -> float:
    """Shared buffers plus temp-file pages, weighted by ENERGY_INTENSITY."""
    temp_pages = metrics.temp_files_mb * 1024 / PAGE_SIZE_KB
    return (
        metrics.total_buffers_read * ENERGY_INTENSITY["shared_buffer"]
        + temp_pages * ENERGY_INTENSITY["temp_page"]
    )


def structural_surcharge(metrics: RawMetrics) -> float:
    if metrics.is_cartesian or metrics.seq_scan_in_loop:
        return STRUCTURAL_RISK_SURCHARGE
    return 1.0


def calculate_cost(
    metrics: RawMetrics,
    frequency: float,
    rates: CloudPricing | CloudProvider = CloudProvider.AWS,
) -> float:
    """
    Projected monetary cost of running the query `frequency` times.

    Args:
        metrics: Extracted plan metrics
        frequency: Executions per accounting period (negative treated as 0)
        rates: A rate table, or a provider whose table is looked up

    Returns:
        Cost in the rate table's currency
    """
    if isinstance(rates, CloudProvider):
        rates = CLOUD_RATES[rates]

    if not math.isfinite(frequency) or frequency < 0:
        frequency = 0.0

    per_execution = (
        metrics.execution_time_ms * rates.compute_unit_cost_per_ms
        + io_energy_units(metrics) * rates.io_cost_per_buffer
    )
    return per_execution * structural_surcharge(metrics) * frequency


def calculate_environmental_impact(
    execution_time_ms: float,
    frequency: float,
) -> GreenMetrics:
    """Energy, CO2 and tree-day equivalent for `frequency` executions."""
    if not math.isfinite(frequency) or frequency < 0:
        frequency = 0.0
    hours = max(0.0, execution_time_ms) * frequency / (1000 * 60 * 60)
    energy_kwh = hours * SERVER_WATTAGE / 1000
    co2_grams = energy_kwh * CARBON_INTENSITY_G_PER_KWH

    return GreenMetrics(
        energy_kwh=energy_kwh,
        co2_grams=co2_grams,
        tree_equivalent=co2_grams / TREE_ABSORPTION_G_PER_DAY,
    )
