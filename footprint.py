"""
Emission factors and the per-submission footprint calculation.

EMISSION_FACTORS is the only coefficient table in the service; both the
calculator below and the lifetime aggregator read it.
"""

from typing import Any, Dict, Optional

EMISSION_FACTORS: Dict[str, Any] = {
    # kg CO2 per unit distance
    "transport": {"car": 0.15, "bus": 0.08, "train": 0.045, "bike": 0.0},
    # kg CO2 per kWh
    "electricity": 0.65,
    # flat kg CO2 per submission
    "diet": {"vegan": 1.0, "vegetarian": 2.0, "omnivore": 6.0},
}

# Enumeration order used by the breakdown and the recommendations
TRANSPORT_MODES = ("car", "bus", "bike", "train")


def transport_coefficient(mode: Optional[str]) -> float:
    return EMISSION_FACTORS["transport"].get(mode, 0.0) if mode else 0.0


def electricity_coefficient() -> float:
    return EMISSION_FACTORS["electricity"]


def diet_coefficient(diet: Optional[str]) -> float:
    return EMISSION_FACTORS["diet"].get(diet, 0.0) if diet else 0.0


def footprint_contributions(
    distance: Optional[float] = None,
    mode: Optional[str] = None,
    electricity_usage: Optional[float] = None,
    diet: Optional[str] = None,
) -> Dict[str, float]:
    """Split one submission into its transport, electricity and diet parts.

    Missing numbers count as 0; unknown modes and diets contribute 0.
    """
    return {
        "transport": (distance or 0) * transport_coefficient(mode),
        "electricity": (electricity_usage or 0) * electricity_coefficient(),
        "diet": diet_coefficient(diet),
    }


def compute_footprint(
    distance: Optional[float] = None,
    mode: Optional[str] = None,
    electricity_usage: Optional[float] = None,
    diet: Optional[str] = None,
) -> float:
    """Footprint in kg CO2 for a single activity submission."""
    parts = footprint_contributions(distance, mode, electricity_usage, diet)
    return parts["transport"] + parts["electricity"] + parts["diet"]
