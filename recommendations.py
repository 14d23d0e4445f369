"""
Threshold-based advisories derived from a lifetime breakdown.
"""

from typing import Any, Dict, List

from footprint import TRANSPORT_MODES

# Average kg CO2 per submission above which a bucket is flagged
THRESHOLDS = {
    "car": 5.0,
    "bus": 3.0,
    "bike": 0.5,
    "train": 2.0,
    "electricity": 10.0,
    "diet": 20.0,
}

_MODE_ADVICE = {
    "car": "Consider carpooling, public transport or cycling for shorter trips.",
    "bus": "Consider switching some trips to train or bike.",
    "bike": "Consider walking for the shortest trips.",
    "train": "Consider combining trips or choosing closer destinations.",
}

GREAT_JOB = "Great job! Your carbon footprint looks sustainable. Keep it up!"


def _average(bucket: Dict[str, Any]) -> float:
    count = bucket.get("count") or 0
    return (bucket.get("value") or 0) / count if count else 0.0


def _transport_advice(mode: str, bucket: Dict[str, Any]) -> str:
    if not bucket.get("count"):
        return f"You haven't used {mode} travel yet."
    average = _average(bucket)
    if average > THRESHOLDS[mode]:
        return (
            f"Your {mode} emissions average {average:.2f} kg CO2 per entry, above normal. "
            + _MODE_ADVICE[mode]
        )
    return f"Your {mode} emissions ({average:.2f} kg CO2 per entry) are within an acceptable range."


def recommend(breakdown: Dict[str, Any]) -> List[str]:
    """Advisories for a `{transport, electricity, diet}` breakdown.

    Per-mode transport messages come first in car, bus, bike, train order,
    then an overall transport message, then electricity and diet.
    """
    transport = breakdown.get("transport") or {}
    recommendations: List[str] = []

    total_value = 0.0
    total_count = 0
    for mode in TRANSPORT_MODES:
        bucket = transport.get(mode) or {}
        recommendations.append(_transport_advice(mode, bucket))
        total_value += bucket.get("value") or 0
        total_count += bucket.get("count") or 0

    overall = total_value / total_count if total_count else 0.0
    if overall > max(THRESHOLDS[mode] for mode in TRANSPORT_MODES):
        recommendations.append(
            f"Your overall transport emissions average {overall:.2f} kg CO2 per entry, which is high. "
            "Try to rely more on low-carbon modes like bus, train or bike."
        )
    else:
        recommendations.append(
            f"Your overall transport emissions ({overall:.2f} kg CO2 per entry) are sustainable."
        )

    electricity = _average(breakdown.get("electricity") or {})
    if electricity > THRESHOLDS["electricity"]:
        recommendations.append(
            f"Your electricity emissions average {electricity:.2f} kg CO2 per entry, above normal. "
            "Switch off idle devices and consider energy-efficient appliances."
        )
    else:
        recommendations.append("Your electricity usage is within a normal range.")

    diet = _average(breakdown.get("diet") or {})
    if diet > THRESHOLDS["diet"]:
        recommendations.append(
            f"Your diet emissions average {diet:.2f} kg CO2 per entry, above normal. "
            "Try adding more plant-based meals."
        )
    else:
        recommendations.append("Your diet emissions are within a normal range.")

    if not recommendations:
        recommendations.append(GREAT_JOB)
    return recommendations
