from __future__ import annotations

"""Medication dosing and unit conversion arithmetic."""

import math
from dataclasses import dataclass
from typing import Any, Literal, Optional

from ems_protocols.utils.validators import INVALID_NUMBER_MESSAGE, parse_non_negative

LBS_PER_KG = 2.20462
MCG_PER_MG = 1000.0

DRIP_SETS = {
    10: "10 gtts/mL (Macro)",
    15: "15 gtts/mL (Macro)",
    20: "20 gtts/mL (Macro)",
    60: "60 gtts/mL (Micro)",
}
DEFAULT_DRIP_SET = 60

ZERO_CONCENTRATION_MESSAGE = (
    "Cannot calculate volume: Drug concentration is zero but dose is required."
)

WeightUnit = Literal["kg", "lbs"]
DoseUnit = Literal["mg_kg", "mcg_kg"]


class CalculationError(ValueError):
    """Raised when calculator inputs are outside the domain of a formula."""


@dataclass(frozen=True)
class WeightDoseResult:
    weight_kg: float
    total_dose_mg: float
    volume_ml: Optional[float]
    summary: str

    @property
    def calculable(self) -> bool:
        return self.volume_ml is not None


@dataclass(frozen=True)
class DripRateResult:
    drops_per_minute: int
    summary: str


@dataclass(frozen=True)
class ConversionResult:
    value: float
    converted: float
    summary: str


def _number(value: Any) -> float:
    parsed = parse_non_negative(value)
    if parsed is None:
        raise CalculationError(INVALID_NUMBER_MESSAGE)
    return parsed


def weight_based_dose(
    weight: Any,
    concentration_mg: Any,
    dose: Any,
    *,
    concentration_ml: Any = 1,
    weight_unit: WeightUnit = "kg",
    dose_unit: DoseUnit = "mg_kg",
) -> WeightDoseResult:
    """Total dose and volume to administer for a weight-based order.

    A zero drug concentration with a nonzero required dose is reported through
    ``summary`` with ``volume_ml`` set to ``None``.
    """

    if weight_unit not in ("kg", "lbs"):
        raise CalculationError(f"Unsupported weight unit: {weight_unit}")
    if dose_unit not in ("mg_kg", "mcg_kg"):
        raise CalculationError(f"Unsupported dose unit: {dose_unit}")

    weight_value = _number(weight)
    weight_kg = weight_value / LBS_PER_KG if weight_unit == "lbs" else weight_value

    conc_mg = _number(concentration_mg)
    conc_ml = _number(concentration_ml)
    if conc_ml == 0:
        raise CalculationError("Concentration volume (mL) cannot be zero.")
    mg_per_ml = conc_mg / conc_ml

    dose_value = _number(dose)
    total_dose_mg = weight_kg * dose_value
    if dose_unit == "mcg_kg":
        total_dose_mg /= MCG_PER_MG

    if mg_per_ml == 0:
        if total_dose_mg != 0:
            return WeightDoseResult(
                weight_kg=weight_kg,
                total_dose_mg=total_dose_mg,
                volume_ml=None,
                summary=ZERO_CONCENTRATION_MESSAGE,
            )
        volume_ml = 0.0
    else:
        volume_ml = total_dose_mg / mg_per_ml

    return WeightDoseResult(
        weight_kg=weight_kg,
        total_dose_mg=total_dose_mg,
        volume_ml=volume_ml,
        summary=(
            f"Total Dose: {total_dose_mg:.2f} mg. "
            f"Volume to Administer: {volume_ml:.2f} mL."
        ),
    )


def drip_rate(volume_ml: Any, time_min: Any, drip_set: Any = DEFAULT_DRIP_SET) -> DripRateResult:
    """IV drip rate in drops per minute."""

    volume = _number(volume_ml)
    minutes = _number(time_min)
    drops_per_ml = _number(drip_set)
    if minutes == 0:
        raise CalculationError("Time cannot be zero.")

    # Half-up rounding; inputs are non-negative so floor(x + 0.5) suffices.
    rate = math.floor(volume * drops_per_ml / minutes + 0.5)
    return DripRateResult(drops_per_minute=rate, summary=f"Drip Rate: {rate} gtts/min.")


def lbs_to_kg(value: Any) -> ConversionResult:
    pounds = _number(value)
    kilograms = pounds / LBS_PER_KG
    return ConversionResult(
        value=pounds,
        converted=kilograms,
        summary=f"{pounds:.2f} lbs = {kilograms:.2f} kg.",
    )


def kg_to_lbs(value: Any) -> ConversionResult:
    kilograms = _number(value)
    pounds = kilograms * LBS_PER_KG
    return ConversionResult(
        value=kilograms,
        converted=pounds,
        summary=f"{kilograms:.2f} kg = {pounds:.2f} lbs.",
    )
