"""
Unit conversion for lengths, areas and counts.

Linear values are converted through millimetres and areas through square
millimetres so every factor is an exact decimal (1 in = 25.4 mm,
1 ft = 304.8 mm).
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from ..errors import InvalidCutError

LINEAR_UNITS = {
    "mm": Decimal("1"),
    "cm": Decimal("10"),
    "m": Decimal("1000"),
    "inches": Decimal("25.4"),
    "ft": Decimal("304.8"),
}

AREA_UNITS = {
    "sqmm": Decimal("1"),
    "sqcm": Decimal("100"),
    "sqm": Decimal("1000000"),
    "sqin": Decimal("645.16"),
    "sqft": Decimal("92903.04"),
}

COUNT_UNITS = {"pcs", "piece", "item", "unit", "set"}

ALIASES = {
    "millimeter": "mm", "millimeters": "mm", "millimetre": "mm",
    "centimeter": "cm", "centimeters": "cm",
    "meter": "m", "meters": "m", "metre": "m", "metres": "m",
    "inch": "inches", "in": "inches", '"': "inches",
    "foot": "ft", "feet": "ft", "'": "ft",
    "sq ft": "sqft", "sq.ft": "sqft", "sq m": "sqm", "sq.m": "sqm",
    "sq in": "sqin", "sq mm": "sqmm", "sq cm": "sqcm",
    "pc": "pcs", "pieces": "piece", "items": "item", "units": "unit", "sets": "set",
}


def normalize_unit(unit: Optional[str]) -> str:
    if unit is None:
        raise InvalidCutError("Unit is required")
    key = unit.strip().lower()
    return ALIASES.get(key, key)


def unit_kind(unit: str) -> Optional[str]:
    """'linear', 'area', 'count' or None for an unknown unit."""
    unit = normalize_unit(unit)
    if unit in LINEAR_UNITS:
        return "linear"
    if unit in AREA_UNITS:
        return "area"
    if unit in COUNT_UNITS:
        return "count"
    return None


def is_linear(unit: str) -> bool:
    return unit_kind(unit) == "linear"


def convert(value, from_unit: str, to_unit: str) -> Decimal:
    """Convert a quantity between two units of the same kind."""
    value = Decimal(value)
    src = normalize_unit(from_unit)
    dst = normalize_unit(to_unit)
    if src == dst:
        return value

    if src in LINEAR_UNITS and dst in LINEAR_UNITS:
        return value * LINEAR_UNITS[src] / LINEAR_UNITS[dst]
    if src in AREA_UNITS and dst in AREA_UNITS:
        return value * AREA_UNITS[src] / AREA_UNITS[dst]
    if src in COUNT_UNITS and dst in COUNT_UNITS:
        return value

    raise InvalidCutError(f"Cannot convert from '{from_unit}' to '{to_unit}'", from_unit=from_unit, to_unit=to_unit)


def same_length(a, a_unit: str, b, b_unit: str) -> bool:
    """Exact comparison of two lengths that may be recorded in different units."""
    return convert(a, a_unit, "mm") == convert(b, b_unit, "mm")


def round_to(value: Decimal, tolerance: Decimal) -> Decimal:
    """Round ``value`` to the nearest multiple of ``tolerance`` (half up)."""
    tolerance = Decimal(tolerance)
    if tolerance <= 0:
        return value
    steps = (Decimal(value) / tolerance).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return steps * tolerance


def format_length(value, unit: str) -> str:
    return f"{Decimal(value).normalize():f} {unit}"
