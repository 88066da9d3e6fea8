from decimal import Decimal

import pytest

from alufab.errors import InvalidCutError
from alufab.services import units


def test_linear_conversion():
    assert units.convert(Decimal("1"), "ft", "inches") == Decimal("12")
    assert units.convert(Decimal("1828.8"), "mm", "ft") == Decimal("6")
    assert units.convert(Decimal("2.5"), "m", "cm") == Decimal("250")


def test_area_conversion():
    assert units.convert(Decimal("1"), "sqm", "sqmm") == Decimal("1000000")
    assert units.convert(Decimal("2"), "sqft", "sqin") == Decimal("288")


def test_aliases():
    assert units.normalize_unit(" Feet ") == "ft"
    assert units.is_linear("inch")
    assert units.unit_kind("sq ft") == "area"
    assert units.unit_kind("pcs") == "count"
    assert units.unit_kind("bags") is None


def test_incompatible_units():
    with pytest.raises(InvalidCutError):
        units.convert(Decimal("1"), "ft", "sqft")


def test_same_length_across_units():
    assert units.same_length(Decimal("15"), "ft", Decimal("180"), "inches")
    assert not units.same_length(Decimal("12"), "ft", Decimal("15"), "ft")


@pytest.mark.parametrize("value,tolerance,expected", [
    ("5.875", "0.01", "5.88"),
    ("5.874", "0.01", "5.87"),
    ("7.3", "0.25", "7.25"),
    ("7.375", "0.25", "7.50"),
    ("4", "0", "4"),
])
def test_round_to_tolerance(value, tolerance, expected):
    assert units.round_to(Decimal(value), Decimal(tolerance)) == Decimal(expected)


def test_format_length():
    assert units.format_length(Decimal("15.0000"), "ft") == "15 ft"
