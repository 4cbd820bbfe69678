from decimal import Decimal

import pytest

from amounts import (
    MAX_UINT256,
    canonicalize,
    compact_balance,
    format_for_display,
    prevent_scientific_notation,
    rounds_to_zero,
    to_base_units,
    to_decimal_string,
    validate_amount_precision,
)
from errors import InvalidAmount, InvalidDecimals, PrecisionLoss


def test_decimals_heterogeneity():
    assert to_base_units("1.5", 6) == 1500000
    assert to_base_units("1.5", 18) == 1500000000000000000


def test_no_float_leakage_on_wide_amounts():
    assert to_base_units("509287.390999000000026626", 18) == 509287390999000000026626


def test_zero_handling():
    assert to_base_units("0", 18) == 0
    assert to_base_units("0.000", 6) == 0
    assert to_decimal_string(0, 18) == "0"


def test_usdc_end_to_end():
    units = to_base_units("100.5", 6)
    assert units == 100500000
    assert to_decimal_string(units, 6) == "100.5"


def test_one_wei_is_not_zero():
    units = to_base_units("0.000000000000000001", 18)
    assert units == 1
    assert to_decimal_string(units, 18) == "0.000000000000000001"


_ROUND_TRIP_CASES = [
    (0, ["0", "1", "007", "1000000", "42.000", str(MAX_UINT256)]),
    (6, ["1", "0.1", "123.456", "0.000001", "007.500", "1000000", "42.000"]),
    (18, ["0.000000000000000001", "509287.390999000000026626", "1.5", "100"]),
    (255, ["0." + "0" * 254 + "1", "0." + "0" * 200 + "123", "0." + "0" * 180 + "5", "0"]),
]


@pytest.mark.parametrize(
    "decimals,amount",
    [(d, a) for d, amounts in _ROUND_TRIP_CASES for a in amounts],
)
def test_round_trip_matches_canonical_form(decimals, amount):
    assert to_decimal_string(to_base_units(amount, decimals), decimals) == canonicalize(amount)


def test_extra_digits_raise_precision_loss():
    with pytest.raises(PrecisionLoss) as exc:
        to_base_units("1.0000001", 6)
    assert exc.value.code == "precision_loss"
    assert exc.value.data["decimals"] == 6


def test_trailing_zeros_beyond_decimals_are_not_a_loss():
    assert to_base_units("1.5000000", 6) == 1500000


def test_max_decimals():
    tiny = "0." + "0" * 254 + "1"
    assert to_base_units(tiny, 255) == 1
    assert to_decimal_string(1, 255) == tiny


@pytest.mark.parametrize("decimals", [-1, 256, 1.5, True, "18"])
def test_invalid_decimals(decimals):
    with pytest.raises(InvalidDecimals):
        to_base_units("1", decimals)


@pytest.mark.parametrize("amount", ["-1", "abc", "", "   ", "1_000", "NaN", "Infinity", None, True, [1]])
def test_invalid_amounts(amount):
    with pytest.raises(InvalidAmount):
        to_base_units(amount, 18)


def test_uint256_overflow_is_rejected():
    assert to_base_units(str(MAX_UINT256), 0) == MAX_UINT256
    with pytest.raises(InvalidAmount):
        to_base_units(str(MAX_UINT256 + 1), 0)
    with pytest.raises(InvalidAmount):
        to_base_units("1e80", 18)


def test_int_and_decimal_inputs():
    assert to_base_units(3, 6) == 3000000
    assert to_base_units(Decimal("2.25"), 2) == 225


def test_float_input_uses_shortest_repr():
    assert to_base_units(0.1, 18) == 10**17
    with pytest.raises(PrecisionLoss):
        to_base_units(1e-7, 6)


def test_base_units_string_forms():
    assert to_decimal_string("1500000", 6) == "1.5"
    assert to_decimal_string("0x10", 0) == "16"
    assert to_decimal_string("1e3", 0) == "1000"
    with pytest.raises(InvalidAmount):
        to_decimal_string("1.5", 0)
    with pytest.raises(InvalidAmount):
        to_decimal_string(-1, 6)


def test_canonicalize_and_scientific_notation():
    assert canonicalize("007.500") == "7.5"
    assert canonicalize("100") == "100"
    assert canonicalize("0.000") == "0"
    assert prevent_scientific_notation("1e-7") == "0.0000001"
    assert prevent_scientific_notation("1.5") == "1.5"
    assert prevent_scientific_notation(1e21) == "1000000000000000000000"
    with pytest.raises(InvalidAmount):
        prevent_scientific_notation("abc")


def test_exponential_input_is_expanded_through_decimal():
    assert to_base_units("5.0928739099900000003e+23", 0) == 509287390999000000030000
    assert to_base_units("1e-6", 6) == 1
    with pytest.raises(PrecisionLoss):
        to_base_units("1.5e-6", 6)


def test_validate_amount_precision():
    assert validate_amount_precision("1.123456", 6) is True
    assert validate_amount_precision("1.1234567", 6) is False
    assert validate_amount_precision("-1", 6) is False


def test_rounds_to_zero():
    assert rounds_to_zero(1, 18, 4) is True
    assert rounds_to_zero(10**14, 18, 4) is False
    assert rounds_to_zero(0, 18, 4) is False


def test_format_for_display_fixed_width():
    assert format_for_display(1, 18, fixed_width=4) == "<0.0001"
    assert format_for_display(1234567500000, 6, fixed_width=2, group_thousands=True) == "1,234,567.50"
    assert format_for_display(0, 18, fixed_width=2) == "0.00"


def test_format_for_display_keeps_first_significant_digit():
    assert format_for_display("0.000123456", 18, max_fraction_digits=2) == "0.0001"
    assert format_for_display("1.23456", 18, max_fraction_digits=2) == "1.23"
    assert format_for_display("1.999", 18, max_fraction_digits=0) == "1"


def test_compact_balance():
    assert compact_balance(0) == "0.00"
    assert compact_balance(1, 18) == "<0.000001"
    assert compact_balance("0.5", 18) == "0.5000"
    assert compact_balance("12.345", 18) == "12.35"
    assert compact_balance("1234.5678", 18) == "1235"
