"""
Unit conversion and weighted average cost.

Pure functions; no database needed.
"""

from decimal import Decimal

import pytest

from tokopos.errors import ValidationError
from tokopos.money import fits_stock_precision, q_money, to_decimal
from tokopos.services.costing import cost_per_base_unit, recompute_average_cost
from tokopos.services.unit_conversion import to_base_unit, validate_conversion_factor


class TestToBaseUnit:
    def test_box_of_twelve(self):
        assert to_base_unit(3, 12) == Decimal("36")

    def test_fractional_quantity(self):
        """Half a box of 12 is 6 base units."""
        assert to_base_unit(Decimal("0.5"), 12) == Decimal("6")

    def test_fractional_factor_rounds_to_stock_precision(self):
        assert to_base_unit(Decimal("1"), Decimal("0.3333")) == Decimal("0.333")

    def test_zero_qty(self):
        assert to_base_unit(0, 12) == Decimal("0")

    @pytest.mark.parametrize("factor", [0, -1, "0"])
    def test_non_positive_factor_rejected(self, factor):
        with pytest.raises(ValidationError):
            to_base_unit(1, factor)

    def test_validate_conversion_factor(self):
        assert validate_conversion_factor("12") == Decimal("12")
        with pytest.raises(ValidationError):
            validate_conversion_factor("abc")
        with pytest.raises(ValidationError):
            validate_conversion_factor(0)

    def test_conversion_factor_rounded_to_column_precision(self):
        assert validate_conversion_factor("0.33335") == Decimal("0.3334")

    def test_conversion_factor_rounding_to_zero_rejected(self):
        with pytest.raises(ValidationError):
            validate_conversion_factor("0.00004")


class TestWeightedAverageCost:
    def test_blends_existing_and_incoming(self):
        # 10 @ 4000 + 10 @ 5000 -> 4500
        assert recompute_average_cost(4000, 10, 10, 5000) == Decimal("4500.0000")

    def test_uneven_quantities(self):
        # (4000 * 30 + 4600 * 10) / 40 = 4150
        assert recompute_average_cost(4000, 30, 10, 4600) == Decimal("4150.0000")

    def test_empty_stock_takes_incoming_cost(self):
        assert recompute_average_cost(4000, 0, 5, 4800) == Decimal("4800.0000")

    def test_negative_stock_takes_incoming_cost(self):
        assert recompute_average_cost(4000, -3, 5, 4800) == Decimal("4800.0000")

    def test_missing_average_treated_as_zero(self):
        # (0 * 10 + 3000 * 10) / 20
        assert recompute_average_cost(None, 10, 10, 3000) == Decimal("1500.0000")

    def test_rounding_half_up(self):
        # (1000 * 2 + 1001 * 1) / 3 = 1000.33333...
        assert recompute_average_cost(1000, 2, 1, 1001) == Decimal("1000.3333")

    def test_cost_per_base_unit(self):
        assert cost_per_base_unit(54000, 12) == Decimal("4500.0000")


class TestMoney:
    def test_float_goes_through_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_none_is_zero(self):
        assert to_decimal(None) == Decimal("0")

    def test_bool_rejected(self):
        with pytest.raises(ValueError):
            to_decimal(True)

    def test_garbage_rejected(self):
        with pytest.raises(ValueError):
            to_decimal("12abc")

    def test_money_rounds_half_up(self):
        assert q_money("10.005") == Decimal("10.01")

    def test_stock_precision(self):
        assert fits_stock_precision("1.005")
        assert fits_stock_precision(Decimal("2.500"))
        assert not fits_stock_precision("1.0005")
