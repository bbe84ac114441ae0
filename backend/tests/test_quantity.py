"""Quantity value type tests."""

from decimal import Decimal

import pytest

from abacatrack.quantity import Quantity, QuantityType, total


@pytest.mark.unit
class TestQuantityParsing:
    def test_accepts_exact_inputs(self):
        assert Quantity(5) == Quantity("5")
        assert Quantity("12.5") == Quantity(Decimal("12.500"))
        assert Quantity(Quantity("3")) == 3

    def test_rejects_float(self):
        with pytest.raises(ValueError):
            Quantity(0.1)

    def test_rejects_bool(self):
        with pytest.raises(ValueError):
            Quantity(True)

    @pytest.mark.parametrize("bad", ["-1", "NaN", "Infinity", "1.0001", "abc", None])
    def test_rejects_invalid_values(self, bad):
        with pytest.raises(ValueError):
            Quantity(bad)

    def test_three_decimal_places_allowed(self):
        assert Quantity("0.001").to_units() == 1

    def test_str_is_normalized(self):
        assert str(Quantity("40.500")) == "40.5"
        assert str(Quantity("100")) == "100"
        assert repr(Quantity("2.25")) == "Quantity('2.25')"


@pytest.mark.unit
class TestQuantityArithmetic:
    def test_addition_is_exact(self):
        assert Quantity("0.1") + Quantity("0.2") == Quantity("0.3")

    def test_subtraction(self):
        assert Quantity(100) - Quantity(60) == Quantity(40)

    def test_subtraction_below_zero_raises(self):
        with pytest.raises(ValueError):
            Quantity(1) - Quantity(2)

    def test_compares_with_int_and_decimal(self):
        assert Quantity(10) > 9
        assert Quantity("10.5") < Decimal("11")
        assert Quantity(0).is_zero()
        assert not Quantity(0)

    def test_total(self):
        assert total([]) == Quantity.zero()
        assert total([Quantity(1), Quantity("2.5"), 3]) == Quantity("6.5")


@pytest.mark.unit
class TestQuantityStorage:
    def test_units_round_trip(self):
        q = Quantity("1234.567")
        assert q.to_units() == 1234567
        assert Quantity.from_units(q.to_units()) == q

    def test_column_type_binds_thousandths(self):
        col = QuantityType()
        assert col.process_bind_param(Quantity("2.5"), None) == 2500
        assert col.process_bind_param(Decimal("7"), None) == 7000
        assert col.process_bind_param(None, None) is None

    def test_column_type_reads_thousandths(self):
        col = QuantityType()
        assert col.process_result_value(2500, None) == Quantity("2.5")
        # Postgres returns SUM(bigint) as numeric
        assert col.process_result_value(Decimal("40000"), None) == Quantity(40)
        assert col.process_result_value(None, None) is None
