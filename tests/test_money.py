"""Tests for fixed-point money arithmetic."""

from decimal import Decimal

import pytest

from billbook.money import (
    ZERO,
    add,
    from_cents,
    integer_add,
    negate,
    operate,
    quantize,
    subtract,
    to_cents,
    total,
)


class TestOperate:
    """operate() must never leak binary-float artifacts."""

    @pytest.mark.parametrize("a,b,expected", [
        (0.10, 0.20, "0.30"),
        (0.01, 0.02, "0.03"),
        (1234.56, 9876.54, "11111.10"),
        ("0.10", "0.20", "0.30"),
        (Decimal("1234.56"), Decimal("9876.54"), "11111.10"),
    ])
    def test_add_is_exact(self, a, b, expected):
        """Test sums of two-place amounts are exact, whatever the input type."""
        assert operate(a, b, integer_add) == Decimal(expected)
        assert add(a, b) == Decimal(expected)

    def test_subtract_is_exact(self):
        """Test subtraction does not drift either."""
        assert subtract(0.3, 0.1) == Decimal("0.20")
        assert subtract("100.00", "30.00") == Decimal("70.00")

    def test_custom_operation(self):
        """Test the operation is pluggable and works on integer cents."""
        seen = []

        def record(a: int, b: int) -> int:
            seen.append((a, b))
            return a * 2 + b

        assert operate("1.50", "0.25", record) == Decimal("3.25")
        assert seen == [(150, 25)]

    def test_result_has_two_places(self):
        """Test results are always quantized to cents."""
        assert str(add(1, 2)) == "3.00"
        assert str(negate("5")) == "-5.00"

    def test_huge_amounts_do_not_overflow(self):
        """Test amounts far beyond the default decimal precision stay exact."""
        big = Decimal("1" + "0" * 30)
        assert add(big, 1) == Decimal("1" + "0" * 29 + "1.00")
        assert subtract(big, "0.01") == Decimal("9" * 30 + ".99")
        assert negate(big) == Decimal("-1" + "0" * 30 + ".00")

    def test_huge_cents_conversion(self):
        """Test conversions keep every digit of very large values."""
        assert to_cents("1e30") == 10 ** 32
        assert from_cents(10 ** 32 + 7) == Decimal("1" + "0" * 30 + ".07")
        assert to_cents(Decimal("123456789012345678901234567890.125")) == 12345678901234567890123456789013


class TestConversions:
    """Tests for the cents conversions."""

    def test_to_cents_rounds_half_away_from_zero(self):
        """Test round(value * 100) with halves going away from zero."""
        assert to_cents("0.005") == 1
        assert to_cents("-0.005") == -1
        assert to_cents("0.004") == 0

    def test_from_cents(self):
        """Test integer cents become a two-place Decimal."""
        assert from_cents(12345) == Decimal("123.45")
        assert from_cents(-5) == Decimal("-0.05")

    def test_quantize(self):
        """Test quantize normalizes to two places."""
        assert str(quantize(7)) == "7.00"
        assert quantize(0.1) == Decimal("0.10")

    def test_total(self):
        """Test summing a list goes through add."""
        assert total([0.1, 0.2, 0.3]) == Decimal("0.60")
        assert total([]) == ZERO
