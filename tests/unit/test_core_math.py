"""
test_core_math.py - Unit tests for the pure calculation functions in core.py

Tests:
- Constants
- USD valuation and its inverse
- Health factor, including the zero-debt sentinel
- Liquidation bonus
- Checked arithmetic and invalid feed answers
"""

import pytest

from solvency import (
    PRECISION, FEED_PRECISION_ADJUST, LIQUIDATION_THRESHOLD, LIQUIDATION_PRECISION,
    LIQUIDATION_BONUS, MIN_HEALTH_FACTOR, UINT256_MAX,
    calculate_usd_value, calculate_token_amount,
    calculate_health_factor, calculate_liquidation_bonus,
    InvalidPrice, ArithmeticOverflow, ArithmeticUnderflow, SolvencyError,
)
from solvency.core import checked_add, checked_sub, checked_mul, scale_price


ETH = 10**18
USD = 10**18
ETH_PRICE = 2000 * 10**8


class TestConstants:

    def test_precision_values(self):
        assert PRECISION == 10**18
        assert FEED_PRECISION_ADJUST == 10**10
        assert MIN_HEALTH_FACTOR == PRECISION

    def test_liquidation_parameters(self):
        assert LIQUIDATION_THRESHOLD * 2 == LIQUIDATION_PRECISION
        assert LIQUIDATION_BONUS == 10

    def test_uint256_max(self):
        assert UINT256_MAX == 2**256 - 1


class TestUsdValue:
    """Tests for calculate_usd_value()."""

    def test_fifteen_eth(self):
        assert calculate_usd_value(ETH_PRICE, 15 * ETH) == 30_000 * USD

    def test_zero_amount_is_zero(self):
        assert calculate_usd_value(ETH_PRICE, 0) == 0

    def test_rounds_down(self):
        # 1 wei at $2000 is 2000e-18 USD -> 2000 units
        assert calculate_usd_value(ETH_PRICE, 1) == 2000
        # $1.23456789 per unit of an 18-decimal asset, 1 wei
        assert calculate_usd_value(123456789, 1) == 1

    def test_scale_price(self):
        assert scale_price(ETH_PRICE) == 2000 * PRECISION

    def test_zero_answer_rejected(self):
        with pytest.raises(InvalidPrice) as exc:
            calculate_usd_value(0, ETH)
        assert exc.value.answer == 0

    def test_negative_answer_rejected(self):
        with pytest.raises(InvalidPrice):
            calculate_usd_value(-1, ETH)

    def test_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            calculate_usd_value(ETH_PRICE, UINT256_MAX)


class TestTokenAmount:
    """Tests for calculate_token_amount()."""

    def test_hundred_dollars_of_eth(self):
        assert calculate_token_amount(ETH_PRICE, 100 * USD) == 5 * 10**16

    def test_inverse_of_usd_value(self):
        amount = 7 * ETH + 123
        usd = calculate_usd_value(ETH_PRICE, amount)
        assert calculate_token_amount(ETH_PRICE, usd) == amount

    def test_rounds_down(self):
        # $2500 at $1400 = 1.785714285714285714... ETH
        assert calculate_token_amount(1400 * 10**8, 2500 * USD) == 1785714285714285714

    def test_zero_answer_rejected(self):
        with pytest.raises(InvalidPrice):
            calculate_token_amount(0, 100 * USD)


class TestHealthFactor:
    """Tests for calculate_health_factor()."""

    def test_zero_debt_is_max(self):
        assert calculate_health_factor(0, 20_000 * USD) == UINT256_MAX

    def test_zero_debt_and_zero_collateral_is_max(self):
        assert calculate_health_factor(0, 0) == UINT256_MAX

    def test_two_and_a_half(self):
        # ($20,000 * 50%) / $4,000
        assert calculate_health_factor(4_000 * USD, 20_000 * USD) == 25 * 10**17

    def test_exactly_one(self):
        assert calculate_health_factor(10_000 * USD, 20_000 * USD) == MIN_HEALTH_FACTOR

    def test_below_one(self):
        factor = calculate_health_factor(11_000 * USD, 20_000 * USD)
        assert factor < MIN_HEALTH_FACTOR
        assert factor == 10_000 * USD * PRECISION // (11_000 * USD)

    def test_no_collateral_with_debt_is_zero(self):
        assert calculate_health_factor(100 * USD, 0) == 0

    def test_threshold_applied_before_division(self):
        # 3 units of collateral value: 3 * 50 // 100 == 1
        assert calculate_health_factor(1, 3) == PRECISION


class TestLiquidationBonus:

    def test_ten_percent(self):
        assert calculate_liquidation_bonus(10 * ETH) == ETH

    def test_rounds_down(self):
        assert calculate_liquidation_bonus(1785714285714285714) == 178571428571428571
        assert calculate_liquidation_bonus(9) == 0


class TestCheckedArithmetic:

    def test_add(self):
        assert checked_add(1, 2) == 3
        assert checked_add(UINT256_MAX - 1, 1) == UINT256_MAX

    def test_add_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            checked_add(UINT256_MAX, 1)

    def test_sub(self):
        assert checked_sub(5, 5) == 0

    def test_sub_underflow(self):
        with pytest.raises(ArithmeticUnderflow):
            checked_sub(4, 5)

    def test_mul_overflow(self):
        with pytest.raises(ArithmeticOverflow):
            checked_mul(2**128, 2**128)

    def test_arithmetic_errors_are_both_kinds(self):
        """Callers can catch either the engine base class or ArithmeticError."""
        assert issubclass(ArithmeticUnderflow, SolvencyError)
        assert issubclass(ArithmeticUnderflow, ArithmeticError)
        assert issubclass(ArithmeticOverflow, ArithmeticError)
