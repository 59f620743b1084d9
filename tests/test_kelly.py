"""
Tests for Kelly stake sizing
Run with: pytest tests/test_kelly.py -v
"""

import pytest

from arb_scanner.core.errors import InputValidationError, InvalidPriceError
from arb_scanner.core.kelly import kelly_fraction, kelly_stake


class TestKellyFraction:

    def test_positive_edge(self):
        # b=1, p=0.6, q=0.4 → 0.2
        assert kelly_fraction(2.0, 60) == pytest.approx(0.2)

    def test_no_edge_is_zero(self):
        assert kelly_fraction(2.0, 50) == pytest.approx(0.0)

    def test_negative_edge_clamped(self):
        assert kelly_fraction(1.5, 50) == 0.0

    def test_certain_win(self):
        assert kelly_fraction(3.0, 100) == pytest.approx(1.0)


class TestKellyStake:

    def test_non_positive_edge_stakes_nothing(self):
        assert kelly_stake(1.5, 50, 1000) == 0

    def test_full_is_double_half(self):
        full = kelly_stake(2.0, 60, 1000, fraction=1.0)
        half = kelly_stake(2.0, 60, 1000, fraction=0.5)
        assert full == 200.0
        assert full == 2 * half

    def test_default_is_half_kelly(self):
        assert kelly_stake(2.0, 60, 1000) == 100.0

    def test_rounded_to_cents(self):
        stake = kelly_stake(2.37, 47.3, 1234.56, fraction=0.25)
        assert stake == round(stake, 2)

    def test_zero_bankroll(self):
        assert kelly_stake(2.0, 60, 0) == 0.0


class TestKellyValidation:

    @pytest.mark.parametrize("price", [1.0, 0.5])
    def test_price_must_exceed_one(self, price):
        with pytest.raises(InvalidPriceError):
            kelly_stake(price, 60, 1000)

    @pytest.mark.parametrize("prob", [-5, 101])
    def test_probability_range(self, prob):
        with pytest.raises(InputValidationError):
            kelly_stake(2.0, prob, 1000)

    def test_negative_bankroll(self):
        with pytest.raises(InputValidationError):
            kelly_stake(2.0, 60, -1)

    @pytest.mark.parametrize("fraction", [0, -0.5, 1.5])
    def test_fraction_range(self, fraction):
        with pytest.raises(InputValidationError):
            kelly_stake(2.0, 60, 1000, fraction=fraction)
