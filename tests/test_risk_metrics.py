"""
Tests for rolling performance metrics.
"""

import pytest

from anoa.services.risk_metrics import (
    calculate_all_metrics,
    calculate_max_drawdown,
    calculate_sharpe_ratio,
    calculate_win_rate,
)


@pytest.mark.unit
class TestSharpeRatio:
    """Tests for calculate_sharpe_ratio."""

    def test_needs_two_trades(self):
        assert calculate_sharpe_ratio([]) == 0.0
        assert calculate_sharpe_ratio([5.0]) == 0.0

    def test_constant_positive_series(self):
        assert calculate_sharpe_ratio([2.0, 2.0, 2.0]) == 3.0

    def test_constant_non_positive_series(self):
        assert calculate_sharpe_ratio([-1.0, -1.0]) == 0.0
        assert calculate_sharpe_ratio([0.0, 0.0]) == 0.0

    def test_annualized(self):
        """mean / sample std * sqrt(250)"""
        assert calculate_sharpe_ratio([10.0, -9.9]) == pytest.approx(0.0562, abs=1e-4)

    def test_clamped(self):
        assert calculate_sharpe_ratio([1.0, 2.0, 3.0]) == 5.0
        assert calculate_sharpe_ratio([-1.0, -2.0, -3.0]) == -5.0


@pytest.mark.unit
class TestMaxDrawdown:
    """Tests for calculate_max_drawdown."""

    def test_fraction_of_peak(self):
        """Equity 100 -> 110 -> 88 -> 93: drawdown 22/110."""
        assert calculate_max_drawdown([10.0, -22.0, 5.0], 100.0) == pytest.approx(0.2)

    def test_no_losses(self):
        assert calculate_max_drawdown([1.0, 2.0], 100.0) == 0.0

    def test_zero_base_never_positive(self):
        assert calculate_max_drawdown([-5.0, -1.0], 0.0) == 0.0

    def test_zero_base_with_gains(self):
        assert calculate_max_drawdown([10.0, -5.0], 0.0) == 0.5

    def test_bounded_at_one(self):
        assert calculate_max_drawdown([-500.0], 100.0) == 1.0


@pytest.mark.unit
class TestWinRate:
    def test_win_rate(self):
        """Break-even trades are not wins."""
        assert calculate_win_rate([1.0, -1.0, 0.0, 2.0]) == 50.0
        assert calculate_win_rate([1.0, 1.0, -1.0]) == 66.67
        assert calculate_win_rate([]) == 0.0


def test_all_metrics():
    metrics = calculate_all_metrics([10.0, -22.0, 5.0], 100.0)
    assert metrics.total_trades == 3
    assert metrics.win_rate == 66.67
    assert metrics.max_drawdown == pytest.approx(0.2)
