"""
체결 보정 함수 테스트 (슬리피지 / 수수료)
"""

import pytest
from src.backtesting.execution import (
    apply_slippage, calculate_commission, apply_commission, LONG, SHORT, ENTRY, EXIT,
)


class TestSlippage:
    """방향/진입·청산별 불리한 방향 조정"""

    def test_long_entry_pays_up(self):
        assert apply_slippage(100.0, LONG, 0.1, ENTRY) == pytest.approx(100.1)

    def test_long_exit_sells_down(self):
        assert apply_slippage(100.0, LONG, 0.1, EXIT) == pytest.approx(99.9)

    def test_short_entry_sells_down(self):
        assert apply_slippage(100.0, SHORT, 0.1, ENTRY) == pytest.approx(99.9)

    def test_short_exit_pays_up(self):
        assert apply_slippage(100.0, SHORT, 0.1, EXIT) == pytest.approx(100.1)

    def test_zero_slippage(self):
        assert apply_slippage(100.0, LONG, 0.0) == 100.0

    def test_unknown_direction(self):
        assert apply_slippage(100.0, 'sideways', 0.5) == 100.0


class TestCommission:
    """거래 대금 대비 % 수수료"""

    def test_commission(self):
        assert calculate_commission(10_000, 0.1) == pytest.approx(10.0)

    def test_negative_amount_uses_absolute(self):
        assert calculate_commission(-10_000, 0.1) == pytest.approx(10.0)

    def test_zero_rate(self):
        assert calculate_commission(10_000, 0) == 0.0

    def test_apply_commission(self):
        assert apply_commission(10_000, 0.5) == pytest.approx(10_050.0)
