"""
백테스트 성과 분석 모듈

ResultAnalyzer 클래스:
- 전체 성과 (수익률, 연환산 수익률, 승률, Profit Factor)
- 리스크 지표 (MDD, 샤프/소르티노/칼마 비율)
- 거래 통계 (평균 손익, 연속 승/패, 최고/최악 거래, 평균 보유 기간)
- 자산 곡선 / 월별 수익률

모든 비율 계산은 0 나누기 시 0.0 반환 (NaN/inf 없음)
"""

from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from .portfolio import Position


TRADING_DAYS_PER_YEAR = 252


class ResultAnalyzer:
    """백테스트 결과 분석 클래스"""

    def __init__(self, positions: List[Position], initial_capital: float, final_capital: float,
                 equity_curve: Optional[List[dict]] = None):
        """
        초기화

        Args:
            positions: 포지션 리스트 (진입 순서, 청산 완료 기준)
            initial_capital: 초기 자본금
            final_capital: 최종 자본금
            equity_curve: [{'date', 'equity'}] 일별 자산 스냅샷 (선택)
        """
        self.positions = list(positions)
        self.initial_capital = initial_capital
        self.final_capital = final_capital
        self.equity_curve = list(equity_curve or [])

        self._pnls = [p.calculate_pnl() for p in self.positions]

    def analyze(self) -> Dict:
        """
        종합 성과 통계

        Returns:
            Dict: 리포트 생성기가 소비하는 유일한 결과 형식
        """
        return {
            # 자본
            'initial_capital': self.initial_capital,
            'final_capital': self.final_capital,

            # 전체 성과
            'total_return': self.total_return(),
            'annualized_return': self.annualized_return(),
            'total_trades': len(self.positions),
            'winning_trades': len(self._wins()),
            'losing_trades': len(self._losses()),
            'win_rate': self.win_rate(),
            'profit_factor': self.profit_factor(),

            # 리스크 지표
            'max_drawdown': self.max_drawdown(),
            'sharpe_ratio': self.sharpe_ratio(),
            'sortino_ratio': self.sortino_ratio(),
            'calmar_ratio': self.calmar_ratio(),

            # 거래 통계
            'avg_win': self.avg_win(),
            'avg_loss': self.avg_loss(),
            'avg_win_loss_ratio': self.avg_win_loss_ratio(),
            'avg_holding_period': self.avg_holding_period(),
            'best_trade': self.best_trade(),
            'worst_trade': self.worst_trade(),
            'consecutive_wins': self.consecutive_wins(),
            'consecutive_losses': self.consecutive_losses(),

            # 시계열
            'equity_curve': [dict(point) for point in self.equity_curve],
            'monthly_returns': self.monthly_returns(),
        }

    # ============================================================================
    # 1. 전체 성과
    # ============================================================================

    def _wins(self) -> List[float]:
        return [pnl for pnl in self._pnls if pnl > 0]

    def _losses(self) -> List[float]:
        return [pnl for pnl in self._pnls if pnl < 0]

    def total_return(self) -> float:
        """
        누적 수익률 (%, 소수 2자리)

        Examples:
            100,000 → 110,000: 10.0
        """
        if not self.initial_capital:
            return 0.0
        return round((self.final_capital - self.initial_capital) / self.initial_capital * 100, 2)

    def trading_days(self) -> int:
        """
        분석 기간 거래일 수

        자산 곡선이 있으면 스냅샷 개수, 없으면 첫 진입 ~ 마지막 청산 달력 일수
        """
        if self.equity_curve:
            return len(self.equity_curve)
        if not self.positions:
            return 0

        start = min(p.entry_date for p in self.positions)
        end = max((p.exit_date or p.entry_date) for p in self.positions)
        return (end - start).days

    def annualized_return(self) -> float:
        """
        연환산 수익률 (%, 252 거래일 기준)

        짧은 기간에 수익률이 커서 연환산 값이 float 범위를 넘으면 0.0
        """
        days = self.trading_days()
        if days == 0 or not self.initial_capital:
            return 0.0

        growth = self.final_capital / self.initial_capital
        if growth <= 0:
            return -100.0

        years = days / TRADING_DAYS_PER_YEAR
        with np.errstate(over='ignore'):
            annualized = (np.power(np.float64(growth), 1 / years) - 1) * 100
        if not np.isfinite(annualized):
            return 0.0
        return round(float(annualized), 2)

    def win_rate(self) -> float:
        """승률 (%, 수익 > 0 거래 비율)"""
        if not self.positions:
            return 0.0
        return round(len(self._wins()) / len(self.positions) * 100, 2)

    def profit_factor(self) -> float:
        """
        Profit Factor (총 이익 / 총 손실)

        손실이 0이면 이익이 있어도 0.0 반환
        """
        gross_profit = sum(self._wins())
        gross_loss = abs(sum(self._losses()))

        if gross_loss == 0:
            return 0.0
        return round(gross_profit / gross_loss, 2)

    # ============================================================================
    # 2. 리스크 지표
    # ============================================================================

    def period_returns(self) -> List[float]:
        """
        자산 곡선 기간 수익률 (소수)

        첫 스냅샷은 초기 자본금 대비
        """
        if not self.equity_curve:
            return []

        values = [self.initial_capital] + [point['equity'] for point in self.equity_curve]
        returns = []
        for prev, curr in zip(values, values[1:]):
            returns.append((curr - prev) / prev if prev else 0.0)
        return returns

    def max_drawdown(self) -> float:
        """
        최대 낙폭 (%, 양수, 소수 2자리)

        최고점은 초기 자본금에서 시작
        """
        if not self.equity_curve:
            return 0.0

        peak = self.initial_capital
        max_dd = 0.0
        for point in self.equity_curve:
            equity = point['equity']
            peak = max(peak, equity)
            if peak > 0:
                max_dd = max(max_dd, (peak - equity) / peak * 100)

        return round(max_dd, 2)

    def sharpe_ratio(self) -> float:
        """
        샤프 비율 (연환산, 무위험 수익률 0)

        Sharpe = mean(r) / std(r) × √252 (모표준편차)
        수익률이 없거나 표준편차가 0이면 0.0
        """
        returns = np.array(self.period_returns())
        if len(returns) == 0:
            return 0.0

        std_dev = returns.std()
        if np.isclose(std_dev, 0.0, atol=1e-12):
            return 0.0

        return round(float(returns.mean() / std_dev * np.sqrt(TRADING_DAYS_PER_YEAR)), 4)

    def sortino_ratio(self) -> float:
        """
        소르티노 비율 (연환산)

        하방 편차 = √(mean(r²), r < 0)
        하락 수익률이 없거나 하방 편차가 0이면 0.0
        """
        returns = np.array(self.period_returns())
        if len(returns) == 0:
            return 0.0

        downside = returns[returns < 0]
        if len(downside) == 0:
            return 0.0

        downside_dev = np.sqrt(np.mean(downside ** 2))
        if np.isclose(downside_dev, 0.0, atol=1e-12):
            return 0.0

        return round(float(returns.mean() / downside_dev * np.sqrt(TRADING_DAYS_PER_YEAR)), 4)

    def calmar_ratio(self) -> float:
        """칼마 비율 = 연환산 수익률 / MDD"""
        mdd = self.max_drawdown()
        if mdd == 0:
            return 0.0
        return round(self.annualized_return() / mdd, 4)

    # ============================================================================
    # 3. 거래 통계
    # ============================================================================

    def avg_win(self) -> float:
        wins = self._wins()
        return round(sum(wins) / len(wins), 2) if wins else 0.0

    def avg_loss(self) -> float:
        losses = self._losses()
        return round(sum(losses) / len(losses), 2) if losses else 0.0

    def avg_win_loss_ratio(self) -> float:
        avg_loss = self.avg_loss()
        if avg_loss == 0:
            return 0.0
        return round(self.avg_win() / abs(avg_loss), 2)

    def avg_holding_period(self) -> float:
        """평균 보유 기간 (달력 일수, 소수 1자리)"""
        if not self.positions:
            return 0.0
        return round(sum(p.holding_days() for p in self.positions) / len(self.positions), 1)

    @staticmethod
    def _trade_summary(position: Position) -> dict:
        return {
            'pnl': position.calculate_pnl(),
            'pnl_pct': position.calculate_pnl_pct(),
            'holding_days': position.holding_days(),
        }

    def best_trade(self) -> Optional[dict]:
        """최고 수익 거래 (없으면 None)"""
        if not self.positions:
            return None
        best = max(range(len(self.positions)), key=lambda i: self._pnls[i])
        return self._trade_summary(self.positions[best])

    def worst_trade(self) -> Optional[dict]:
        """최악 손실 거래 (없으면 None)"""
        if not self.positions:
            return None
        worst = min(range(len(self.positions)), key=lambda i: self._pnls[i])
        return self._trade_summary(self.positions[worst])

    def _longest_streak(self, predicate) -> int:
        max_streak = 0
        current_streak = 0

        for pnl in self._pnls:
            if predicate(pnl):
                current_streak += 1
                max_streak = max(max_streak, current_streak)
            else:
                current_streak = 0

        return max_streak

    def consecutive_wins(self) -> int:
        """최대 연속 수익 거래 수 (포지션 순서 기준)"""
        return self._longest_streak(lambda pnl: pnl > 0)

    def consecutive_losses(self) -> int:
        """최대 연속 손실 거래 수 (포지션 순서 기준)"""
        return self._longest_streak(lambda pnl: pnl < 0)

    # ============================================================================
    # 4. 시계열
    # ============================================================================

    def monthly_returns(self) -> Dict[str, float]:
        """
        월별 수익률 (%, 소수 2자리)

        월말 자산 / 전월말 자산 (첫 달은 초기 자본금) - 1

        Returns:
            {'2024-01': 8.2, '2024-02': -3.1, ...}
        """
        if not self.equity_curve:
            return {}

        df = pd.DataFrame(self.equity_curve)
        df['date'] = pd.to_datetime(df['date'])
        df['year_month'] = df['date'].dt.to_period('M')

        month_end = df.groupby('year_month')['equity'].last()
        previous = month_end.shift(1).fillna(self.initial_capital)

        result = {}
        for period, end_value in month_end.items():
            start_value = previous[period]
            ret = (end_value / start_value - 1) * 100 if start_value else 0.0
            result[str(period)] = round(float(ret), 2)

        return result


def analyze(positions: List[Position], initial_capital: float, final_capital: float,
            equity_curve: Optional[List[dict]] = None) -> Dict:
    """ResultAnalyzer(...).analyze() 단축 함수"""
    return ResultAnalyzer(positions, initial_capital, final_capital, equity_curve).analyze()
