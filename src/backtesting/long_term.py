"""
장기 투자 백테스터

리밸런싱일에만 신규 진입을 평가하고, 청산 확인/자산 기록은 매일 수행
- 리밸런싱: 첫 거래일 + daily/weekly(월요일)/monthly(매월 1일)
- 최소 보유 기간 전에는 청산 조건을 확인하지 않음
- 리밸런싱마다 포트폴리오 구성 기록
"""

from datetime import date
from typing import Any, Dict, Hashable, List, Optional

from src.utils import DateLike
from .candles import WEEKLY
from .data_loader import DataLoader
from .engine import BacktestConfig, BaseBacktester
from .portfolio import Position


REBALANCE_FREQUENCIES = ('daily', 'weekly', 'monthly')


class LongTermBacktester(BaseBacktester):
    """장기 백테스터 (리밸런싱 주기 기반 진입)"""

    name = 'Long-Term Backtest'

    def __init__(self, instruments: List[Hashable], from_date: DateLike, to_date: DateLike,
                 evaluator, data_loader: DataLoader, config: Optional[BacktestConfig] = None,
                 rebalance_frequency: str = 'weekly',
                 min_holding_days: int = 30,
                 min_weekly_candles: int = 10):
        """
        Args:
            rebalance_frequency: 'daily', 'weekly', 'monthly'
            min_holding_days: 이 기간(달력 일수) 전에는 손절/익절 확인 안 함
            min_weekly_candles: 종목 검증/시그널 평가 최소 주봉 수

        Raises:
            ValueError: 잘못된 리밸런싱 주기 / 음수 보유 기간
        """
        if rebalance_frequency not in REBALANCE_FREQUENCIES:
            raise ValueError(
                f"rebalance_frequency must be one of {REBALANCE_FREQUENCIES}, got: {rebalance_frequency}"
            )
        if min_holding_days < 0:
            raise ValueError(f"min_holding_days must be non-negative, got: {min_holding_days}")
        if min_weekly_candles < 1:
            raise ValueError(f"min_weekly_candles must be positive, got: {min_weekly_candles}")

        self.rebalance_frequency = rebalance_frequency
        self.min_holding_days = min_holding_days
        self.min_weekly_candles = min_weekly_candles

        super().__init__(instruments, from_date, to_date, evaluator, data_loader, config)

    def _reset(self) -> None:
        super()._reset()
        self.last_rebalance_date: Optional[date] = None
        self.composition_history: List[dict] = []

    def _load_data(self) -> bool:
        """일봉 + 주봉 로드 (둘 중 하나라도 검증 통과 종목이 없으면 False)"""
        if not super()._load_data():
            return False

        weekly = self.data_loader.load_for_instruments(
            self.instruments, WEEKLY, self.load_start, self.to_date
        )
        self.weekly_data = self.data_loader.validate_data(
            weekly, min_candles=self.min_weekly_candles, max_gap_days=self.config.max_gap_days
        )
        return bool(self.weekly_data)

    def _is_entry_day(self, day: date) -> bool:
        """리밸런싱일 여부"""
        if self.last_rebalance_date is None:
            return True

        if day <= self.last_rebalance_date:
            return False

        if self.rebalance_frequency == 'daily':
            return True
        elif self.rebalance_frequency == 'weekly':
            return day.weekday() == 0
        return day.day == 1

    def _can_exit(self, position: Position, day: date) -> bool:
        return position.holding_days(day) >= self.min_holding_days

    def _entry_candidates(self) -> List[Hashable]:
        return [i for i in super()._entry_candidates() if i in self.weekly_data]

    def _has_history(self, instrument_id: Hashable, day: date) -> bool:
        if not super()._has_history(instrument_id, day):
            return False
        return self.weekly_data[instrument_id].count_up_to(day) >= self.min_weekly_candles

    def _check_entries(self, day: date) -> List[Position]:
        """리밸런싱: 빈 슬롯만큼 진입 후 구성 기록"""
        opened = super()._check_entries(day)

        self.last_rebalance_date = day
        self._track_composition(day)

        if self.verbose:
            print(f"[INFO] {day} rebalance: +{len(opened)} "
                  f"({self.portfolio.position_count}/{self.config.max_positions} positions)")

        return opened

    def _track_composition(self, day: date) -> None:
        prices = {}
        for instrument_id in self.portfolio.positions:
            price = self.daily_data[instrument_id].last_close_up_to(day)
            if price is not None:
                prices[instrument_id] = price

        self.composition_history.append({
            'date': day,
            'positions': self.portfolio.position_count,
            'instruments': list(self.portfolio.positions.keys()),
            'equity': self.portfolio.total_equity(prices),
        })

    def _extra_results(self) -> Dict[str, Any]:
        if self.composition_history:
            total = sum(c['positions'] for c in self.composition_history)
            avg_positions = round(total / len(self.composition_history), 2)
        else:
            avg_positions = 0

        return {
            'portfolio_composition_history': self.composition_history,
            'rebalance_count': len(self.composition_history),
            'avg_positions_per_rebalance': avg_positions,
        }
