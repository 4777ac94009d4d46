"""
포트폴리오 관리 모듈

Position, Portfolio 클래스 구현
- Position: 시뮬레이션 거래 1건 (진입 → 청산, 손익 계산, 청산 조건 판정)
- Portfolio: 종목별 보유 포지션, 현금, 자산 곡선, 청산 이력 관리
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Hashable, List, Optional

from src.utils import DateLike, to_date
from .execution import LONG, SHORT


STOP_LOSS = 'stop_loss'
TRAILING_STOP = 'trailing_stop'
TAKE_PROFIT = 'take_profit'
END_OF_BACKTEST = 'end_of_backtest'

DUPLICATE_POLICIES = ('replace', 'reject', 'refund')


@dataclass
class Position:
    """시뮬레이션 포지션 (청산 후 불변)"""
    instrument_id: Hashable
    entry_date: date
    entry_price: float
    quantity: int
    direction: str = LONG  # 'long' 또는 'short'
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    trailing_stop_pct: Optional[float] = None  # 최고(최저)가 대비 %
    trailing_stop_amount: Optional[float] = None  # 최고(최저)가 대비 고정 금액
    entry_commission: float = 0.0
    exit_date: Optional[date] = None
    exit_price: Optional[float] = None
    exit_reason: Optional[str] = None
    exit_commission: float = 0.0

    initial_stop_loss: Optional[float] = field(init=False, default=None)
    highest_price: float = field(init=False, default=0.0)  # long 트레일링 기준
    lowest_price: float = field(init=False, default=0.0)  # short 트레일링 기준

    def __post_init__(self):
        self.entry_date = to_date(self.entry_date)
        self.entry_price = float(self.entry_price)
        self.quantity = int(self.quantity)
        self.direction = str(self.direction).lower()
        if self.stop_loss is not None:
            self.stop_loss = float(self.stop_loss)
        if self.take_profit is not None:
            self.take_profit = float(self.take_profit)
        self.initial_stop_loss = self.stop_loss
        self.highest_price = self.entry_price
        self.lowest_price = self.entry_price

    @property
    def is_closed(self) -> bool:
        """청산 여부 (exit_date 존재)"""
        return self.exit_date is not None

    @property
    def entry_value(self) -> float:
        """진입 금액 (long: 매수 대금, short: 담보금)"""
        return self.entry_price * self.quantity

    @property
    def trailing_stop_enabled(self) -> bool:
        return self.trailing_stop_pct is not None or self.trailing_stop_amount is not None

    def close(self, exit_date: DateLike, exit_price: float, exit_reason: str) -> bool:
        """
        포지션 청산

        Returns:
            True (청산 성공) / False (이미 청산됨, 상태 변경 없음)
        """
        if self.is_closed:
            return False

        self.exit_date = to_date(exit_date)
        self.exit_price = float(exit_price)
        self.exit_reason = exit_reason
        return True

    def current_value(self, current_price: Optional[float] = None) -> float:
        """평가 금액 (가격 미지정 시 청산가 → 진입가 순)"""
        if current_price is None:
            current_price = self.exit_price if self.exit_price is not None else self.entry_price
        return current_price * self.quantity

    def _price_for_pnl(self, current_price: Optional[float]) -> Optional[float]:
        # 청산된 포지션은 항상 저장된 청산가 사용
        if self.is_closed:
            return self.exit_price
        return current_price

    def calculate_pnl(self, current_price: Optional[float] = None) -> float:
        """
        손익 (수수료 제외)

        - Long: (price - entry_price) * quantity
        - Short: (entry_price - price) * quantity
        - 미청산 + 가격 없음, 수량 0, 알 수 없는 direction → 0
        """
        price = self._price_for_pnl(current_price)
        if price is None or self.quantity == 0:
            return 0.0

        if self.direction == LONG:
            return (price - self.entry_price) * self.quantity
        elif self.direction == SHORT:
            return (self.entry_price - price) * self.quantity
        return 0.0

    def calculate_pnl_pct(self, current_price: Optional[float] = None) -> float:
        """수익률 (%, 소수 4자리)"""
        price = self._price_for_pnl(current_price)
        if price is None or self.entry_price == 0:
            return 0.0

        if self.direction == LONG:
            return round((price - self.entry_price) / self.entry_price * 100, 4)
        elif self.direction == SHORT:
            return round((self.entry_price - price) / self.entry_price * 100, 4)
        return 0.0

    @property
    def net_pnl(self) -> float:
        """수수료 차감 손익"""
        return self.calculate_pnl() - self.entry_commission - self.exit_commission

    def holding_days(self, current_date: Optional[DateLike] = None) -> int:
        """보유 일수 (달력 기준, 기준일 없으면 청산일, 둘 다 없으면 0)"""
        if current_date is not None:
            end = to_date(current_date)
        elif self.exit_date is not None:
            end = self.exit_date
        else:
            return 0
        return (end - self.entry_date).days

    def update_trailing_stop(self, current_price: float) -> None:
        """
        트레일링 스탑 갱신

        - Long: 최고가 기준으로 손절가를 올리기만 함 (내리지 않음)
        - Short: 최저가 기준으로 손절가를 내리기만 함 (올리지 않음)
        """
        if not self.trailing_stop_enabled:
            return

        if self.direction == LONG:
            self.highest_price = max(self.highest_price, current_price)
            if self.trailing_stop_pct is not None:
                new_stop = self.highest_price * (1 - self.trailing_stop_pct / 100.0)
            else:
                new_stop = self.highest_price - self.trailing_stop_amount
            self.stop_loss = new_stop if self.stop_loss is None else max(new_stop, self.stop_loss)

        elif self.direction == SHORT:
            self.lowest_price = min(self.lowest_price, current_price)
            if self.trailing_stop_pct is not None:
                new_stop = self.lowest_price * (1 + self.trailing_stop_pct / 100.0)
            else:
                new_stop = self.lowest_price + self.trailing_stop_amount
            self.stop_loss = new_stop if self.stop_loss is None else min(new_stop, self.stop_loss)

    def check_exit(self, current_price: float, current_date: Optional[DateLike] = None) -> Optional[dict]:
        """
        청산 조건 확인 (미청산 포지션만)

        우선순위:
        1. 손절 (Long: price <= stop, Short: price >= stop) → 손절가로 체결
        2. 익절 (Long: price >= target, Short: price <= target) → 목표가로 체결
        3. 해당 없음 → None

        트레일링 스탑으로 손절가가 이동한 상태의 손절은 'trailing_stop'

        Returns:
            {'exit_price': float, 'exit_reason': str} 또는 None
        """
        if self.is_closed:
            return None

        if self.trailing_stop_enabled:
            self.update_trailing_stop(current_price)

        if self.stop_loss is not None:
            stop_hit = (
                (self.direction == LONG and current_price <= self.stop_loss) or
                (self.direction == SHORT and current_price >= self.stop_loss)
            )
            if stop_hit:
                reason = TRAILING_STOP if self.stop_loss != self.initial_stop_loss else STOP_LOSS
                return {'exit_price': self.stop_loss, 'exit_reason': reason}

        if self.take_profit is not None:
            target_hit = (
                (self.direction == LONG and current_price >= self.take_profit) or
                (self.direction == SHORT and current_price <= self.take_profit)
            )
            if target_hit:
                return {'exit_price': self.take_profit, 'exit_reason': TAKE_PROFIT}

        return None

    def to_dict(self) -> dict:
        """딕셔너리로 변환 (리포트/CSV 저장용)"""
        return {
            'instrument_id': self.instrument_id,
            'direction': self.direction,
            'entry_date': self.entry_date,
            'entry_price': self.entry_price,
            'exit_date': self.exit_date,
            'exit_price': self.exit_price,
            'quantity': self.quantity,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'pnl': self.calculate_pnl(),
            'pnl_pct': self.calculate_pnl_pct(),
            'holding_days': self.holding_days(),
            'exit_reason': self.exit_reason,
            'commission': self.entry_commission + self.exit_commission,
        }


class Portfolio:
    """포트폴리오 관리 클래스"""

    def __init__(self, initial_capital: float, duplicate_policy: str = 'replace'):
        """
        초기화

        Args:
            initial_capital: 초기 자본금 (양수)
            duplicate_policy: 이미 보유 중인 종목에 다시 진입할 때의 처리
                - 'replace': 기존 포지션을 덮어씀 (기존 진입 금액 환급 없음)
                - 'reject': 진입 거부
                - 'refund': 기존 진입 금액 환급 후 새 포지션으로 교체

        Raises:
            ValueError: 자본금이 양수가 아니거나 정책 값이 잘못된 경우
        """
        if initial_capital <= 0:
            raise ValueError(f"initial_capital must be positive, got: {initial_capital}")
        if duplicate_policy not in DUPLICATE_POLICIES:
            raise ValueError(
                f"duplicate_policy must be one of {DUPLICATE_POLICIES}, got: {duplicate_policy}"
            )

        self.initial_capital = float(initial_capital)
        self.duplicate_policy = duplicate_policy

        self.current_capital = self.initial_capital
        self.positions: Dict[Hashable, Position] = {}  # instrument_id -> Position
        self.closed_positions: List[Position] = []
        self.equity_curve: List[dict] = []  # [{'date', 'equity'}]

        self.total_commission = 0.0
        self.total_slippage = 0.0

    @property
    def position_count(self) -> int:
        """현재 보유 포지션 수"""
        return len(self.positions)

    def is_full(self, max_positions: int) -> bool:
        """포지션이 꽉 찼는지 확인"""
        return self.position_count >= max_positions

    def has_position(self, instrument_id: Hashable) -> bool:
        """특정 종목을 보유 중인지 확인"""
        return instrument_id in self.positions

    def open_position(self, instrument_id: Hashable, entry_date: DateLike, entry_price: float,
                      quantity: int, direction: str = LONG,
                      stop_loss: Optional[float] = None, take_profit: Optional[float] = None,
                      trailing_stop_pct: Optional[float] = None,
                      trailing_stop_amount: Optional[float] = None,
                      commission: float = 0.0, slippage: float = 0.0) -> Optional[Position]:
        """
        포지션 진입

        필요 자금 = entry_price × quantity + commission
        자금 부족 시 상태 변경 없이 None 반환 (예외 아님)

        Args:
            commission: 진입 수수료 (금액)
            slippage: 슬리피지 비용 (금액, 통계용)

        Returns:
            Position 객체 (진입 성공 시) 또는 None (실패 시)
        """
        # Position과 같은 기준 (소수 수량은 버림)
        quantity = int(quantity)
        if quantity <= 0 or entry_price <= 0:
            return None

        refund = 0.0
        existing = self.positions.get(instrument_id)
        if existing is not None:
            if self.duplicate_policy == 'reject':
                return None
            if self.duplicate_policy == 'refund':
                refund = existing.entry_value

        required = entry_price * quantity + commission
        if self.current_capital + refund < required:
            return None

        position = Position(
            instrument_id=instrument_id,
            entry_date=entry_date,
            entry_price=entry_price,
            quantity=quantity,
            direction=direction,
            stop_loss=stop_loss,
            take_profit=take_profit,
            trailing_stop_pct=trailing_stop_pct,
            trailing_stop_amount=trailing_stop_amount,
            entry_commission=commission,
        )

        # 'replace' 정책: 기존 포지션 금액은 환급되지 않음
        self.current_capital += refund - required
        self.positions[instrument_id] = position
        self.total_commission += commission
        self.total_slippage += slippage

        return position

    def close_position(self, instrument_id: Hashable, exit_date: DateLike, exit_price: float,
                       exit_reason: str, commission: float = 0.0,
                       slippage: float = 0.0) -> Optional[Position]:
        """
        포지션 청산

        현금 회수 = 진입 금액 + 손익 - 수수료
        - Long: quantity × exit_price (매도 대금)
        - Short: 담보금 + (entry - exit) × quantity

        Returns:
            청산된 Position (성공 시) 또는 None (보유 포지션 없음)
        """
        position = self.positions.get(instrument_id)
        if position is None:
            return None

        position.close(exit_date=exit_date, exit_price=exit_price, exit_reason=exit_reason)
        position.exit_commission = commission

        self.current_capital += position.entry_value + position.calculate_pnl() - commission
        self.total_commission += commission
        self.total_slippage += slippage

        del self.positions[instrument_id]
        self.closed_positions.append(position)

        return position

    def total_equity(self, prices: Optional[Dict[Hashable, float]] = None) -> float:
        """
        총 자산 = 현금 + Σ(진입 금액 + 미실현 손익)

        Args:
            prices: {instrument_id: current_price}
                가격이 없는 종목은 진입 금액으로 평가 (미실현 손익 0)
        """
        prices = prices or {}
        total = self.current_capital

        for instrument_id, position in self.positions.items():
            price = prices.get(instrument_id)
            total += position.entry_value
            if price is not None:
                total += position.calculate_pnl(price)

        return total

    def current_equity(self, prices: Optional[Dict[Hashable, float]] = None) -> float:
        """현재 총 자산 (가격 미지정 시 진입가 기준)"""
        return self.total_equity(prices)

    def update_equity(self, current_date: DateLike, prices: Optional[Dict[Hashable, float]] = None) -> dict:
        """자산 곡선에 스냅샷 추가"""
        point = {'date': to_date(current_date), 'equity': self.total_equity(prices)}
        self.equity_curve.append(point)
        return point

    def total_return(self) -> float:
        """현금 기준 누적 수익률 (%)"""
        return round((self.current_capital - self.initial_capital) / self.initial_capital * 100, 2)

    def get_statistics(self) -> dict:
        """포트폴리오 통계"""
        return {
            'current_capital': self.current_capital,
            'position_count': self.position_count,
            'total_trades': len(self.closed_positions),
            'total_commission': self.total_commission,
            'total_slippage': self.total_slippage,
        }
