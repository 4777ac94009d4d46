"""
진입 시그널 타입

전략(시그널 평가기)과 백테스터 사이의 계약
- Signal: 진입 시그널 1건
- SignalResult: 평가 결과 (시그널 / 시그널 없음 / 실패)
- SignalEvaluator: 평가기 인터페이스
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Hashable, Optional, Protocol

from src.utils import to_date
from .candles import CandleSeries


_SIGNAL_FIELDS = (
    'instrument_id', 'direction', 'entry_price', 'stop_loss',
    'take_profit', 'quantity', 'confidence', 'signal_date',
)


@dataclass
class Signal:
    """진입 시그널"""
    direction: str
    entry_price: float
    instrument_id: Optional[Hashable] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    quantity: Optional[int] = None  # None이면 포지션 사이징으로 결정
    confidence: Optional[float] = None
    signal_date: Optional[date] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.direction = str(self.direction).lower()
        self.entry_price = float(self.entry_price)
        # Decimal 등 숫자형 가격은 float으로 통일
        for name in ('stop_loss', 'take_profit', 'confidence'):
            value = getattr(self, name)
            if value is not None:
                setattr(self, name, float(value))
        if self.quantity is not None:
            self.quantity = int(self.quantity)
        if self.signal_date is not None:
            self.signal_date = to_date(self.signal_date)

    @classmethod
    def from_dict(cls, data: dict) -> 'Signal':
        """dict → Signal (알 수 없는 키는 metadata로)"""
        known = {k: data[k] for k in _SIGNAL_FIELDS if data.get(k) is not None}
        metadata = {k: v for k, v in data.items() if k not in _SIGNAL_FIELDS}
        return cls(metadata=metadata, **known)


@dataclass
class SignalResult:
    """
    시그널 평가 결과

    - success=True, signal=Signal → 진입 시그널
    - success=True, signal=None → 시그널 없음
    - success=False, error=str → 평가 실패 (시그널 없음으로 처리, 에러 기록)
    """
    success: bool
    signal: Optional[Signal] = None
    error: Optional[str] = None

    @classmethod
    def entry(cls, signal: Signal) -> 'SignalResult':
        return cls(success=True, signal=signal)

    @classmethod
    def no_signal(cls) -> 'SignalResult':
        return cls(success=True)

    @classmethod
    def failure(cls, error: str) -> 'SignalResult':
        return cls(success=False, error=error)

    @classmethod
    def coerce(cls, value) -> 'SignalResult':
        """
        평가기 반환값을 SignalResult로 정규화

        허용: SignalResult, Signal, None,
              {'success': bool, 'signal': dict|Signal|None, 'error': str}
        """
        if isinstance(value, SignalResult):
            return value
        if value is None:
            return cls.no_signal()
        if isinstance(value, Signal):
            return cls.entry(value)
        if isinstance(value, dict):
            if not value.get('success', False):
                return cls.failure(value.get('error') or 'Signal evaluation failed')
            signal = value.get('signal')
            if isinstance(signal, dict):
                signal = Signal.from_dict(signal)
            return cls(success=True, signal=signal)

        raise TypeError(f"Unsupported signal result: {type(value).__name__}")


class SignalEvaluator(Protocol):
    """
    시그널 평가기 인터페이스

    daily_series/weekly_series는 as_of_date 이하 캔들만 포함합니다.
    overrides는 BacktestConfig.strategy_overrides (최적화 대상 전략 파라미터).
    """

    def evaluate(self, instrument_id: Hashable, daily_series: CandleSeries,
                 weekly_series: Optional[CandleSeries], as_of_date: date,
                 overrides: Dict[str, Any]) -> SignalResult:
        ...
