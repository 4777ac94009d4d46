"""
백테스팅 테스트 공용 fixture

- make_candles: 종가 리스트 → OHLCV DataFrame
- ScriptedEvaluator: (종목, 날짜)별로 정해진 결과를 돌려주는 평가기
- TrendEvaluator: 매일 마지막 종가에 long 진입 시그널 (손절/익절 % 고정)
"""

import pandas as pd
import pytest
from src.backtesting.candles import DAILY, WEEKLY
from src.backtesting.data_loader import DataLoader
from src.backtesting.signals import Signal, SignalResult
from src.data_loader.candle_store import DataFrameCandleStore
from src.utils import to_date


def build_candles(start, closes, freq='D'):
    """종가 리스트 → [timestamp, open, high, low, close, volume] (OHLC = 종가)"""
    timestamps = pd.date_range(start=start, periods=len(closes), freq=freq)
    return pd.DataFrame({
        'timestamp': timestamps,
        'open': closes,
        'high': closes,
        'low': closes,
        'close': closes,
        'volume': [1000] * len(closes),
    })


class ScriptedEvaluator:
    """
    {(instrument_id, 'YYYY-MM-DD'): 반환값} 대본 평가기

    반환값이 Exception 인스턴스면 raise. 호출 기록은 calls에 남김.
    """

    def __init__(self, script=None):
        self.script = {(iid, to_date(day)): value for (iid, day), value in (script or {}).items()}
        self.calls = []

    def evaluate(self, instrument_id, daily_series, weekly_series, as_of_date, overrides):
        self.calls.append({
            'instrument_id': instrument_id,
            'as_of_date': as_of_date,
            'daily_last_date': daily_series.last_date,
            'daily_count': len(daily_series),
            'weekly_last_date': weekly_series.last_date if weekly_series is not None else None,
            'overrides': overrides,
        })
        value = self.script.get((instrument_id, as_of_date))
        if isinstance(value, Exception):
            raise value
        return value


class TrendEvaluator:
    """
    매 평가일 마지막 종가로 long 진입 (overrides로 손절/익절 % 조정)

    overrides:
        stop_pct: 손절 % (기본 5)
        target_pct: 익절 % (기본 10)
    """

    def evaluate(self, instrument_id, daily_series, weekly_series, as_of_date, overrides):
        close = daily_series.last_close
        stop_pct = overrides.get('stop_pct', 5.0)
        target_pct = overrides.get('target_pct', 10.0)
        return SignalResult.entry(Signal(
            direction='long',
            entry_price=close,
            instrument_id=instrument_id,
            stop_loss=close * (1 - stop_pct / 100),
            take_profit=close * (1 + target_pct / 100),
            signal_date=as_of_date,
        ))


@pytest.fixture
def make_candles():
    return build_candles


@pytest.fixture
def store():
    return DataFrameCandleStore()


@pytest.fixture
def loader(store):
    return DataLoader(store)


@pytest.fixture
def zigzag_store(store):
    """
    2024-01-01 ~ 2024-06-29 일봉 (3종목), 주봉 (월요일)

    종가가 100 → 112 → 100 을 12일 주기로 반복
    """
    cycle = [100 + i for i in range(12)] + [112 - i for i in range(12)]
    closes = [float(cycle[i % len(cycle)]) for i in range(180)]

    for offset, instrument_id in enumerate([1, 2, 3]):
        shifted = closes[offset:] + closes[:offset]
        store.add(instrument_id, DAILY, build_candles('2024-01-01', shifted))
        store.add(instrument_id, WEEKLY, build_candles('2024-01-01', shifted[::7], freq='W-MON'))

    return store
