"""
CandleSeries 테스트

정규화 (정렬/중복 제거), 날짜 조회, 미래 데이터 차단 슬라이스 검증
"""

from datetime import date

import pandas as pd
import pytest
from src.backtesting.candles import CandleSeries, DAILY, WEEKLY, CANDLE_COLUMNS


@pytest.fixture
def unsorted_candles():
    """순서가 뒤섞이고 같은 날짜가 중복된 캔들"""
    return pd.DataFrame([
        {'timestamp': '2024-01-03', 'open': 101, 'high': 103, 'low': 100, 'close': 102, 'volume': 10},
        {'timestamp': '2024-01-02', 'open': 100, 'high': 102, 'low': 99, 'close': 101, 'volume': 10},
        {'timestamp': '2024-01-04', 'open': 102, 'high': 104, 'low': 101, 'close': 103, 'volume': 10},
        {'timestamp': '2024-01-03', 'open': 101, 'high': 106, 'low': 100, 'close': 105, 'volume': 20},
    ])


class TestCandleSeries:
    """CandleSeries 기본 동작"""

    def test_normalizes_order_and_duplicates(self, unsorted_candles):
        series = CandleSeries(1, DAILY, unsorted_candles)

        assert len(series) == 3
        assert series.dates == [date(2024, 1, 2), date(2024, 1, 3), date(2024, 1, 4)]
        # 같은 타임스탬프는 마지막 행 유지
        assert series.close_on('2024-01-03') == 105.0

    def test_invalid_timeframe(self):
        with pytest.raises(ValueError):
            CandleSeries(1, '1H')

    def test_missing_columns(self):
        with pytest.raises(ValueError, match="missing columns"):
            CandleSeries(1, DAILY, pd.DataFrame([{'timestamp': '2024-01-02', 'close': 1.0}]))

    def test_empty(self):
        series = CandleSeries(1, WEEKLY)
        assert series.empty
        assert list(series.candles.columns) == CANDLE_COLUMNS
        assert series.first_date is None
        assert series.last_close is None
        assert series.last_close_up_to('2024-01-10') is None

    def test_from_records(self):
        series = CandleSeries.from_records('X', DAILY, [
            {'timestamp': '2024-01-02', 'open': 1, 'high': 1, 'low': 1, 'close': 1, 'volume': None},
        ])
        assert series.first_date == date(2024, 1, 2)
        assert series.to_records()[0]['volume'] == 0


class TestCandleLookup:
    """날짜 기준 조회"""

    def test_candle_on(self, unsorted_candles):
        series = CandleSeries(1, DAILY, unsorted_candles)
        assert series.candle_on('2024-01-02')['close'] == 101.0
        assert series.candle_on('2024-01-05') is None
        assert series.close_on(date(2024, 1, 6)) is None

    def test_up_to_blocks_future(self, unsorted_candles):
        series = CandleSeries(1, DAILY, unsorted_candles)
        sliced = series.up_to('2024-01-03')

        assert len(sliced) == 2
        assert sliced.last_date == date(2024, 1, 3)
        assert len(series) == 3  # 원본 불변

    def test_count_and_last_close_up_to(self, unsorted_candles):
        series = CandleSeries(1, DAILY, unsorted_candles)

        assert series.count_up_to('2024-01-01') == 0
        assert series.count_up_to('2024-01-03') == 2
        # 캔들이 없는 날은 직전 종가
        assert series.last_close_up_to('2024-01-10') == 103.0
