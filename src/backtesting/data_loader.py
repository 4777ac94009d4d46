"""
백테스트 데이터 로더

캔들 저장소에서 종목별 OHLCV를 읽어 CandleSeries로 정규화하고,
백테스트에 쓸 수 있는지 검증합니다 (최소 캔들 수, 날짜 공백 경고).
"""

import warnings
from typing import Dict, Hashable, List, Optional

import pandas as pd

from src.utils import DateLike, to_date
from .candles import CandleSeries, DAILY, PERIOD_DAYS


class DataLoader:
    """
    캔들 로더

    Args:
        store: load(instrument_id, timeframe, from_date, to_date) -> DataFrame 을 제공하는 저장소
            (SqliteCandleStore, DataFrameCandleStore)
        verbose: 진행 상황 출력 여부
    """

    def __init__(self, store, verbose: bool = False):
        self.store = store
        self.verbose = verbose

    def load_for_instrument(self, instrument_id: Hashable, timeframe: str,
                            from_date: DateLike, to_date_: DateLike,
                            interpolate_missing: bool = False) -> Optional[CandleSeries]:
        """
        단일 종목 캔들 로드

        Args:
            interpolate_missing: 일봉의 빠진 날짜를 직전 종가 flat 캔들로 채움 (주봉은 무시)

        Returns:
            CandleSeries (timestamp 오름차순) 또는 None (캔들 없음)
        """
        df = self.store.load(instrument_id, timeframe, to_date(from_date), to_date(to_date_))
        if df is None or len(df) == 0:
            return None

        series = CandleSeries(instrument_id, timeframe, df)
        if interpolate_missing and timeframe == DAILY:
            series = self._interpolate(series)

        return series

    def load_for_instruments(self, instrument_ids: List[Hashable], timeframe: str,
                             from_date: DateLike, to_date_: DateLike,
                             interpolate_missing: bool = False) -> Dict[Hashable, CandleSeries]:
        """
        여러 종목 캔들 로드 (캔들 없는 종목은 제외, 입력 순서 유지)

        Returns:
            {instrument_id: CandleSeries}
        """
        data = {}
        for instrument_id in instrument_ids:
            series = self.load_for_instrument(
                instrument_id, timeframe, from_date, to_date_,
                interpolate_missing=interpolate_missing
            )
            if series is not None:
                data[instrument_id] = series

        if self.verbose:
            print(f"[INFO] Loaded {timeframe} candles: {len(data)}/{len(instrument_ids)} instruments")

        return data

    @staticmethod
    def _interpolate(series: CandleSeries) -> CandleSeries:
        """
        첫~마지막 캔들 사이의 빠진 날짜를 flat 캔들로 채움

        flat 캔들: OHLC = 직전 종가, volume = 0 (첫 캔들 이전은 채우지 않음)
        """
        if len(series) < 2:
            return series

        df = series.candles.copy()
        df['timestamp'] = df['timestamp'].dt.normalize()
        df = df.drop_duplicates(subset='timestamp', keep='last').set_index('timestamp')

        calendar = pd.date_range(df.index.min(), df.index.max(), freq='D')
        filled = df.reindex(calendar)

        missing = filled['close'].isna()
        prev_close = filled['close'].ffill()
        for col in ['open', 'high', 'low', 'close']:
            filled.loc[missing, col] = prev_close[missing]
        filled['volume'] = filled['volume'].fillna(0)

        filled = filled.rename_axis('timestamp').reset_index()
        return CandleSeries(series.instrument_id, series.timeframe, filled)

    @staticmethod
    def detect_gaps(series: CandleSeries) -> List[dict]:
        """
        연속 캔들 사이 공백 탐지

        간격이 타임프레임 1기간(일봉 1일, 주봉 7일)보다 크면 공백
        days = 빠진 기간의 달력 일수 (간격 - 1기간)

        Examples:
            5일 전, 2일 전 일봉 → [{'days': 2, ...}]
            연속된 일봉 → []

        Returns:
            [{'from': date, 'to': date, 'days': int}]
        """
        if series is None or len(series) < 2:
            return []

        period = PERIOD_DAYS[series.timeframe]
        dates = series.dates

        gaps = []
        for prev, curr in zip(dates, dates[1:]):
            delta = (curr - prev).days
            if delta > period:
                gaps.append({'from': prev, 'to': curr, 'days': delta - period})

        return gaps

    def validate_data(self, data: Dict[Hashable, Optional[CandleSeries]],
                      min_candles: int = 50, max_gap_days: int = 5) -> Dict[Hashable, CandleSeries]:
        """
        백테스트용 데이터 검증

        - None/빈 시계열, min_candles 미만 시계열은 제외
        - max_gap_days 초과 공백은 경고만 (제외하지 않음)

        Returns:
            검증을 통과한 {instrument_id: CandleSeries}
        """
        validated = {}

        for instrument_id, series in data.items():
            if series is None or series.empty:
                continue

            if len(series) < min_candles:
                if self.verbose:
                    print(f"[WARN] {instrument_id}: insufficient candles "
                          f"({len(series)} < {min_candles}), skipped")
                continue

            large_gaps = [g for g in self.detect_gaps(series) if g['days'] > max_gap_days]
            if large_gaps:
                warnings.warn(
                    f"{instrument_id}: {len(large_gaps)} gap(s) longer than {max_gap_days} days "
                    f"(largest: {max(g['days'] for g in large_gaps)} days)",
                    UserWarning
                )

            validated[instrument_id] = series

        return validated
