"""
캔들 시계열 모듈

CandleSeries: 종목/타임프레임 단위 OHLCV 시계열 컨테이너
- DataLoader 경계에서 한 번만 정규화 (타임스탬프 오름차순, 중복 제거)
- 백테스트 루프에서 날짜 기준 O(1) 조회 / 미래 데이터 차단 슬라이스 제공
"""

from bisect import bisect_right
from datetime import date
from typing import Dict, Iterable, List, Optional

import pandas as pd

from src.utils import DateLike, to_date


CANDLE_COLUMNS = ['timestamp', 'open', 'high', 'low', 'close', 'volume']
DAILY = '1D'
WEEKLY = '1W'
TIMEFRAMES = (DAILY, WEEKLY)

# 타임프레임별 1기간 = 달력 일수
PERIOD_DAYS = {DAILY: 1, WEEKLY: 7}


class CandleSeries:
    """
    정규화된 OHLCV 시계열

    Attributes:
        instrument_id: 종목 식별자
        timeframe: '1D' 또는 '1W'
        candles: DataFrame [timestamp, open, high, low, close, volume] (timestamp 오름차순)
    """

    def __init__(self, instrument_id, timeframe: str, candles: Optional[pd.DataFrame] = None):
        if timeframe not in TIMEFRAMES:
            raise ValueError(f"timeframe must be one of {TIMEFRAMES}, got: {timeframe}")

        self.instrument_id = instrument_id
        self.timeframe = timeframe
        self.candles = self._normalize(candles)

        # 날짜 → 행 번호 (하루 1캔들)
        self._dates: List[date] = [ts.date() for ts in self.candles['timestamp']]
        self._date_index: Dict[date, int] = {d: i for i, d in enumerate(self._dates)}

    @staticmethod
    def _normalize(candles: Optional[pd.DataFrame]) -> pd.DataFrame:
        """컬럼 정리 + 타임스탬프 오름차순 + 동일 타임스탬프 중복 제거"""
        if candles is None or len(candles) == 0:
            return pd.DataFrame(columns=CANDLE_COLUMNS)

        missing = [c for c in CANDLE_COLUMNS if c not in candles.columns]
        if missing:
            raise ValueError(f"Candle data missing columns: {missing}")

        df = candles[CANDLE_COLUMNS].copy()
        df['timestamp'] = pd.to_datetime(df['timestamp'])
        for col in ['open', 'high', 'low', 'close']:
            df[col] = df[col].astype(float)
        df['volume'] = df['volume'].fillna(0)

        df = (df.sort_values('timestamp', kind='mergesort')
                .drop_duplicates(subset='timestamp', keep='last')
                .reset_index(drop=True))
        return df

    @classmethod
    def from_records(cls, instrument_id, timeframe: str, records: Iterable[dict]) -> 'CandleSeries':
        """dict 리스트 ({timestamp, open, high, low, close, volume})로 생성"""
        return cls(instrument_id, timeframe, pd.DataFrame(list(records)))

    def __len__(self) -> int:
        return len(self.candles)

    def __repr__(self) -> str:
        return (f"CandleSeries(instrument_id={self.instrument_id!r}, timeframe={self.timeframe!r}, "
                f"candles={len(self)})")

    @property
    def empty(self) -> bool:
        return len(self.candles) == 0

    @property
    def dates(self) -> List[date]:
        return list(self._dates)

    @property
    def first_date(self) -> Optional[date]:
        return self._dates[0] if self._dates else None

    @property
    def last_date(self) -> Optional[date]:
        return self._dates[-1] if self._dates else None

    @property
    def last_close(self) -> Optional[float]:
        """마지막 캔들 종가 (없으면 None)"""
        if self.empty:
            return None
        return float(self.candles.iloc[-1]['close'])

    def candle_on(self, day: DateLike) -> Optional[dict]:
        """해당 날짜 캔들 (없으면 None)"""
        idx = self._date_index.get(to_date(day))
        if idx is None:
            return None
        return self.candles.iloc[idx].to_dict()

    def close_on(self, day: DateLike) -> Optional[float]:
        """해당 날짜 종가 (없으면 None)"""
        idx = self._date_index.get(to_date(day))
        if idx is None:
            return None
        return float(self.candles.iloc[idx]['close'])

    def count_up_to(self, day: DateLike) -> int:
        """day 이하 캔들 개수"""
        return bisect_right(self._dates, to_date(day))

    def up_to(self, day: DateLike) -> 'CandleSeries':
        """
        day 이하 캔들만 남긴 시계열 (미래 데이터 차단!)

        Returns:
            새 CandleSeries (원본 불변)
        """
        n = self.count_up_to(day)
        return CandleSeries(self.instrument_id, self.timeframe, self.candles.iloc[:n])

    def last_close_up_to(self, day: DateLike) -> Optional[float]:
        """day 이하 마지막 종가 (없으면 None)"""
        n = self.count_up_to(day)
        if n == 0:
            return None
        return float(self.candles.iloc[n - 1]['close'])

    def to_records(self) -> List[dict]:
        return self.candles.to_dict('records')
