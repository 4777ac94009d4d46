"""
캔들 저장소 모듈

백테스트가 읽는 과거 OHLCV 저장소 구현
- SqliteCandleStore: candles 테이블 (src/database/schema.py) 조회
- DataFrameCandleStore: 메모리 DataFrame (테스트/노트북용)

두 저장소 모두 load()에서 [timestamp, open, high, low, close, volume] DataFrame 반환
"""

from typing import Dict, Hashable, List, Tuple

import pandas as pd

from src.database.connection import DB_PATH, get_db
from src.utils import DateLike, to_date
from src.backtesting.candles import CANDLE_COLUMNS


class SqliteCandleStore:
    """
    SQLite 캔들 저장소

    연결을 보관하지 않고 조회마다 새로 엽니다 (워커 프로세스로 pickle 가능).
    ':memory:' DB는 조회마다 비어 있으므로 파일 경로를 사용하세요.
    """

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path

    def load(self, instrument_id: Hashable, timeframe: str,
             from_date: DateLike, to_date_: DateLike) -> pd.DataFrame:
        """
        종목/타임프레임/기간 캔들 조회 (timestamp 오름차순)

        Returns:
            DataFrame (캔들 없으면 빈 DataFrame)
        """
        query = """
            SELECT timestamp, open, high, low, close, volume
            FROM candles
            WHERE instrument_id = ?
              AND timeframe = ?
              AND date(timestamp) BETWEEN ? AND ?
            ORDER BY timestamp
        """
        params = (
            str(instrument_id), timeframe,
            to_date(from_date).isoformat(), to_date(to_date_).isoformat(),
        )

        with get_db(self.db_path, read_only=True) as conn:
            df = pd.read_sql(query, conn, params=params)

        if len(df) > 0:
            df['timestamp'] = pd.to_datetime(df['timestamp'])
        return df

    def insert_candles(self, instrument_id: Hashable, timeframe: str, candles: pd.DataFrame) -> int:
        """
        캔들 저장 (같은 타임스탬프는 덮어씀)

        Returns:
            저장한 행 수
        """
        df = candles[CANDLE_COLUMNS].copy()
        df['timestamp'] = pd.to_datetime(df['timestamp']).dt.strftime('%Y-%m-%d %H:%M:%S')

        rows = [
            (str(instrument_id), timeframe, r.timestamp,
             float(r.open), float(r.high), float(r.low), float(r.close), int(r.volume))
            for r in df.itertuples(index=False)
        ]

        with get_db(self.db_path) as conn:
            conn.executemany("""
                INSERT OR REPLACE INTO candles
                    (instrument_id, timeframe, timestamp, open, high, low, close, volume)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, rows)

        return len(rows)

    def list_instruments(self, timeframe: str = '1D') -> List[str]:
        """캔들이 있는 종목 목록"""
        with get_db(self.db_path, read_only=True) as conn:
            df = pd.read_sql(
                "SELECT DISTINCT instrument_id FROM candles WHERE timeframe = ? ORDER BY instrument_id",
                conn, params=(timeframe,)
            )
        return df['instrument_id'].tolist()


class DataFrameCandleStore:
    """
    메모리 캔들 저장소

    Usage:
        store = DataFrameCandleStore()
        store.add(1, '1D', daily_df)
        loader = DataLoader(store)
    """

    def __init__(self, frames: Dict[Tuple[Hashable, str], pd.DataFrame] = None):
        self.frames: Dict[Tuple[Hashable, str], pd.DataFrame] = {}
        for (instrument_id, timeframe), df in (frames or {}).items():
            self.add(instrument_id, timeframe, df)

    def add(self, instrument_id: Hashable, timeframe: str, candles: pd.DataFrame) -> None:
        df = candles.copy()
        df['timestamp'] = pd.to_datetime(df['timestamp'])
        self.frames[(instrument_id, timeframe)] = df

    def load(self, instrument_id: Hashable, timeframe: str,
             from_date: DateLike, to_date_: DateLike) -> pd.DataFrame:
        df = self.frames.get((instrument_id, timeframe))
        if df is None:
            return pd.DataFrame(columns=CANDLE_COLUMNS)

        start = pd.Timestamp(to_date(from_date))
        end = pd.Timestamp(to_date(to_date_))
        days = df['timestamp'].dt.normalize()
        mask = (days >= start) & (days <= end)

        return df.loc[mask].sort_values('timestamp').reset_index(drop=True)

    def list_instruments(self, timeframe: str = '1D') -> List[Hashable]:
        return [iid for (iid, tf) in self.frames if tf == timeframe]
