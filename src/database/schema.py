"""
데이터베이스 스키마 생성 모듈

과거 캔들 저장소 테이블 구조를 정의하고 생성합니다.
- candles: 종목/타임프레임별 OHLCV (메인 테이블)
"""

import sqlite3
from pathlib import Path


def create_schema(conn: sqlite3.Connection) -> None:
    """
    열린 연결에 테이블/인덱스 생성 (이미 있으면 무시)

    Args:
        conn: SQLite 연결 (':memory:' 포함)
    """
    cursor = conn.cursor()

    # Candles 테이블 생성
    cursor.execute('''
        CREATE TABLE IF NOT EXISTS candles (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            instrument_id TEXT NOT NULL,
            timeframe TEXT NOT NULL,
            timestamp TIMESTAMP NOT NULL,
            open REAL NOT NULL,
            high REAL NOT NULL,
            low REAL NOT NULL,
            close REAL NOT NULL,
            volume BIGINT DEFAULT 0,

            UNIQUE(instrument_id, timeframe, timestamp),
            CHECK (timeframe IN ('1D', '1W'))
        )
    ''')

    # 인덱스 생성
    cursor.execute('CREATE INDEX IF NOT EXISTS idx_candles_lookup '
                   'ON candles(instrument_id, timeframe, timestamp)')

    conn.commit()


def create_database(db_path: str = 'data/processed/candles.db'):
    """
    데이터베이스 파일 및 스키마 생성

    Args:
        db_path: 데이터베이스 파일 경로
    """
    # 디렉토리 생성
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        create_schema(conn)
    finally:
        conn.close()

    print(f'[OK] Database created: {db_path}')


if __name__ == '__main__':
    create_database()
