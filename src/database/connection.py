"""
캔들 DB 연결 관리 모듈

- 조회(백테스트 로드)는 읽기 전용 연결: 과거 데이터는 백테스트 중 변경되지 않음
- 저장(insert_candles)은 쓰기 연결 + 트랜잭션 (성공 시 commit, 예외 시 rollback)
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path

DB_PATH = 'data/processed/candles.db'

MEMORY_DB = ':memory:'


def get_connection(db_path: str = DB_PATH, read_only: bool = False) -> sqlite3.Connection:
    """
    SQLite 연결 생성

    Args:
        db_path: 데이터베이스 파일 경로 (':memory:' 허용)
        read_only: True면 mode=ro URI로 연결 (파일이 없으면 OperationalError)

    Returns:
        sqlite3.Connection (row_factory=sqlite3.Row)
    """
    if read_only and db_path != MEMORY_DB:
        uri = f"{Path(db_path).resolve().as_uri()}?mode=ro"
        conn = sqlite3.connect(uri, uri=True)
    else:
        conn = sqlite3.connect(db_path)

    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def get_db(db_path: str = DB_PATH, read_only: bool = False):
    """
    Context Manager로 연결 관리

    Usage:
        with get_db(db_path, read_only=True) as conn:
            df = pd.read_sql("SELECT * FROM candles WHERE instrument_id = ?", conn, params=("1",))

    쓰기 연결은 블록이 끝나면 commit, 예외 시 rollback 후 다시 raise
    """
    conn = get_connection(db_path, read_only=read_only)
    try:
        yield conn
        if not read_only:
            conn.commit()
    except Exception:
        if not read_only:
            conn.rollback()
        raise
    finally:
        conn.close()
