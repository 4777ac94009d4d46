"""
유틸리티 함수 모듈

날짜 정규화, 입력 검증 헬퍼 함수 제공
"""

import re
from datetime import date, datetime
from typing import Hashable, List, Union

import pandas as pd


DateLike = Union[str, date, datetime, pd.Timestamp]


def validate_date_format(date_str: str) -> bool:
    """
    날짜 형식 검증 (YYYY-MM-DD)

    Args:
        date_str: 검증할 날짜 문자열

    Returns:
        bool: 유효하면 True, 아니면 False

    Examples:
        >>> validate_date_format('2025-02-10')
        True
        >>> validate_date_format('2025/02/10')
        False
    """
    if not isinstance(date_str, str):
        return False

    return bool(re.match(r'^\d{4}-\d{2}-\d{2}$', date_str))


def to_date(value: DateLike) -> date:
    """
    날짜 값을 datetime.date로 정규화

    문자열은 YYYY-MM-DD 형식만 허용 (시간 정보는 버림)

    Args:
        value: 'YYYY-MM-DD' 문자열, date, datetime, pd.Timestamp

    Returns:
        datetime.date

    Raises:
        ValueError: 해석할 수 없는 값
    """
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        if not validate_date_format(value):
            raise ValueError(f"Invalid date format: '{value}'. Expected YYYY-MM-DD")
        return datetime.strptime(value, '%Y-%m-%d').date()

    raise ValueError(f"Unsupported date value: {value!r}")


def validate_date_range(from_date: DateLike, to_date_value: DateLike) -> tuple:
    """
    날짜 구간 검증 (from_date < to_date)

    Returns:
        (from_date, to_date) 정규화된 date 튜플

    Raises:
        ValueError: 시작일이 종료일보다 같거나 늦을 때
    """
    start = to_date(from_date)
    end = to_date(to_date_value)
    if start >= end:
        raise ValueError(f"Invalid date range: {start} ~ {end} (from_date must be before to_date)")
    return start, end


def validate_instrument_ids(instrument_ids: List[Hashable]) -> List[Hashable]:
    """
    종목 식별자 리스트 검증 및 필터링

    None, 빈 문자열, bool은 제외. 순서는 유지하고 중복은 제거.

    Args:
        instrument_ids: 종목 식별자 리스트 (int 또는 str)

    Returns:
        검증된 식별자 리스트

    Raises:
        ValueError: 유효한 식별자가 하나도 없을 경우
    """
    if not instrument_ids:
        return []

    validated = []
    for instrument_id in instrument_ids:
        if isinstance(instrument_id, bool) or instrument_id is None:
            continue
        if isinstance(instrument_id, str) and not instrument_id.strip():
            continue
        if not isinstance(instrument_id, (int, str)):
            continue
        if instrument_id not in validated:
            validated.append(instrument_id)

    if not validated:
        raise ValueError(
            f"No valid instrument ids found. "
            f"Ids must be non-empty strings or integers. "
            f"Invalid ids: {instrument_ids}"
        )

    skipped = [i for i in instrument_ids if i not in validated]
    if skipped:
        print(f"[WARN] Skipped invalid instrument ids: {skipped}")

    return validated
