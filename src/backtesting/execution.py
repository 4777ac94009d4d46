"""
체결 보정 모듈

코어 루프 바깥에서 적용하는 순수 함수:
- 슬리피지: 방향/진입·청산별 불리한 방향으로 체결가 조정
- 수수료: 거래 대금 대비 % 비용
"""

LONG = 'long'
SHORT = 'short'
DIRECTIONS = (LONG, SHORT)

ENTRY = 'entry'
EXIT = 'exit'


def apply_slippage(price: float, direction: str, slippage_pct: float, side: str = ENTRY) -> float:
    """
    슬리피지 적용 체결가

    - Long 진입(매수) / Short 청산(환매): 가격 상승 방향
    - Long 청산(매도) / Short 진입(공매도): 가격 하락 방향
    - 알 수 없는 direction은 원래 가격 반환

    Args:
        price: 시그널/목표 가격
        direction: 'long' 또는 'short'
        slippage_pct: 슬리피지 (%, 예: 0.1 = 0.1%)
        side: 'entry' 또는 'exit'

    Returns:
        조정된 체결가

    Examples:
        >>> apply_slippage(100.0, 'long', 0.1)
        100.1
        >>> apply_slippage(100.0, 'long', 0.1, side='exit')
        99.9
    """
    if not slippage_pct or direction not in DIRECTIONS:
        return price

    slippage = price * slippage_pct / 100.0
    buying = (direction == LONG) == (side == ENTRY)

    return price + slippage if buying else price - slippage


def calculate_commission(amount: float, commission_rate: float) -> float:
    """
    거래 대금 기준 수수료

    Args:
        amount: 거래 대금 (price × quantity)
        commission_rate: 수수료율 (%, 예: 0.1 = 0.1%)

    Returns:
        수수료 금액 (비율 0이면 0.0)
    """
    if not commission_rate:
        return 0.0
    return abs(amount) * commission_rate / 100.0


def apply_commission(amount: float, commission_rate: float) -> float:
    """수수료 포함 금액 (amount + commission)"""
    return amount + calculate_commission(amount, commission_rate)
