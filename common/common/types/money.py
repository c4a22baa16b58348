"""통화 금액 표현 유틸.

저장/연산은 항상 최소 단위(minor unit) 정수로 하고, 화면에 보여줄 때만
소수 문자열로 바꾼다. float 를 거치지 않으므로 누적 반올림 오차가 없다.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP


DEFAULT_EXPONENT = 2


def format_minor_units(amount_minor: int, exponent: int = DEFAULT_EXPONENT) -> str:
    """최소 단위 정수를 "12.50" 형태의 문자열로 바꾼다."""

    value = Decimal(amount_minor).scaleb(-exponent)
    return f"{value:.{exponent}f}"


def parse_major_units(value: str | int | Decimal, exponent: int = DEFAULT_EXPONENT) -> int:
    """"12.5" 같은 표시 금액을 최소 단위 정수로 바꾼다 (반올림: half-up)."""

    quantum = Decimal(1).scaleb(-exponent)
    amount = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(amount.scaleb(exponent))
