"""계정(잔액) 도메인 모델.

포인트와 통화 잔액을 한 문서에 보관한다. 통화는 최소 단위(minor unit) 정수다.
잔액은 조건부 원자 연산으로만 바뀌며 통째로 덮어쓰지 않는다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class BalanceField(StrEnum):
    POINTS = "points_balance"
    CURRENCY = "currency_balance"


class Account(BaseModel):
    """계정 도메인 모델."""

    account_id: str
    points_balance: int = Field(default=0, ge=0)
    currency_balance: int = Field(default=0, ge=0)  # 최소 단위
    created_at: datetime
    updated_at: datetime

    def balance_of(self, field: BalanceField) -> int:
        if field == BalanceField.POINTS:
            return self.points_balance
        return self.currency_balance


class Balance(BaseModel):
    """getBalance 응답용 잔액 스냅샷."""

    account_id: str
    points: int
    currency: int
