"""원장 트랜잭션 로그 도메인 모델 (append-only)."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel

from .account import BalanceField


class Asset(StrEnum):
    POINTS = "points"
    CURRENCY = "currency"

    @property
    def balance_field(self) -> BalanceField:
        if self is Asset.POINTS:
            return BalanceField.POINTS
        return BalanceField.CURRENCY


class TransactionKind(StrEnum):
    DEPOSIT = "deposit"
    ACCESS_PURCHASE = "access-purchase"
    REDEMPTION_DEDUCTION = "redemption-deduction"
    REDEMPTION_REFUND = "redemption-refund"
    POINTS_AWARD = "points-award"


class TransactionLogEntry(BaseModel):
    """잔액 변경 1건에 대한 불변 기록.

    - amount 는 부호 있는 값이다 (차감은 음수).
    - operation_id 는 잔액 변경에 쓰인 것과 같은 값이며 유니크하다.
      재시도로 같은 기록을 두 번 남기지 않는다.
    """

    id: str | None = None
    account_id: str
    asset: Asset
    amount: int
    kind: TransactionKind
    status: str = "approved"
    reference_id: str | None = None
    operation_id: str
    metadata: dict | None = None
    created_at: datetime
