from __future__ import annotations

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime
from common.types.money import format_minor_units


class AccountResponse(BaseModel):
    account_id: str
    points_balance: int
    currency_balance_minor: int
    created_at: UtcDateTime


class BalanceResponse(BaseModel):
    """잔액 조회 응답. currency_display 는 표시용 문자열이다."""

    account_id: str
    points: int
    currency_minor: int
    currency_display: str

    @classmethod
    def build(cls, account_id: str, points: int, currency_minor: int) -> "BalanceResponse":
        return cls(
            account_id=account_id,
            points=points,
            currency_minor=currency_minor,
            currency_display=format_minor_units(currency_minor),
        )


class TransactionItem(BaseModel):
    id: str | None
    asset: str
    amount: int
    kind: str
    status: str
    reference_id: str | None
    created_at: UtcDateTime


class ReconciliationResponse(BaseModel):
    account_id: str
    consistent: bool
    points_balance: int
    points_logged: int
    currency_balance: int
    currency_logged: int


class AwardPointsRequest(BaseModel):
    points: int = Field(gt=0)
    reference_id: str = Field(min_length=1)
