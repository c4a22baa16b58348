from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class DepositStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DepositRequest(BaseModel):
    """사용자가 외부 결제 후 올리는 충전 요청. 관리자 승인 시 통화 잔액에 반영된다."""

    deposit_id: str
    account_id: str
    amount_minor: int
    payment_method: str
    external_reference: str
    status: DepositStatus = DepositStatus.PENDING
    notes: str | None = None
    processed_by: str | None = None
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def credit_op(self) -> str:
        return f"{self.deposit_id}:credit"
