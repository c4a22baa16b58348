from __future__ import annotations

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from ...models.deposit import DepositRequest, DepositStatus


class DepositCreateRequest(BaseModel):
    account_id: str
    amount_minor: int = Field(gt=0)
    payment_method: str
    external_reference: str = Field(min_length=1)


class DepositItem(BaseModel):
    deposit_id: str
    account_id: str
    amount_minor: int
    payment_method: str
    external_reference: str
    status: DepositStatus
    notes: str | None
    processed_by: str | None
    processed_at: UtcDateTime | None
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, deposit: DepositRequest) -> "DepositItem":
        return cls(
            deposit_id=deposit.deposit_id,
            account_id=deposit.account_id,
            amount_minor=deposit.amount_minor,
            payment_method=deposit.payment_method,
            external_reference=deposit.external_reference,
            status=deposit.status,
            notes=deposit.notes,
            processed_by=deposit.processed_by,
            processed_at=deposit.processed_at,
            created_at=deposit.created_at,
        )


class ProcessDepositRequest(BaseModel):
    processed_by: str
    notes: str | None = None
