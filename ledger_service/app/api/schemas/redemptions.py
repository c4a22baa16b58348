from __future__ import annotations

from pydantic import BaseModel

from common.types.datetime import UtcDateTime

from ...models.redemption import DeliveryDetails, RedemptionRequest, RedemptionStatus


class RedemptionCreateRequest(BaseModel):
    account_id: str
    prize_id: str
    delivery: DeliveryDetails = DeliveryDetails()


class RedemptionItem(BaseModel):
    request_id: str
    account_id: str
    prize_id: str
    points_used: int
    status: RedemptionStatus | None
    delivery: DeliveryDetails
    notes: str | None
    requested_at: UtcDateTime
    processed_at: UtcDateTime | None

    @classmethod
    def from_domain(cls, request: RedemptionRequest) -> "RedemptionItem":
        return cls(
            request_id=request.request_id,
            account_id=request.account_id,
            prize_id=request.prize_id,
            points_used=request.points_used,
            status=request.status,
            delivery=request.delivery,
            notes=request.notes,
            requested_at=request.requested_at,
            processed_at=request.processed_at,
        )


class RejectRedemptionRequest(BaseModel):
    notes: str | None = None
