"""경품 교환 요청 도메인 모델.

교환 요청 문서는 생성 사가(saga)의 진행 상태를 함께 기록한다.
status 는 사가가 끝나기 전까지 None 이며, 외부에는 pending 이후 상태만 노출된다.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel


class RedemptionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    FULFILLED = "fulfilled"


class SagaStep(StrEnum):
    RESERVED = "reserved"
    POINTS_DEDUCTED = "points_deducted"
    STOCK_DECREMENTED = "stock_decremented"
    COMPLETED = "completed"
    ABORTED = "aborted"


# 관리자 전이: 목표 상태 -> 허용되는 출발 상태
ALLOWED_TRANSITIONS: dict[RedemptionStatus, RedemptionStatus] = {
    RedemptionStatus.APPROVED: RedemptionStatus.PENDING,
    RedemptionStatus.REJECTED: RedemptionStatus.PENDING,
    RedemptionStatus.FULFILLED: RedemptionStatus.APPROVED,
}

# 진행 중인 사가 단계 (복구 대상)
IN_FLIGHT_STEPS: tuple[SagaStep, ...] = (
    SagaStep.RESERVED,
    SagaStep.POINTS_DEDUCTED,
    SagaStep.STOCK_DECREMENTED,
)


class DeliveryDetails(BaseModel):
    full_name: str | None = None
    whatsapp_number: str | None = None
    address: str | None = None


class RedemptionRequest(BaseModel):
    """교환 요청 도메인 모델.

    points_used 는 요청 시점의 points_required 스냅샷이다. 이후 가격이 바뀌어도
    열린 요청에는 영향을 주지 않는다.
    """

    request_id: str
    account_id: str
    prize_id: str
    points_used: int
    status: RedemptionStatus | None = None
    saga_step: SagaStep = SagaStep.RESERVED
    delivery: DeliveryDetails = DeliveryDetails()
    notes: str | None = None
    requested_at: datetime
    processed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def dedup_key(self) -> str:
        return redemption_dedup_key(self.account_id, self.prize_id)

    # 사가 보상 단계에서 쓰는 operation_id 들. 같은 요청에 대해 항상 같은 값이다.
    @property
    def charge_op(self) -> str:
        return f"{self.request_id}:charge"

    @property
    def stock_op(self) -> str:
        return f"{self.request_id}:stock"

    @property
    def refund_op(self) -> str:
        return f"{self.request_id}:refund"

    @property
    def restock_op(self) -> str:
        return f"{self.request_id}:restock"


def redemption_dedup_key(account_id: str, prize_id: str) -> str:
    return f"{account_id}:{prize_id}"
