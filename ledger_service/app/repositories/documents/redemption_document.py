from __future__ import annotations

from common.mongo.types import BaseDocument, MongoDateTime, build_document_data_from_domain

from ...models.redemption import (
    DeliveryDetails,
    RedemptionRequest,
    RedemptionStatus,
    SagaStep,
)


class RedemptionDocument(BaseDocument):
    """MongoDB redemption_requests 컬렉션 도큐먼트 모델.

    dedup_key 는 사가 진행 중이거나 pending 인 동안에만 존재한다.
    partial unique 인덱스가 이 필드에 걸려 있어 같은 (계정, 경품) 조합의
    동시 요청을 저장소 수준에서 막는다.
    """

    request_id: str
    account_id: str
    prize_id: str
    points_used: int
    status: RedemptionStatus | None = None
    saga_step: SagaStep = SagaStep.RESERVED
    delivery: DeliveryDetails = DeliveryDetails()
    notes: str | None = None
    requested_at: MongoDateTime
    processed_at: MongoDateTime | None = None
    dedup_key: str | None = None

    @classmethod
    def from_domain(cls, request: RedemptionRequest) -> "RedemptionDocument":
        data = build_document_data_from_domain(request)
        data["dedup_key"] = request.dedup_key
        return cls.model_validate(data)

    def to_mongo_record(self) -> dict:
        record = super().to_mongo_record()
        record["status"] = None if self.status is None else str(self.status)
        record["saga_step"] = str(self.saga_step)
        return record

    def to_domain(self) -> RedemptionRequest:
        return RedemptionRequest(
            request_id=self.request_id,
            account_id=self.account_id,
            prize_id=self.prize_id,
            points_used=self.points_used,
            status=self.status,
            saga_step=self.saga_step,
            delivery=self.delivery,
            notes=self.notes,
            requested_at=self.requested_at,
            processed_at=self.processed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
