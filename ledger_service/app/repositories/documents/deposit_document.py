from __future__ import annotations

from common.mongo.types import BaseDocument, MongoDateTime, build_document_data_from_domain

from ...models.deposit import DepositRequest, DepositStatus


class DepositDocument(BaseDocument):
    """MongoDB deposit_requests 컬렉션 도큐먼트 모델."""

    deposit_id: str
    account_id: str
    amount_minor: int
    payment_method: str
    external_reference: str
    status: DepositStatus = DepositStatus.PENDING
    notes: str | None = None
    processed_by: str | None = None
    processed_at: MongoDateTime | None = None

    @classmethod
    def from_domain(cls, deposit: DepositRequest) -> "DepositDocument":
        return cls.model_validate(build_document_data_from_domain(deposit))

    def to_mongo_record(self) -> dict:
        record = super().to_mongo_record()
        record["status"] = str(self.status)
        return record

    def to_domain(self) -> DepositRequest:
        return DepositRequest(
            deposit_id=self.deposit_id,
            account_id=self.account_id,
            amount_minor=self.amount_minor,
            payment_method=self.payment_method,
            external_reference=self.external_reference,
            status=self.status,
            notes=self.notes,
            processed_by=self.processed_by,
            processed_at=self.processed_at,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
