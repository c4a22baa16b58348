"""트랜잭션 로그 MongoDB 도큐먼트.

append-only 컬렉션이다. 생성 후 수정하지 않으므로 updated_at 은 created_at 과 같다.
"""

from __future__ import annotations

from common.mongo.types import BaseDocument, from_object_id

from ...models.transaction import Asset, TransactionKind, TransactionLogEntry


class TransactionLogDocument(BaseDocument):
    """MongoDB ledger_transactions 컬렉션 도큐먼트 모델."""

    account_id: str
    asset: Asset
    amount: int
    kind: TransactionKind
    status: str = "approved"
    reference_id: str | None = None
    operation_id: str
    metadata: dict | None = None

    @classmethod
    def from_domain(cls, entry: TransactionLogEntry) -> "TransactionLogDocument":
        data = {
            "account_id": entry.account_id,
            "asset": entry.asset,
            "amount": entry.amount,
            "kind": entry.kind,
            "status": entry.status,
            "reference_id": entry.reference_id,
            "operation_id": entry.operation_id,
            "metadata": entry.metadata,
            "created_at": entry.created_at,
            "updated_at": entry.created_at,
        }
        return cls.model_validate(data)

    def to_mongo_record(self) -> dict:
        record = super().to_mongo_record()
        record["asset"] = str(self.asset)
        record["kind"] = str(self.kind)
        return record

    def to_domain(self) -> TransactionLogEntry:
        return TransactionLogEntry(
            id=from_object_id(self.id),
            account_id=self.account_id,
            asset=self.asset,
            amount=self.amount,
            kind=self.kind,
            status=self.status,
            reference_id=self.reference_id,
            operation_id=self.operation_id,
            metadata=self.metadata,
            created_at=self.created_at,
        )
