from __future__ import annotations

from common.mongo.types import BaseDocument, build_document_data_from_domain

from ...models.prize import Prize, PrizeStatus


class PrizeDocument(BaseDocument):
    """MongoDB prizes 컬렉션 도큐먼트 모델. stock=None 은 무제한 재고."""

    prize_id: str
    name: str
    description: str | None = None
    category: str = "general"
    points_required: int
    stock: int | None = None
    status: PrizeStatus = PrizeStatus.DRAFT
    is_active: bool = True

    @classmethod
    def from_domain(cls, prize: Prize) -> "PrizeDocument":
        return cls.model_validate(build_document_data_from_domain(prize))

    def to_mongo_record(self) -> dict:
        # stock=None(무제한)을 명시적으로 저장해야 조건부 쿼리가 일관된다.
        record = super().to_mongo_record()
        record["stock"] = self.stock
        record["status"] = str(self.status)
        return record

    def to_domain(self) -> Prize:
        return Prize(
            prize_id=self.prize_id,
            name=self.name,
            description=self.description,
            category=self.category,
            points_required=self.points_required,
            stock=self.stock,
            status=self.status,
            is_active=self.is_active,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
