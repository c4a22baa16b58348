from __future__ import annotations

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime

from ...models.prize import Prize, PrizeStatus


class PrizeItem(BaseModel):
    prize_id: str
    name: str
    description: str | None
    category: str
    points_required: int
    stock: int | None
    status: PrizeStatus
    is_active: bool
    redeemable: bool
    created_at: UtcDateTime

    @classmethod
    def from_domain(cls, prize: Prize) -> "PrizeItem":
        return cls(
            prize_id=prize.prize_id,
            name=prize.name,
            description=prize.description,
            category=prize.category,
            points_required=prize.points_required,
            stock=prize.stock,
            status=prize.status,
            is_active=prize.is_active,
            redeemable=prize.is_redeemable,
            created_at=prize.created_at,
        )


class PrizeUpdateRequest(BaseModel):
    """부분 수정. 보낸 필드만 반영한다. stock=null 은 무제한 재고."""

    name: str | None = None
    description: str | None = None
    category: str | None = None
    points_required: int | None = Field(default=None, gt=0)
    stock: int | None = Field(default=None, ge=0)
    status: PrizeStatus | None = None
    is_active: bool | None = None


class RestockRequest(BaseModel):
    quantity: int = Field(default=1, gt=0)
