"""경품 카탈로그 도메인 모델."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class PrizeStatus(StrEnum):
    DRAFT = "draft"
    PUBLISHED = "published"


class Prize(BaseModel):
    """경품 도메인 모델.

    - stock 이 None 이면 무제한 재고다.
    - 교환 가능 조건: published + is_active + (무제한 또는 재고 > 0)
    """

    prize_id: str
    name: str
    description: str | None = None
    category: str = "general"
    points_required: int = Field(gt=0)
    stock: int | None = Field(default=None, ge=0)
    status: PrizeStatus = PrizeStatus.DRAFT
    is_active: bool = True
    created_at: datetime
    updated_at: datetime

    @property
    def in_stock(self) -> bool:
        return self.stock is None or self.stock > 0

    @property
    def is_redeemable(self) -> bool:
        return self.status == PrizeStatus.PUBLISHED and self.is_active and self.in_stock


class PrizeCreateInput(BaseModel):
    """관리자 경품 등록 입력."""

    name: str
    description: str | None = None
    category: str = "general"
    points_required: int = Field(gt=0)
    stock: int | None = Field(default=0, ge=0)
    status: PrizeStatus = PrizeStatus.DRAFT
    is_active: bool = True
