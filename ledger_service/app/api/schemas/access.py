from __future__ import annotations

from pydantic import BaseModel, Field

from common.types.datetime import UtcDateTime


class PurchaseAccessRequest(BaseModel):
    # 생략하면 설정된 기본 가격
    price_minor: int | None = Field(default=None, gt=0)


class PurchaseAccessResponse(BaseModel):
    account_id: str
    price_minor: int
    granted_until: UtcDateTime | None
    pending: bool


class AccessStatusResponse(BaseModel):
    account_id: str
    active: bool
    expires_at: UtcDateTime | None
