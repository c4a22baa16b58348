from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class AccessGrant(BaseModel):
    """시간 제한 퀴즈 이용권. 계정당 최대 1개이며 만료는 조회 시점에 판단한다."""

    account_id: str
    expires_at: datetime
    created_at: datetime
    updated_at: datetime

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at
