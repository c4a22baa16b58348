"""보상 작업 모델.

사가 중간 실패나 관리자 반려로 되돌려야 하는 잔액/재고 변경을 직렬화 가능한
형태로 표현한다. 프로세스 안에서 재시도하다가 실패하면 그대로 운영자 큐로 넘어간다.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class CompensationKind(StrEnum):
    CREDIT_POINTS = "credit-points"
    CREDIT_CURRENCY = "credit-currency"
    RESTOCK_PRIZE = "restock-prize"
    EXTEND_ACCESS = "extend-access"
    APPEND_LOG = "append-log"


class CompensationTask(BaseModel):
    kind: CompensationKind
    operation_id: str
    account_id: str | None = None
    prize_id: str | None = None
    amount: int = 0
    reference_id: str | None = None
    reason: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)
