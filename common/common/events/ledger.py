"""원장(ledger) 관련 이벤트 정의."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Self


class LedgerEventType:
    """원장 이벤트 타입 상수."""

    COMPENSATION_ESCALATED = "ledger.compensation.escalated"


@dataclass(slots=True)
class CompensationEscalatedEvent:
    """보상 작업 에스컬레이션 이벤트.

    프로세스 내 재시도를 모두 소진한 환불/재입고/접근권 연장/원장 기록 작업이
    운영자 큐로 넘어갈 때 발행된다. 소비 측은 같은 operation_id 로 작업을 다시
    실행하므로 중복 소비되어도 잔액이 두 번 바뀌지 않는다.
    """

    id: str
    type: str
    timestamp: str
    source: str
    version: str
    task_kind: str
    operation_id: str
    account_id: str | None
    prize_id: str | None
    amount: int
    reference_id: str | None
    reason: str
    attempts: int
    last_error: str | None
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Self:
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            timestamp=str(data["timestamp"]),
            source=str(data["source"]),
            version=str(data.get("version", "1.0")),
            task_kind=str(data["task_kind"]),
            operation_id=str(data["operation_id"]),
            account_id=data.get("account_id"),
            prize_id=data.get("prize_id"),
            amount=int(data.get("amount", 0)),
            reference_id=data.get("reference_id"),
            reason=str(data.get("reason", "")),
            attempts=int(data.get("attempts", 0)),
            last_error=data.get("last_error"),
            payload=dict(data.get("payload") or {}),
        )
