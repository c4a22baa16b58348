"""보상 작업 실행기.

사가가 중간에 실패하거나 관리자가 요청을 반려하면 이미 반영된 잔액/재고 변경을
되돌려야 한다. 보상은 조용히 버려지면 안 된다.

- 프로세스 안에서 설정된 간격으로 재시도한다.
- 그래도 실패하면 운영자 큐(Kafka 보상 토픽)로 넘긴다.
- 큐 발행마저 실패하면 CRITICAL 로 작업 전체를 남기고 예외를 올린다.

모든 보상은 고정된 operation_id 로 실행되므로 몇 번을 다시 돌려도 한 번만 반영된다.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Callable, Protocol

from common.eventbus.helpers import new_json_event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_COMPENSATION
from common.events.ledger import CompensationEscalatedEvent, LedgerEventType
from common.mongo.types import utc_now

from ..exceptions import LedgerError, StoreUnavailableError
from ..models.account import BalanceField
from ..models.compensation import CompensationKind, CompensationTask
from ..models.transaction import TransactionLogEntry
from ..repositories.interfaces import (
    AccessGrantRepositoryInterface,
    AccountRepositoryInterface,
    PrizeRepositoryInterface,
    TransactionLogRepositoryInterface,
)


logger = logging.getLogger(__name__)


class CompensationExecutor:
    """CompensationTask 하나를 저장소 연산 하나로 실행한다."""

    def __init__(
        self,
        account_repo: AccountRepositoryInterface,
        prize_repo: PrizeRepositoryInterface,
        grant_repo: AccessGrantRepositoryInterface,
        transaction_repo: TransactionLogRepositoryInterface,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._account_repo = account_repo
        self._prize_repo = prize_repo
        self._grant_repo = grant_repo
        self._transaction_repo = transaction_repo
        self._clock = clock

    def execute(self, task: CompensationTask) -> None:
        if task.kind == CompensationKind.CREDIT_POINTS:
            self._credit(task, BalanceField.POINTS)
        elif task.kind == CompensationKind.CREDIT_CURRENCY:
            self._credit(task, BalanceField.CURRENCY)
        elif task.kind == CompensationKind.RESTOCK_PRIZE:
            self._prize_repo.restock(
                task.prize_id or "",
                quantity=task.amount or 1,
                operation_id=task.operation_id,
            )
        elif task.kind == CompensationKind.EXTEND_ACCESS:
            duration = timedelta(seconds=float(task.payload["duration_seconds"]))
            self._grant_repo.extend(
                task.account_id or "", duration, self._clock(), task.operation_id
            )
        elif task.kind == CompensationKind.APPEND_LOG:
            entry = TransactionLogEntry.model_validate(task.payload["entry"])
            self._transaction_repo.append(entry)
        else:  # pragma: no cover - enum 이 늘어날 때만 도달
            raise ValueError(f"unknown compensation kind: {task.kind}")

    def _credit(self, task: CompensationTask, field: BalanceField) -> None:
        self._account_repo.adjust_balance(
            task.account_id or "",
            field,
            task.amount,
            operation_id=task.operation_id,
        )


class CompensationEscalatorInterface(Protocol):
    def escalate(
        self, task: CompensationTask, attempts: int, last_error: str | None
    ) -> None:  # pragma: no cover - Protocol
        ...


class KafkaCompensationEscalator(CompensationEscalatorInterface):
    """보상 작업을 compensation 토픽으로 발행한다."""

    def __init__(self, bus: KafkaEventBus, source: str = "ledger-service") -> None:
        self._bus = bus
        self._source = source

    def escalate(
        self, task: CompensationTask, attempts: int, last_error: str | None
    ) -> None:
        event = build_escalated_event(task, attempts, last_error, source=self._source)
        wrapped = new_json_event(payload=asdict(event), event_id=event.id)
        self._bus.publish(TOPIC_COMPENSATION.base, wrapped)


def build_escalated_event(
    task: CompensationTask,
    attempts: int,
    last_error: str | None,
    *,
    source: str = "ledger-service",
) -> CompensationEscalatedEvent:
    return CompensationEscalatedEvent(
        id=str(uuid.uuid4()),
        type=LedgerEventType.COMPENSATION_ESCALATED,
        timestamp=utc_now().isoformat(),
        source=source,
        version="1.0",
        task_kind=str(task.kind),
        operation_id=task.operation_id,
        account_id=task.account_id,
        prize_id=task.prize_id,
        amount=task.amount,
        reference_id=task.reference_id,
        reason=task.reason,
        attempts=attempts,
        last_error=last_error,
        payload=dict(task.payload),
    )


def task_from_escalated_event(event: CompensationEscalatedEvent) -> CompensationTask:
    return CompensationTask(
        kind=CompensationKind(event.task_kind),
        operation_id=event.operation_id,
        account_id=event.account_id,
        prize_id=event.prize_id,
        amount=event.amount,
        reference_id=event.reference_id,
        reason=event.reason,
        payload=event.payload,
    )


class CompensationRunner:
    """재시도 후 에스컬레이션. 작업을 버리지 않는다."""

    def __init__(
        self,
        executor: CompensationExecutor,
        escalator: CompensationEscalatorInterface,
        retry_delays: list[float],
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._executor = executor
        self._escalator = escalator
        self._retry_delays = list(retry_delays)
        self._sleep = sleep

    def run(self, task: CompensationTask) -> bool:
        """작업을 실행한다.

        프로세스 안에서 반영되면 True, 운영자 큐로 넘어가면 False 를 반환한다.
        큐 발행까지 실패하면 StoreUnavailableError 를 올린다.
        """

        attempts = 0
        last_error: str | None = None
        # 첫 시도 + 설정된 재시도 횟수
        for delay in [0.0, *self._retry_delays]:
            if delay > 0:
                self._sleep(delay)
            attempts += 1
            try:
                self._executor.execute(task)
                if attempts > 1:
                    logger.info(
                        "compensation applied after retry (attempts=%s)",
                        attempts,
                        extra={"operation_id": task.operation_id, "task_kind": str(task.kind)},
                    )
                return True
            except StoreUnavailableError as exc:
                last_error = str(exc)
                logger.warning(
                    "compensation attempt %s failed: %s",
                    attempts,
                    exc,
                    extra={"operation_id": task.operation_id, "task_kind": str(task.kind)},
                )
            except LedgerError as exc:
                # 재시도로 풀리지 않는 비즈니스 오류. 바로 운영자에게 넘긴다.
                last_error = f"{exc.code}: {exc.message}"
                break

        self._escalate(task, attempts, last_error)
        return False

    def run_all(self, tasks: list[CompensationTask]) -> list[bool]:
        """작업들을 순서대로 모두 실행한다.

        앞 작업의 에스컬레이션이 실패해도 나머지 작업은 계속 시도한다. 실패한 작업이
        하나라도 있으면 모든 작업을 시도한 뒤 첫 번째 StoreUnavailableError 를 올린다.
        """

        results: list[bool] = []
        first_error: StoreUnavailableError | None = None
        for task in tasks:
            try:
                results.append(self.run(task))
            except StoreUnavailableError as exc:
                results.append(False)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
        return results

    def _escalate(self, task: CompensationTask, attempts: int, last_error: str | None) -> None:
        try:
            self._escalator.escalate(task, attempts, last_error)
        except Exception as exc:
            logger.critical(
                "compensation could not be escalated, manual action required: %s",
                task.model_dump_json(),
                extra={"operation_id": task.operation_id, "task_kind": str(task.kind)},
                exc_info=True,
            )
            raise StoreUnavailableError(
                "compensation escalation failed", operation_id=task.operation_id
            ) from exc
        logger.error(
            "compensation escalated to operator queue (attempts=%s, last_error=%s)",
            attempts,
            last_error,
            extra={
                "operation_id": task.operation_id,
                "task_kind": str(task.kind),
                "account_id": task.account_id,
                "prize_id": task.prize_id,
            },
        )


def append_log_task(entry: TransactionLogEntry, reason: str) -> CompensationTask:
    """원장 기록을 보상 실행기로 넘길 작업으로 감싼다. operation_id 는 원장 기록과 같다."""

    return CompensationTask(
        kind=CompensationKind.APPEND_LOG,
        operation_id=entry.operation_id,
        account_id=entry.account_id,
        amount=entry.amount,
        reference_id=entry.reference_id,
        reason=reason,
        payload={"entry": entry.model_dump(mode="json")},
    )
