"""운영자 큐(보상 토픽) 컨슈머.

프로세스 내 재시도를 소진한 보상 작업을 다시 실행한다. 실패하면 KafkaEventBus 가
retry 토픽으로 넘기고, 그것도 소진하면 DLQ 에 남는다. DLQ 는 수동 정산 대상이다.
"""

from __future__ import annotations

import logging
import signal
from typing import List

from pymongo.database import Database

from common.eventbus.config import get_brokers, get_group_id
from common.eventbus.core import Event
from common.eventbus.kafka import KafkaEventBus
from common.eventbus.topics import TOPIC_COMPENSATION
from common.events.ledger import CompensationEscalatedEvent, LedgerEventType
from common.logger import setup_logger
from common.mongo.client import get_database

from ..config import load_config
from ..services.compensation_service import (
    CompensationExecutor,
    task_from_escalated_event,
)
from ..services.dependencies import build_compensation_executor


logger = logging.getLogger(__name__)


def handle_compensation_event(evt: Event, *, executor: CompensationExecutor) -> None:
    payload = evt.payload
    if not isinstance(payload, dict):
        logger.error("unexpected payload type for event %s: %r", evt.id, type(payload))
        return

    event_type = str(payload.get("type", ""))
    if event_type != LedgerEventType.COMPENSATION_ESCALATED:
        logger.debug("ignoring event type=%s id=%s", event_type, evt.id)
        return

    try:
        escalated = CompensationEscalatedEvent.from_dict(payload)
        task = task_from_escalated_event(escalated)
    except Exception:  # noqa: BLE001
        logger.exception("failed to decode CompensationEscalatedEvent id=%s", evt.id)
        raise

    # 예외는 그대로 올려서 retry 토픽 / DLQ 로 보낸다.
    executor.execute(task)
    logger.info(
        "escalated compensation applied (retry=%s)",
        evt.retry,
        extra={
            "operation_id": task.operation_id,
            "task_kind": str(task.kind),
            "account_id": task.account_id,
            "prize_id": task.prize_id,
        },
    )


def run_compensation_consumer(stop_flag: List[bool], database: Database | None = None) -> None:
    """보상 토픽 구독 루프. stop_flag[0] 이 True 가 되면 종료한다."""

    logger.info("compensation-consumer starting up")

    db = database if database is not None else get_database()
    executor = build_compensation_executor(db, load_config())
    bus = KafkaEventBus(get_brokers())
    group_id = get_group_id()

    try:
        bus.subscribe(
            group_id=group_id,
            topic=TOPIC_COMPENSATION,
            handler=lambda evt: handle_compensation_event(evt, executor=executor),
            stop_flag=stop_flag,
        )
    finally:
        bus.close()
        logger.info("compensation-consumer stopped")


def main() -> None:
    """단독 프로세스로 실행할 때 사용하는 엔트리 포인트."""

    setup_logger(name="ledger-compensation-consumer")
    stop_flag: List[bool] = [False]

    def _signal_handler(signum, frame) -> None:  # type: ignore[unused-argument]
        logger.info("received signal %s, shutting down compensation-consumer...", signum)
        stop_flag[0] = True

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    run_compensation_consumer(stop_flag)


if __name__ == "__main__":  # pragma: no cover
    main()
