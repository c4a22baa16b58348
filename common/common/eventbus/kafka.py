from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import asdict
from typing import Callable

from confluent_kafka import Consumer, KafkaError, Producer

from .config import get_brokers, get_producer_acks
from .core import Event, MaxRetryExceededError, RetryDelays, Topic
from .helpers import event_from_dict

logger = logging.getLogger(__name__)


# 재시도 토픽 메시지의 대기 시간을 쪼개서 기다리는 단위(초). stop_flag 확인 주기이기도 하다.
_WAIT_SLICE_SECONDS = 0.5


class KafkaEventBus:
    """Kafka 기반 EventBus 구현.

    - publish 는 delivery 결과를 flush 로 확인한다. 보상 작업은 유실되면 안 되므로
      전송 실패를 호출자에게 예외로 돌려준다.
    - subscribe 는 base 토픽과 retry.N 토픽을 함께 구독하고, 핸들러 실패 시
      다음 retry 토픽 또는 DLQ 로 이벤트를 옮긴다.
    """

    def __init__(self, brokers: str, *, flush_timeout: float = 10.0) -> None:
        self._producer = Producer(
            {
                "bootstrap.servers": brokers,
                "acks": get_producer_acks(),
                "enable.idempotence": True,
            }
        )
        self._brokers = brokers
        self._flush_timeout = flush_timeout

    def close(self) -> None:
        self._producer.flush()

    # 발행 -----------------------------------------------------------------
    def publish(self, topic: str, event: Event) -> None:
        payload = json.dumps(asdict(event), ensure_ascii=False).encode("utf-8")
        errors: list[str] = []

        def _delivery_callback(err, msg) -> None:  # type: ignore[no-untyped-def]
            if err is not None:
                logger.error("failed to deliver message to %s: %s", msg.topic(), err)
                errors.append(str(err))

        self._producer.produce(
            topic=topic,
            value=payload,
            key=event.id.encode("utf-8"),
            callback=_delivery_callback,
        )
        remaining = self._producer.flush(self._flush_timeout)
        if remaining > 0:
            raise RuntimeError(
                f"timed out delivering event {event.id} to {topic} ({remaining} pending)"
            )
        if errors:
            raise RuntimeError(f"failed to deliver event {event.id} to {topic}: {errors[0]}")

    # 구독 -----------------------------------------------------------------
    def subscribe(
        self,
        group_id: str,
        topic: Topic,
        handler: Callable[[Event], None],
        *,
        poll_timeout: float = 0.1,
        stop_flag: list[bool] | None = None,
    ) -> None:
        consumer = Consumer(
            {
                "bootstrap.servers": self._brokers,
                "group.id": group_id,
                "auto.offset.reset": "earliest",
                "enable.auto.commit": False,
            }
        )
        consumer.subscribe([topic.base, *topic.get_retry_topics()])

        try:
            logger.info(
                "Kafka consumer started. group_id=%s topic=%s", group_id, topic.base
            )
            while True:
                if stop_flag and stop_flag[0]:
                    break

                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() == KafkaError._PARTITION_EOF:
                        continue
                    logger.error("consumer error: %s", msg.error())
                    continue

                try:
                    raw = json.loads(msg.value())
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        "invalid event payload on topic %s: %s", msg.topic(), exc
                    )
                    consumer.commit(message=msg, asynchronous=False)
                    continue

                evt = event_from_dict(raw)
                if evt.max_retry <= 0 or evt.max_retry > len(RetryDelays):
                    evt.max_retry = len(RetryDelays)

                # retry.N 토픽 메시지는 발행 시각 + 지연 시간이 지난 뒤에 처리한다.
                delay = topic.retry_delay_for(msg.topic())
                if delay > 0:
                    _, published_ms = msg.timestamp()
                    ready_at = (published_ms / 1000.0) + delay
                    if not _wait_until(ready_at, stop_flag):
                        break  # 커밋하지 않음 -> 재기동 시 다시 처리

                try:
                    handler(evt)
                except Exception as exc:  # noqa: BLE001
                    # 핸들러 실패: 재시도 또는 DLQ
                    evt.last_error = str(exc)
                    if not self._forward_failed(topic, evt, exc):
                        continue  # 커밋하지 않음 -> 다시 처리 시도

                # 성공 또는 재시도/DLQ 발행 성공 시 오프셋 커밋
                try:
                    consumer.commit(message=msg, asynchronous=False)
                except Exception as exc:  # noqa: BLE001
                    logger.error("offset commit error: %s", exc)
        finally:
            consumer.close()

    # 내부 util -------------------------------------------------------------
    def _forward_failed(self, topic: Topic, evt: Event, exc: Exception) -> bool:
        next_retry = evt.retry + 1
        try:
            next_topic = topic.get_retry_topic(next_retry)
        except MaxRetryExceededError:
            next_topic = None

        if next_topic is None or next_retry > evt.max_retry:
            logger.error(
                "event %s exceeded max retry, sending to DLQ %s: %s",
                evt.id,
                topic.dlq(),
                exc,
            )
            target = topic.dlq()
        else:
            evt.retry = next_retry
            logger.warning(
                "event %s failed, scheduling retry %d/%d to %s",
                evt.id,
                evt.retry,
                evt.max_retry,
                next_topic,
            )
            target = next_topic

        try:
            self.publish(target, evt)
        except Exception as pub_exc:  # noqa: BLE001
            logger.error("failed to publish event %s to %s: %s", evt.id, target, pub_exc)
            return False
        return True


def _wait_until(ready_at: float, stop_flag: list[bool] | None) -> bool:
    """ready_at(epoch 초)까지 대기한다. 중간에 stop_flag 가 서면 False."""

    while True:
        if stop_flag and stop_flag[0]:
            return False
        remaining = ready_at - time.time()
        if remaining <= 0:
            return True
        time.sleep(min(remaining, _WAIT_SLICE_SECONDS))


_bus: KafkaEventBus | None = None
_bus_lock = threading.Lock()


def get_kafka_event_bus() -> KafkaEventBus:
    """프로세스 전역 KafkaEventBus(프로듀서) 싱글톤."""

    global _bus

    if _bus is not None:
        return _bus

    with _bus_lock:
        if _bus is None:
            _bus = KafkaEventBus(get_brokers())
        return _bus
