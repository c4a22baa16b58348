from __future__ import annotations

from dataclasses import dataclass
from typing import Any


# 운영자 큐(보상 작업)의 재시도 간격. 인덱스 i 는 retry.(i+1) 토픽의 대기 시간이다.
# 모두 소진되면 DLQ 로 이동하며, DLQ 는 수동 정산 대상이다.
RetryDelays: list[float] = [
    60.0,  # 1분
    300.0,  # 5분
    600.0,  # 10분
    1800.0,  # 30분
    3600.0,  # 1시간
]


class MaxRetryExceededError(Exception):
    """최대 재시도 횟수를 초과한 경우 사용되는 예외."""


@dataclass(slots=True)
class Event:
    """Kafka 메시지의 메타데이터와 페이로드를 표현하는 이벤트.

    payload는 직렬화 직전/직후 형태(dict)를 저장하고,
    실제 Kafka I/O 레이어에서 JSON 인코딩/디코딩을 담당한다.
    """

    id: str
    payload: Any
    retry: int = 0
    max_retry: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if self.max_retry <= 0 or self.max_retry > len(RetryDelays):
            self.max_retry = len(RetryDelays)


@dataclass(frozen=True, slots=True)
class Topic:
    base: str

    def dlq(self) -> str:
        return f"{self.base}.dlq"

    def get_retry_topics(self) -> list[str]:
        return [
            f"{self.base}.retry.{index}" for index in range(1, len(RetryDelays) + 1)
        ]

    def get_retry_topic(self, retry_count: int) -> str:
        if retry_count <= 0 or retry_count > len(RetryDelays):
            raise MaxRetryExceededError()
        return f"{self.base}.retry.{retry_count}"

    def retry_delay_for(self, topic_name: str) -> float:
        """retry.N 토픽에서 읽은 메시지가 처리되기 전 기다려야 하는 시간(초).

        base 토픽이나 알 수 없는 토픽은 0 을 반환한다.
        """

        prefix = f"{self.base}.retry."
        if not topic_name.startswith(prefix):
            return 0.0
        try:
            index = int(topic_name[len(prefix) :])
        except ValueError:
            return 0.0
        if index <= 0 or index > len(RetryDelays):
            return 0.0
        return RetryDelays[index - 1]
