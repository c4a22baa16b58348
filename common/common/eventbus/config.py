from __future__ import annotations

import os


KAFKA_BROKERS_ENV = "KAFKA_BOOTSTRAP_SERVERS"
KAFKA_GROUP_ID_ENV = "KAFKA_GROUP_ID"


def get_brokers() -> str:
    value = os.getenv(KAFKA_BROKERS_ENV)
    if not value:
        raise RuntimeError(f"{KAFKA_BROKERS_ENV} environment variable is required")
    return value


def get_group_id() -> str:
    value = os.getenv(KAFKA_GROUP_ID_ENV)
    if not value:
        raise RuntimeError(f"{KAFKA_GROUP_ID_ENV} environment variable is required")
    return value


def get_producer_acks() -> str:
    """보상 작업 유실을 막기 위해 기본은 acks=all 이다.

    KAFKA_PRODUCER_ACKS 로 덮어쓸 수 있으며 0/1/all 이외의 값은 설정 오류로 본다.
    """

    raw_value = os.getenv("KAFKA_PRODUCER_ACKS", "").strip().lower()
    if not raw_value:
        return "all"
    if raw_value not in {"0", "1", "all"}:
        raise RuntimeError(
            f"KAFKA_PRODUCER_ACKS must be one of 0, 1, all, got: {raw_value!r}"
        )
    return raw_value
