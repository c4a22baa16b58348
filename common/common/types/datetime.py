"""UTC datetime 유틸.

저장, 비교, 직렬화 모두 tz-aware UTC 로 맞춘다. 이용권 만료처럼 시각을 비교하는
코드에 naive datetime 이 섞이면 TypeError 가 나므로 경계에서 정규화한다.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from pydantic.functional_serializers import PlainSerializer


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: datetime | str) -> datetime:
    """datetime(또는 ISO 문자열)을 UTC 로 정규화한다. naive 값은 UTC 로 간주한다."""

    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def serialize_utc_iso8601(value: datetime) -> str:
    return to_utc(value).isoformat()


# API 응답 스키마에서 사용하는 UTC datetime. JSON 직렬화 시에만 문자열로 바뀐다.
UtcDateTime = Annotated[
    datetime,
    PlainSerializer(serialize_utc_iso8601, return_type=str, when_used="json"),
]
