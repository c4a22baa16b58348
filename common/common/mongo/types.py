from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated

from ..types.datetime import to_utc, utc_now


def applied_ops_append(
    operation_id: str, now: datetime, retention: timedelta
) -> dict[str, Any]:
    """파이프라인 업데이트($set)에서 쓰는 applied_ops 식.

    보존 기간이 지난 항목만 걸러내고 {op_id, at} 항목을 붙인다. 개수가 아니라 시간으로
    자르므로 보존 기간 안의 operation_id 는 문서가 얼마나 자주 갱신되든 남아 있다.
    """

    cutoff = now - retention
    return {
        "$concatArrays": [
            {
                "$filter": {
                    "input": {"$ifNull": ["$applied_ops", []]},
                    "as": "applied",
                    "cond": {"$gte": ["$$applied.at", cutoff]},
                }
            },
            [{"op_id": operation_id, "at": now}],
        ]
    }


def applied_ops_contains(doc: dict[str, Any] | None, operation_id: str) -> bool:
    if not doc:
        return False
    return any(item.get("op_id") == operation_id for item in doc.get("applied_ops") or [])


def to_object_id(value: Any) -> ObjectId:
    """여러 타입(str, ObjectId 등)을 MongoDB ObjectId 로 변환한다."""

    if isinstance(value, ObjectId):
        return value
    if value is None:
        raise TypeError("ObjectId cannot be None")
    return ObjectId(str(value))


def from_object_id(value: Optional[ObjectId]) -> Optional[str]:
    if value is None:
        return None
    return str(value)


PyObjectId = Annotated[ObjectId, BeforeValidator(to_object_id)]
MongoDateTime = Annotated[datetime, BeforeValidator(to_utc)]


class BaseDocument(BaseModel):
    """MongoDB 도큐먼트용 공통 베이스 모델.

    - ObjectId 같은 임의 타입을 허용
    - alias 기반 직렬화(by_alias)를 사용할 수 있도록 한다.
    - applied_ops 처럼 저장소 내부에서만 쓰는 필드는 무시한다.
    """

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        populate_by_name=True,
        extra="ignore",
    )

    # Mongo 공통 필드
    id: Optional[PyObjectId] = Field(default=None, alias="_id")
    created_at: MongoDateTime
    updated_at: MongoDateTime

    def to_mongo_record(self) -> dict[str, Any]:
        """MongoDB 저장에 사용할 표준 레코드(dict) 직렬화.

        - by_alias=True 로 id -> _id 등의 Mongo 필드 이름과 일치시킨다.
        - exclude_none=True 로 _id=None 같은 필드를 제거해 Mongo가 ObjectId 를 생성하도록 한다.
        """

        return self.model_dump(by_alias=True, exclude_none=True)


def build_document_data_from_domain(
    domain_model: BaseModel, *, exclude: set[str] | None = None
) -> dict[str, Any]:
    """도메인 Pydantic 모델을 Mongo 도큐먼트 dict 로 변환하는 공통 유틸.

    - 도메인의 문자열 id 는 Mongo ObjectId 와 섞이지 않도록 기본으로 제외한다.
    - created_at / updated_at 은 도메인 모델에 모두 존재한다는 전제를 따른다.
    """

    excluded = {"id"} | (exclude or set())
    return domain_model.model_dump(by_alias=True, exclude=excluded)
