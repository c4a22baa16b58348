"""퀴즈 이용권 레포지토리 구현체.

연장은 파이프라인 업데이트 한 번으로 expires_at = max(now, expires_at) + duration 을
계산한다. 읽고-계산하고-쓰는 왕복이 없으므로 동시 구매가 서로를 덮어쓰지 않는다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pymongo import ASCENDING, IndexModel, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, OperationFailure

from common.mongo.types import applied_ops_append

from ..exceptions import StoreUnavailableError
from ..models.access_grant import AccessGrant
from .documents.access_grant_document import AccessGrantDocument
from .errors import translate_store_errors
from .interfaces import AccessGrantRepositoryInterface


logger = logging.getLogger(__name__)

# 계정당 문서 1개라 upsert 경합은 드물다. 몇 번이면 충분하다.
MAX_UPSERT_ATTEMPTS = 3

TTL_INDEX_NAME = "ttl_expires_at"

# createIndexes 가 같은 이름, 다른 옵션의 인덱스를 만나면 내는 코드
INDEX_OPTIONS_CONFLICT = 85


class AccessGrantRepository(AccessGrantRepositoryInterface):
    """access_grants 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(
        self,
        database: Database,
        retention: timedelta,
        applied_ops_retention: timedelta,
    ) -> None:
        """retention: 만료 후 문서를 보관하는 기간. 지나면 TTL 인덱스가 지운다."""

        self._db = database
        self._col = database["access_grants"]
        self._applied_ops_retention = applied_ops_retention
        self._col.create_indexes(
            [
                IndexModel(
                    [("account_id", ASCENDING)],
                    unique=True,
                    name="uniq_account_id",
                ),
            ]
        )
        self._ensure_ttl_index(int(retention.total_seconds()))

    def _ensure_ttl_index(self, expire_after_seconds: int) -> None:
        try:
            self._col.create_indexes(
                [
                    IndexModel(
                        [("expires_at", ASCENDING)],
                        name=TTL_INDEX_NAME,
                        expireAfterSeconds=expire_after_seconds,
                    ),
                ]
            )
        except OperationFailure as exc:
            if exc.code != INDEX_OPTIONS_CONFLICT:
                raise
            # 설정이 바뀐 경우. 인덱스를 다시 만들지 않고 보관 기간만 고친다.
            self._db.command(
                "collMod",
                self._col.name,
                index={"name": TTL_INDEX_NAME, "expireAfterSeconds": expire_after_seconds},
            )
            logger.info(
                "access grant TTL updated (expireAfterSeconds=%s)", expire_after_seconds
            )

    def get(self, account_id: str) -> AccessGrant | None:
        with translate_store_errors("access_grant.get"):
            doc = self._col.find_one({"account_id": account_id}, {"applied_ops": 0})
        if not doc:
            return None
        return AccessGrantDocument.model_validate(doc).to_domain()

    def extend(
        self,
        account_id: str,
        duration: timedelta,
        now: datetime,
        operation_id: str,
    ) -> AccessGrant:
        duration_ms = int(duration.total_seconds() * 1000)
        pipeline = [
            {
                "$set": {
                    "account_id": account_id,
                    "expires_at": {
                        "$add": [
                            {"$max": [{"$ifNull": ["$expires_at", now]}, now]},
                            duration_ms,
                        ]
                    },
                    "created_at": {"$ifNull": ["$created_at", now]},
                    "updated_at": now,
                    "applied_ops": applied_ops_append(
                        operation_id, now, self._applied_ops_retention
                    ),
                }
            }
        ]

        for attempt in range(1, MAX_UPSERT_ATTEMPTS + 1):
            try:
                with translate_store_errors("access_grant.extend"):
                    doc = self._col.find_one_and_update(
                        {"account_id": account_id, "applied_ops.op_id": {"$ne": operation_id}},
                        pipeline,
                        projection={"applied_ops": 0},
                        upsert=True,
                        return_document=ReturnDocument.AFTER,
                    )
                return AccessGrantDocument.model_validate(doc).to_domain()
            except DuplicateKeyError:
                # 1) 이미 같은 operation_id 로 연장됨 -> 현재 상태 반환
                # 2) 동시 최초 구매 경합 -> 문서가 생겼으니 다시 시도하면 갱신 경로로 간다
                with translate_store_errors("access_grant.extend"):
                    existing = self._col.find_one(
                        {"account_id": account_id, "applied_ops.op_id": operation_id},
                        {"applied_ops": 0},
                    )
                if existing is not None:
                    logger.info(
                        "access extension already applied",
                        extra={"account_id": account_id, "operation_id": operation_id},
                    )
                    return AccessGrantDocument.model_validate(existing).to_domain()
                logger.debug(
                    "access grant upsert race, retrying (attempt=%s)",
                    attempt,
                    extra={"account_id": account_id},
                )

        raise StoreUnavailableError(
            "access grant upsert did not converge",
            account_id=account_id,
            operation_id=operation_id,
        )

    def prune_expired(self, before: datetime) -> int:
        with translate_store_errors("access_grant.prune_expired"):
            result = self._col.delete_many({"expires_at": {"$lt": before}})
        return result.deleted_count
