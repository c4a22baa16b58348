"""경품 레포지토리 구현체 (Inventory Guard).

재고 차감은 "교환 가능 + (무제한 또는 stock > 0)" 조건을 건 단일 업데이트다.
두 요청이 마지막 1개를 동시에 노려도 한쪽만 조건을 만족한다.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.types import applied_ops_append, applied_ops_contains, utc_now

from ..exceptions import DuplicateRequestError, OutOfStockError, PrizeUnavailableError
from ..models.prize import Prize, PrizeStatus
from .documents.prize_document import PrizeDocument
from .errors import translate_store_errors
from .interfaces import PrizeRepositoryInterface


logger = logging.getLogger(__name__)

_REDEEMABLE_FILTER: dict[str, Any] = {
    "status": str(PrizeStatus.PUBLISHED),
    "is_active": True,
}

# 관리자가 PATCH 로 바꿀 수 있는 필드
UPDATABLE_FIELDS = frozenset(
    {"name", "description", "category", "points_required", "status", "is_active", "stock"}
)


class PrizeRepository(PrizeRepositoryInterface):
    """prizes 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, applied_ops_retention: timedelta) -> None:
        self._db = database
        self._col = database["prizes"]
        self._applied_ops_retention = applied_ops_retention
        self._col.create_indexes(
            [
                IndexModel([("prize_id", ASCENDING)], unique=True, name="uniq_prize_id"),
                IndexModel(
                    [("status", ASCENDING), ("is_active", ASCENDING), ("created_at", DESCENDING)],
                    name="idx_status_active_created",
                ),
            ]
        )

    def create(self, prize: Prize) -> Prize:
        doc = PrizeDocument.from_domain(prize)
        payload = doc.to_mongo_record()
        payload["applied_ops"] = []
        try:
            with translate_store_errors("prize.create"):
                self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            raise DuplicateRequestError(
                "prize already exists", prize_id=prize.prize_id
            ) from exc
        return prize

    def get(self, prize_id: str) -> Prize | None:
        with translate_store_errors("prize.get"):
            doc = self._col.find_one({"prize_id": prize_id}, {"applied_ops": 0})
        if not doc:
            return None
        return PrizeDocument.model_validate(doc).to_domain()

    def list(
        self, redeemable_only: bool, page: int, page_size: int
    ) -> tuple[list[Prize], int]:
        query: dict[str, Any] = {}
        if redeemable_only:
            query = {
                **_REDEEMABLE_FILTER,
                "$or": [{"stock": None}, {"stock": {"$gt": 0}}],
            }
        skip = (page - 1) * page_size

        with translate_store_errors("prize.list"):
            total = self._col.count_documents(query)
            cursor = self._col.find(
                query,
                {"applied_ops": 0},
                sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
                skip=skip,
                limit=page_size,
            )
            items = [PrizeDocument.model_validate(raw).to_domain() for raw in cursor]
        return items, total

    def update_fields(self, prize_id: str, updates: dict[str, Any]) -> Prize | None:
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        if "status" in changes:
            changes["status"] = str(changes["status"])
        changes["updated_at"] = utc_now()

        with translate_store_errors("prize.update_fields"):
            doc = self._col.find_one_and_update(
                {"prize_id": prize_id},
                {"$set": changes},
                projection={"applied_ops": 0},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            return None
        return PrizeDocument.model_validate(doc).to_domain()

    def decrement_stock(self, prize_id: str, operation_id: str | None = None) -> Prize:
        now = utc_now()
        query: dict[str, Any] = {
            "prize_id": prize_id,
            **_REDEEMABLE_FILTER,
            "$or": [{"stock": None}, {"stock": {"$gt": 0}}],
        }
        stage: dict[str, Any] = {
            # 무제한(None)은 그대로 두고 유한 재고만 1 감소
            "stock": {
                "$cond": [
                    {"$eq": [{"$ifNull": ["$stock", None]}, None]},
                    None,
                    {"$subtract": ["$stock", 1]},
                ]
            },
            "updated_at": now,
        }
        if operation_id is not None:
            query["applied_ops.op_id"] = {"$ne": operation_id}
            stage["applied_ops"] = applied_ops_append(
                operation_id, now, self._applied_ops_retention
            )

        with translate_store_errors("prize.decrement_stock"):
            doc = self._col.find_one_and_update(
                query,
                [{"$set": stage}],
                projection={"applied_ops": 0},
                return_document=ReturnDocument.AFTER,
            )
        if doc is not None:
            return PrizeDocument.model_validate(doc).to_domain()

        # 진단용 읽기
        with translate_store_errors("prize.decrement_stock"):
            current = self._col.find_one({"prize_id": prize_id})
        if current is None:
            raise PrizeUnavailableError(prize_id=prize_id)
        if operation_id is not None and applied_ops_contains(current, operation_id):
            logger.info(
                "stock decrement already applied",
                extra={"prize_id": prize_id, "operation_id": operation_id},
            )
            return PrizeDocument.model_validate(current).to_domain()
        prize = PrizeDocument.model_validate(current).to_domain()
        if prize.status != PrizeStatus.PUBLISHED or not prize.is_active:
            raise PrizeUnavailableError(prize_id=prize_id)
        raise OutOfStockError(prize_id=prize_id)

    def restock(
        self, prize_id: str, quantity: int = 1, operation_id: str | None = None
    ) -> Prize | None:
        """유한 재고를 quantity 만큼 늘린다. 무제한 재고는 변경하지 않는다.

        경품이 없으면 None. 이미 적용된 operation_id 면 현재 상태를 반환한다.
        """
        now = utc_now()
        query: dict[str, Any] = {"prize_id": prize_id, "stock": {"$ne": None}}
        stage: dict[str, Any] = {
            "stock": {"$add": ["$stock", quantity]},
            "updated_at": now,
        }
        if operation_id is not None:
            query["applied_ops.op_id"] = {"$ne": operation_id}
            stage["applied_ops"] = applied_ops_append(
                operation_id, now, self._applied_ops_retention
            )

        with translate_store_errors("prize.restock"):
            doc = self._col.find_one_and_update(
                query,
                [{"$set": stage}],
                projection={"applied_ops": 0},
                return_document=ReturnDocument.AFTER,
            )
            if doc is None:
                doc = self._col.find_one({"prize_id": prize_id}, {"applied_ops": 0})
        if doc is None:
            return None
        return PrizeDocument.model_validate(doc).to_domain()

    def has_applied(self, prize_id: str, operation_id: str) -> bool:
        with translate_store_errors("prize.has_applied"):
            found = self._col.count_documents(
                {"prize_id": prize_id, "applied_ops.op_id": operation_id}, limit=1
            )
        return found > 0
