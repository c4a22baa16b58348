"""경품 교환 요청 레포지토리 구현체.

요청 문서가 생성 사가의 상태(saga_step)를 함께 들고 있다. 단계 전이는 모두
현재 단계를 조건으로 건 compare-and-set 이라, 사가를 실행하는 프로세스와
복구 작업이 같은 요청을 동시에 건드려도 한쪽만 이긴다.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.types import utc_now

from ..exceptions import DuplicateRequestError
from ..models.redemption import (
    IN_FLIGHT_STEPS,
    RedemptionRequest,
    RedemptionStatus,
    SagaStep,
)
from .documents.redemption_document import RedemptionDocument
from .errors import translate_store_errors
from .interfaces import RedemptionRepositoryInterface


logger = logging.getLogger(__name__)


class RedemptionRepository(RedemptionRepositoryInterface):
    """redemption_requests 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["redemption_requests"]
        self._col.create_indexes(
            [
                IndexModel([("request_id", ASCENDING)], unique=True, name="uniq_request_id"),
                # (계정, 경품) 당 진행 중/대기 요청 1개. dedup_key 가 있는 문서에만 적용된다.
                IndexModel(
                    [("dedup_key", ASCENDING)],
                    unique=True,
                    name="uniq_open_dedup_key",
                    partialFilterExpression={"dedup_key": {"$type": "string"}},
                ),
                IndexModel(
                    [("account_id", ASCENDING), ("requested_at", DESCENDING)],
                    name="idx_account_requested",
                ),
                IndexModel(
                    [("status", ASCENDING), ("requested_at", ASCENDING)],
                    name="idx_status_requested",
                ),
                IndexModel(
                    [("saga_step", ASCENDING), ("created_at", ASCENDING)],
                    name="idx_saga_step_created",
                ),
            ]
        )

    def reserve(self, request: RedemptionRequest) -> RedemptionRequest:
        payload = RedemptionDocument.from_domain(request).to_mongo_record()
        try:
            with translate_store_errors("redemption.reserve"):
                self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            raise DuplicateRequestError(
                account_id=request.account_id, prize_id=request.prize_id
            ) from exc
        return request

    def advance_step(self, request_id: str, from_step: SagaStep, to_step: SagaStep) -> bool:
        with translate_store_errors("redemption.advance_step"):
            result = self._col.update_one(
                {"request_id": request_id, "saga_step": str(from_step)},
                {"$set": {"saga_step": str(to_step), "updated_at": utc_now()}},
            )
        return result.modified_count == 1

    def commit(self, request_id: str, now: datetime) -> RedemptionRequest | None:
        """stock_decremented -> completed 로 넘기며 status=pending 으로 공개한다."""
        with translate_store_errors("redemption.commit"):
            doc = self._col.find_one_and_update(
                {"request_id": request_id, "saga_step": str(SagaStep.STOCK_DECREMENTED)},
                {
                    "$set": {
                        "saga_step": str(SagaStep.COMPLETED),
                        "status": str(RedemptionStatus.PENDING),
                        "updated_at": now,
                    }
                },
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            return None
        return RedemptionDocument.model_validate(doc).to_domain()

    def abort(self, request_id: str, from_step: SagaStep) -> bool:
        """사가를 중단하고 dedup_key 를 풀어 같은 쌍의 재요청을 허용한다."""
        with translate_store_errors("redemption.abort"):
            result = self._col.update_one(
                {"request_id": request_id, "saga_step": str(from_step)},
                {
                    "$set": {"saga_step": str(SagaStep.ABORTED), "updated_at": utc_now()},
                    "$unset": {"dedup_key": ""},
                },
            )
        return result.modified_count == 1

    def transition(
        self,
        request_id: str,
        from_status: RedemptionStatus,
        to_status: RedemptionStatus,
        now: datetime,
        notes: str | None = None,
    ) -> RedemptionRequest | None:
        update: dict[str, Any] = {
            "$set": {
                "status": str(to_status),
                "processed_at": now,
                "updated_at": now,
            }
        }
        if notes is not None:
            update["$set"]["notes"] = notes
        if from_status == RedemptionStatus.PENDING:
            update["$unset"] = {"dedup_key": ""}

        with translate_store_errors("redemption.transition"):
            doc = self._col.find_one_and_update(
                {"request_id": request_id, "status": str(from_status)},
                update,
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            return None
        return RedemptionDocument.model_validate(doc).to_domain()

    def get(self, request_id: str) -> RedemptionRequest | None:
        with translate_store_errors("redemption.get"):
            doc = self._col.find_one({"request_id": request_id})
        if not doc:
            return None
        return RedemptionDocument.model_validate(doc).to_domain()

    def _paginate(
        self, query: dict[str, Any], sort: list[tuple[str, int]], page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:
        skip = (page - 1) * page_size
        with translate_store_errors("redemption.list"):
            total = self._col.count_documents(query)
            cursor = self._col.find(query, sort=sort, skip=skip, limit=page_size)
            items = [RedemptionDocument.model_validate(raw).to_domain() for raw in cursor]
        return items, total

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:
        # 사가가 끝나지 않은 요청(status=None)은 노출하지 않는다.
        return self._paginate(
            {"account_id": account_id, "status": {"$ne": None}},
            [("requested_at", DESCENDING), ("_id", DESCENDING)],
            page,
            page_size,
        )

    def list_by_status(
        self, status: RedemptionStatus | None, page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:
        query: dict[str, Any] = (
            {"status": {"$ne": None}} if status is None else {"status": str(status)}
        )
        # 관리자 대기열은 오래된 요청부터
        return self._paginate(
            query, [("requested_at", ASCENDING), ("_id", ASCENDING)], page, page_size
        )

    def list_stale(self, before: datetime, limit: int) -> list[RedemptionRequest]:
        with translate_store_errors("redemption.list_stale"):
            cursor = self._col.find(
                {
                    "saga_step": {"$in": [str(step) for step in IN_FLIGHT_STEPS]},
                    "updated_at": {"$lt": before},
                },
                sort=[("updated_at", ASCENDING)],
                limit=limit,
            )
            return [RedemptionDocument.model_validate(raw).to_domain() for raw in cursor]
