"""트랜잭션 로그 레포지토리 구현체 (append-only)."""

from __future__ import annotations

import logging

from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..models.transaction import Asset, TransactionLogEntry
from .documents.transaction_document import TransactionLogDocument
from .errors import translate_store_errors
from .interfaces import TransactionLogRepositoryInterface


logger = logging.getLogger(__name__)


class TransactionLogRepository(TransactionLogRepositoryInterface):
    """ledger_transactions 컬렉션에 대한 MongoDB 접근 레이어.

    수정/삭제 메서드는 두지 않는다.
    """

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["ledger_transactions"]
        self._col.create_indexes(
            [
                IndexModel(
                    [("operation_id", ASCENDING)],
                    unique=True,
                    name="uniq_operation_id",
                ),
                IndexModel(
                    [("account_id", ASCENDING), ("created_at", DESCENDING)],
                    name="idx_account_created",
                ),
            ]
        )

    def append(self, entry: TransactionLogEntry) -> TransactionLogEntry:
        payload = TransactionLogDocument.from_domain(entry).to_mongo_record()
        try:
            with translate_store_errors("transaction.append"):
                result = self._col.insert_one(payload)
        except DuplicateKeyError:
            # 재시도로 같은 operation_id 가 다시 들어온 경우. 기존 기록을 돌려준다.
            with translate_store_errors("transaction.append"):
                existing = self._col.find_one({"operation_id": entry.operation_id})
            logger.info(
                "transaction already recorded",
                extra={"account_id": entry.account_id, "operation_id": entry.operation_id},
            )
            if existing is None:
                raise
            return TransactionLogDocument.model_validate(existing).to_domain()
        return entry.model_copy(update={"id": str(result.inserted_id)})

    def get_by_operation_id(self, operation_id: str) -> TransactionLogEntry | None:
        with translate_store_errors("transaction.get_by_operation_id"):
            doc = self._col.find_one({"operation_id": operation_id})
        if not doc:
            return None
        return TransactionLogDocument.model_validate(doc).to_domain()

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[TransactionLogEntry], int]:
        """사용자의 트랜잭션 이력 조회 (최신순)."""
        skip = (page - 1) * page_size

        with translate_store_errors("transaction.list_by_account"):
            total = self._col.count_documents({"account_id": account_id})
            cursor = self._col.find(
                {"account_id": account_id},
                sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
                skip=skip,
                limit=page_size,
            )
            items = [TransactionLogDocument.model_validate(raw).to_domain() for raw in cursor]
        return items, total

    def sum_by_asset(self, account_id: str) -> dict[Asset, int]:
        pipeline = [
            {"$match": {"account_id": account_id, "status": "approved"}},
            {"$group": {"_id": "$asset", "total": {"$sum": "$amount"}}},
        ]
        totals = {asset: 0 for asset in Asset}
        with translate_store_errors("transaction.sum_by_asset"):
            for doc in self._col.aggregate(pipeline):
                totals[Asset(doc["_id"])] = int(doc["total"])
        return totals
