from __future__ import annotations

from datetime import datetime
from typing import Any

from pymongo import ASCENDING, DESCENDING, IndexModel, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from ..exceptions import DuplicateRequestError
from ..models.deposit import DepositRequest, DepositStatus
from .documents.deposit_document import DepositDocument
from .errors import translate_store_errors
from .interfaces import DepositRepositoryInterface


class DepositRepository(DepositRepositoryInterface):
    """deposit_requests 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database) -> None:
        self._db = database
        self._col = database["deposit_requests"]
        self._col.create_indexes(
            [
                IndexModel([("deposit_id", ASCENDING)], unique=True, name="uniq_deposit_id"),
                # 같은 결제 영수증으로 두 번 충전 요청할 수 없다.
                IndexModel(
                    [("payment_method", ASCENDING), ("external_reference", ASCENDING)],
                    unique=True,
                    name="uniq_payment_reference",
                ),
                IndexModel(
                    [("account_id", ASCENDING), ("created_at", DESCENDING)],
                    name="idx_account_created",
                ),
            ]
        )

    def create(self, deposit: DepositRequest) -> DepositRequest:
        payload = DepositDocument.from_domain(deposit).to_mongo_record()
        try:
            with translate_store_errors("deposit.create"):
                self._col.insert_one(payload)
        except DuplicateKeyError as exc:
            raise DuplicateRequestError(
                "deposit reference already submitted",
                payment_method=deposit.payment_method,
                external_reference=deposit.external_reference,
            ) from exc
        return deposit

    def get(self, deposit_id: str) -> DepositRequest | None:
        with translate_store_errors("deposit.get"):
            doc = self._col.find_one({"deposit_id": deposit_id})
        if not doc:
            return None
        return DepositDocument.model_validate(doc).to_domain()

    def transition(
        self,
        deposit_id: str,
        from_status: DepositStatus,
        to_status: DepositStatus,
        now: datetime,
        processed_by: str | None = None,
        notes: str | None = None,
    ) -> DepositRequest | None:
        changes: dict[str, Any] = {
            "status": str(to_status),
            "processed_at": now,
            "processed_by": processed_by,
            "updated_at": now,
        }
        if notes is not None:
            changes["notes"] = notes

        with translate_store_errors("deposit.transition"):
            doc = self._col.find_one_and_update(
                {"deposit_id": deposit_id, "status": str(from_status)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        if not doc:
            return None
        return DepositDocument.model_validate(doc).to_domain()

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[DepositRequest], int]:
        skip = (page - 1) * page_size
        with translate_store_errors("deposit.list_by_account"):
            total = self._col.count_documents({"account_id": account_id})
            cursor = self._col.find(
                {"account_id": account_id},
                sort=[("created_at", DESCENDING), ("_id", DESCENDING)],
                skip=skip,
                limit=page_size,
            )
            items = [DepositDocument.model_validate(raw).to_domain() for raw in cursor]
        return items, total
