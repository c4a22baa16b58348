"""계정 잔액 레포지토리 구현체 (Ledger Store).

모든 잔액 변경은 find_one_and_update 한 번으로 끝나는 조건부 쓰기다.
조건: 변경 후 잔액 >= floor, 그리고 같은 operation_id 가 아직 적용되지 않았을 것.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from pymongo import ASCENDING, IndexModel, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from common.mongo.types import applied_ops_append, applied_ops_contains, utc_now

from ..exceptions import AccountNotFoundError, InsufficientFundsError
from ..models.account import Account, BalanceField
from .documents.account_document import AccountDocument
from .errors import translate_store_errors
from .interfaces import AccountRepositoryInterface


logger = logging.getLogger(__name__)


class AccountRepository(AccountRepositoryInterface):
    """accounts 컬렉션에 대한 MongoDB 접근 레이어."""

    def __init__(self, database: Database, applied_ops_retention: timedelta) -> None:
        self._db = database
        self._col = database["accounts"]
        self._applied_ops_retention = applied_ops_retention
        self._col.create_indexes(
            [
                IndexModel(
                    [("account_id", ASCENDING)],
                    unique=True,
                    name="uniq_account_id",
                ),
                IndexModel([("updated_at", ASCENDING)], name="idx_updated_at"),
            ]
        )

    def open(self, account_id: str) -> Account:
        """계정이 없으면 잔액 0으로 만들고, 있으면 그대로 반환한다."""
        now = utc_now()
        try:
            with translate_store_errors("account.open"):
                doc = self._col.find_one_and_update(
                    {"account_id": account_id},
                    {
                        "$setOnInsert": {
                            "account_id": account_id,
                            "points_balance": 0,
                            "currency_balance": 0,
                            "applied_ops": [],
                            "created_at": now,
                            "updated_at": now,
                        }
                    },
                    upsert=True,
                    return_document=ReturnDocument.AFTER,
                )
        except DuplicateKeyError:
            # 동시 upsert 경합에서 진 쪽. 이긴 쪽이 만든 문서를 읽는다.
            with translate_store_errors("account.open"):
                doc = self._col.find_one({"account_id": account_id})
        return AccountDocument.model_validate(doc).to_domain()

    def get(self, account_id: str) -> Account | None:
        with translate_store_errors("account.get"):
            doc = self._col.find_one({"account_id": account_id}, {"applied_ops": 0})
        if not doc:
            return None
        return AccountDocument.model_validate(doc).to_domain()

    def adjust_balance(
        self,
        account_id: str,
        field: BalanceField,
        delta: int,
        *,
        floor: int = 0,
        operation_id: str | None = None,
    ) -> int:
        field_name = str(field)
        now = utc_now()
        query: dict = {
            "account_id": account_id,
            field_name: {"$gte": floor - delta},
        }
        stage: dict = {
            field_name: {"$add": [f"${field_name}", delta]},
            "updated_at": now,
        }
        if operation_id is not None:
            query["applied_ops.op_id"] = {"$ne": operation_id}
            stage["applied_ops"] = applied_ops_append(
                operation_id, now, self._applied_ops_retention
            )

        with translate_store_errors("account.adjust_balance"):
            doc = self._col.find_one_and_update(
                query,
                [{"$set": stage}],
                projection={field_name: 1},
                return_document=ReturnDocument.AFTER,
            )
        if doc is not None:
            return int(doc[field_name])

        # 조건 불일치. 원인을 구분하기 위한 진단용 읽기이며 아무것도 쓰지 않는다.
        with translate_store_errors("account.adjust_balance"):
            current = self._col.find_one(
                {"account_id": account_id},
                {field_name: 1, "applied_ops": 1},
            )
        if current is None:
            raise AccountNotFoundError(account_id=account_id)
        if operation_id is not None and applied_ops_contains(current, operation_id):
            logger.info(
                "balance adjustment already applied",
                extra={"account_id": account_id, "operation_id": operation_id},
            )
            return int(current.get(field_name, 0))
        raise InsufficientFundsError(
            account_id=account_id,
            field=field_name,
            balance=int(current.get(field_name, 0)),
            delta=delta,
        )

    def has_applied(self, account_id: str, operation_id: str) -> bool:
        with translate_store_errors("account.has_applied"):
            found = self._col.count_documents(
                {"account_id": account_id, "applied_ops.op_id": operation_id}, limit=1
            )
        return found > 0

    def list_ids_updated_since(self, since: datetime, limit: int) -> list[str]:
        with translate_store_errors("account.list_ids_updated_since"):
            cursor = self._col.find(
                {"updated_at": {"$gte": since}},
                {"account_id": 1},
                sort=[("updated_at", ASCENDING)],
                limit=limit,
            )
            return [doc["account_id"] for doc in cursor]
