from __future__ import annotations

from datetime import timedelta
from typing import Any

from pymongo.errors import OperationFailure

from ledger_service.app.models.account import BalanceField
from ledger_service.app.repositories.access_grant_repository import (
    INDEX_OPTIONS_CONFLICT,
    TTL_INDEX_NAME,
    AccessGrantRepository,
)
from ledger_service.app.repositories.account_repository import AccountRepository
from ledger_service.app.repositories.prize_repository import PrizeRepository


class _RecordingCollection:
    """pymongo Collection 중 레포지토리가 호출하는 부분만 기록한다."""

    def __init__(self, name: str, *, ttl_conflict: bool = False) -> None:
        self.name = name
        self.indexes: list[dict[str, Any]] = []
        self.updates: list[tuple[dict[str, Any], Any]] = []
        self.counts: list[dict[str, Any]] = []
        self.result: dict[str, Any] | None = None
        self._ttl_conflict = ttl_conflict

    def create_indexes(self, models) -> list[str]:
        documents = [model.document for model in models]
        if self._ttl_conflict and any("expireAfterSeconds" in doc for doc in documents):
            raise OperationFailure(
                "index already exists with different options", code=INDEX_OPTIONS_CONFLICT
            )
        self.indexes.extend(documents)
        return [doc["name"] for doc in documents]

    def find_one_and_update(self, query, update, **kwargs):
        self.updates.append((query, update))
        return self.result

    def find_one(self, query, projection=None):
        return self.result

    def count_documents(self, query, limit: int = 0) -> int:
        self.counts.append(query)
        return 1


class _RecordingDatabase:
    def __init__(self, **collection_options: Any) -> None:
        self._options = collection_options
        self.collections: dict[str, _RecordingCollection] = {}
        self.commands: list[tuple[tuple[Any, ...], dict[str, Any]]] = []

    def __getitem__(self, name: str) -> _RecordingCollection:
        if name not in self.collections:
            self.collections[name] = _RecordingCollection(name, **self._options)
        return self.collections[name]

    def command(self, *args: Any, **kwargs: Any) -> dict[str, Any]:
        self.commands.append((args, kwargs))
        return {"ok": 1}


def _applied_ops_parts(stage: dict[str, Any]) -> tuple[dict[str, Any], list[dict[str, Any]]]:
    kept, appended = stage["applied_ops"]["$concatArrays"]
    return kept["$filter"], appended


def test_balance_adjustment_trims_applied_ops_by_age() -> None:
    db = _RecordingDatabase()
    repo = AccountRepository(db, applied_ops_retention=timedelta(hours=168))
    col = db["accounts"]
    col.result = {"points_balance": 130}

    balance = repo.adjust_balance(
        "acc-1", BalanceField.POINTS, 30, operation_id="award:acc-1:quiz-42"
    )

    assert balance == 130
    query, pipeline = col.updates[-1]
    assert query["applied_ops.op_id"] == {"$ne": "award:acc-1:quiz-42"}
    assert query["points_balance"] == {"$gte": -30}
    (stage,) = pipeline
    assert stage["$set"]["points_balance"] == {"$add": ["$points_balance", 30]}
    kept, appended = _applied_ops_parts(stage["$set"])
    (entry,) = appended
    assert entry["op_id"] == "award:acc-1:quiz-42"
    assert kept["cond"] == {"$gte": ["$$applied.at", entry["at"] - timedelta(hours=168)]}
    assert "$slice" not in repr(pipeline)


def test_prize_stock_operations_keep_applied_ops_by_age() -> None:
    db = _RecordingDatabase()
    repo = PrizeRepository(db, applied_ops_retention=timedelta(hours=24))
    col = db["prizes"]
    col.result = None

    repo.restock("prize-1", quantity=2, operation_id="req-1:restock")
    assert repo.has_applied("prize-1", "req-1:stock")

    query, pipeline = col.updates[-1]
    assert query["applied_ops.op_id"] == {"$ne": "req-1:restock"}
    (stage,) = pipeline
    assert stage["$set"]["stock"] == {"$add": ["$stock", 2]}
    kept, (entry,) = _applied_ops_parts(stage["$set"])
    assert kept["cond"]["$gte"][1] == entry["at"] - timedelta(hours=24)
    assert col.counts == [{"prize_id": "prize-1", "applied_ops.op_id": "req-1:stock"}]


def test_access_grant_ttl_follows_configured_retention() -> None:
    db = _RecordingDatabase()

    AccessGrantRepository(
        db, retention=timedelta(hours=48), applied_ops_retention=timedelta(hours=168)
    )

    ttl = next(doc for doc in db["access_grants"].indexes if doc["name"] == TTL_INDEX_NAME)
    assert ttl["expireAfterSeconds"] == 48 * 3600
    assert db.commands == []


def test_access_grant_ttl_is_updated_when_retention_changes() -> None:
    db = _RecordingDatabase(ttl_conflict=True)

    AccessGrantRepository(
        db, retention=timedelta(hours=72), applied_ops_retention=timedelta(hours=168)
    )

    assert db.commands == [
        (
            ("collMod", "access_grants"),
            {"index": {"name": TTL_INDEX_NAME, "expireAfterSeconds": 72 * 3600}},
        )
    ]
