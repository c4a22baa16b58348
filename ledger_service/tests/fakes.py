"""테스트용 인메모리 레포지토리.

Mongo 의 단일 문서 조건부 업데이트를 lock 하나로 흉내 낸다. 조건 검사와 쓰기가
lock 안에서 함께 일어나므로 동시성 테스트에서도 저장소 수준 보장과 같은 결과를 낸다.
fail(name, times) 로 특정 메서드에 StoreUnavailableError 를 주입할 수 있다.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Any

from ledger_service.app.exceptions import (
    AccountNotFoundError,
    DuplicateRequestError,
    InsufficientFundsError,
    OutOfStockError,
    PrizeUnavailableError,
    StoreUnavailableError,
)
from ledger_service.app.models.access_grant import AccessGrant
from ledger_service.app.models.account import Account, BalanceField
from ledger_service.app.models.compensation import CompensationTask
from ledger_service.app.models.deposit import DepositRequest, DepositStatus
from ledger_service.app.models.prize import Prize, PrizeStatus
from ledger_service.app.models.redemption import (
    IN_FLIGHT_STEPS,
    RedemptionRequest,
    RedemptionStatus,
    SagaStep,
)
from ledger_service.app.models.transaction import Asset, TransactionLogEntry


APPLIED_OPS_RETENTION = timedelta(hours=168)


def _record_op(
    ops: dict[str, datetime], operation_id: str, now: datetime, retention: timedelta
) -> None:
    """applied_ops 파이프라인과 같게 보존 기간이 지난 항목을 버리고 새 항목을 남긴다."""
    cutoff = now - retention
    for key in [key for key, at in ops.items() if at < cutoff]:
        del ops[key]
    ops[operation_id] = now


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class _FailureInjector:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failures: dict[str, int] = defaultdict(int)
        self.calls: dict[str, int] = defaultdict(int)

    def fail(self, name: str, times: int = 1) -> None:
        self._failures[name] += times

    def _enter(self, name: str) -> None:
        self.calls[name] += 1
        if self._failures[name] > 0:
            self._failures[name] -= 1
            raise StoreUnavailableError(f"injected failure in {name}")


class FakeAccountRepository(_FailureInjector):
    def __init__(
        self, clock: FakeClock, applied_ops_retention: timedelta = APPLIED_OPS_RETENTION
    ) -> None:
        super().__init__()
        self._clock = clock
        self._retention = applied_ops_retention
        self.docs: dict[str, dict[str, Any]] = {}

    def seed(self, account_id: str, *, points: int = 0, currency: int = 0) -> None:
        now = self._clock()
        self.docs[account_id] = {
            "account_id": account_id,
            "points_balance": points,
            "currency_balance": currency,
            "applied_ops": {},
            "created_at": now,
            "updated_at": now,
        }

    def open(self, account_id: str) -> Account:
        with self._lock:
            self._enter("open")
            if account_id not in self.docs:
                self.seed(account_id)
            return self._to_domain(self.docs[account_id])

    def get(self, account_id: str) -> Account | None:
        with self._lock:
            self._enter("get")
            doc = self.docs.get(account_id)
            return self._to_domain(doc) if doc else None

    def adjust_balance(
        self,
        account_id: str,
        field: BalanceField,
        delta: int,
        *,
        floor: int = 0,
        operation_id: str | None = None,
    ) -> int:
        with self._lock:
            self._enter("adjust_balance")
            doc = self.docs.get(account_id)
            if doc is None:
                raise AccountNotFoundError(account_id=account_id)
            key = str(field)
            if operation_id is not None and operation_id in doc["applied_ops"]:
                return doc[key]
            if doc[key] + delta < floor:
                raise InsufficientFundsError(account_id=account_id, balance=doc[key], delta=delta)
            doc[key] += delta
            doc["updated_at"] = self._clock()
            if operation_id is not None:
                _record_op(doc["applied_ops"], operation_id, self._clock(), self._retention)
            return doc[key]

    def has_applied(self, account_id: str, operation_id: str) -> bool:
        with self._lock:
            self._enter("has_applied")
            doc = self.docs.get(account_id)
            return bool(doc) and operation_id in doc["applied_ops"]

    def list_ids_updated_since(self, since: datetime, limit: int) -> list[str]:
        with self._lock:
            docs = sorted(self.docs.values(), key=lambda d: d["updated_at"])
            return [d["account_id"] for d in docs if d["updated_at"] >= since][:limit]

    def balance(self, account_id: str, field: BalanceField) -> int:
        return self.docs[account_id][str(field)]

    @staticmethod
    def _to_domain(doc: dict[str, Any]) -> Account:
        return Account(
            account_id=doc["account_id"],
            points_balance=doc["points_balance"],
            currency_balance=doc["currency_balance"],
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )


class FakeAccessGrantRepository(_FailureInjector):
    def __init__(
        self, clock: FakeClock, applied_ops_retention: timedelta = APPLIED_OPS_RETENTION
    ) -> None:
        super().__init__()
        self._clock = clock
        self._retention = applied_ops_retention
        self.docs: dict[str, dict[str, Any]] = {}

    def get(self, account_id: str) -> AccessGrant | None:
        with self._lock:
            self._enter("get")
            doc = self.docs.get(account_id)
            return self._to_domain(doc) if doc else None

    def extend(
        self, account_id: str, duration: timedelta, now: datetime, operation_id: str
    ) -> AccessGrant:
        with self._lock:
            self._enter("extend")
            doc = self.docs.get(account_id)
            if doc is None:
                doc = {"account_id": account_id, "expires_at": now, "created_at": now, "applied_ops": {}}
                self.docs[account_id] = doc
            if operation_id not in doc["applied_ops"]:
                doc["expires_at"] = max(now, doc["expires_at"]) + duration
                _record_op(doc["applied_ops"], operation_id, now, self._retention)
            doc["updated_at"] = now
            return self._to_domain(doc)

    def prune_expired(self, before: datetime) -> int:
        with self._lock:
            expired = [k for k, d in self.docs.items() if d["expires_at"] < before]
            for key in expired:
                del self.docs[key]
            return len(expired)

    @staticmethod
    def _to_domain(doc: dict[str, Any]) -> AccessGrant:
        return AccessGrant(
            account_id=doc["account_id"],
            expires_at=doc["expires_at"],
            created_at=doc["created_at"],
            updated_at=doc["updated_at"],
        )


class FakePrizeRepository(_FailureInjector):
    def __init__(
        self, clock: FakeClock, applied_ops_retention: timedelta = APPLIED_OPS_RETENTION
    ) -> None:
        super().__init__()
        self._clock = clock
        self._retention = applied_ops_retention
        self.prizes: dict[str, Prize] = {}
        self.applied_ops: dict[str, dict[str, datetime]] = defaultdict(dict)

    def seed(
        self,
        prize_id: str,
        *,
        points_required: int = 100,
        stock: int | None = 1,
        status: PrizeStatus = PrizeStatus.PUBLISHED,
        is_active: bool = True,
    ) -> Prize:
        now = self._clock()
        prize = Prize(
            prize_id=prize_id,
            name=f"prize {prize_id}",
            points_required=points_required,
            stock=stock,
            status=status,
            is_active=is_active,
            created_at=now,
            updated_at=now,
        )
        self.prizes[prize_id] = prize
        return prize

    def create(self, prize: Prize) -> Prize:
        with self._lock:
            if prize.prize_id in self.prizes:
                raise DuplicateRequestError(prize_id=prize.prize_id)
            self.prizes[prize.prize_id] = prize
            return prize

    def get(self, prize_id: str) -> Prize | None:
        with self._lock:
            self._enter("get")
            return self.prizes.get(prize_id)

    def list(self, redeemable_only: bool, page: int, page_size: int) -> tuple[list[Prize], int]:
        with self._lock:
            items = [p for p in self.prizes.values() if p.is_redeemable or not redeemable_only]
            items.sort(key=lambda p: p.created_at, reverse=True)
            start = (page - 1) * page_size
            return items[start : start + page_size], len(items)

    def update_fields(self, prize_id: str, updates: dict[str, Any]) -> Prize | None:
        with self._lock:
            prize = self.prizes.get(prize_id)
            if prize is None:
                return None
            updated = prize.model_copy(update={**updates, "updated_at": self._clock()})
            self.prizes[prize_id] = updated
            return updated

    def decrement_stock(self, prize_id: str, operation_id: str | None = None) -> Prize:
        with self._lock:
            self._enter("decrement_stock")
            prize = self.prizes.get(prize_id)
            if prize is None:
                raise PrizeUnavailableError(prize_id=prize_id)
            if operation_id is not None and operation_id in self.applied_ops[prize_id]:
                return prize
            if prize.status != PrizeStatus.PUBLISHED or not prize.is_active:
                raise PrizeUnavailableError(prize_id=prize_id)
            if prize.stock is not None and prize.stock <= 0:
                raise OutOfStockError(prize_id=prize_id)
            if prize.stock is not None:
                prize = prize.model_copy(update={"stock": prize.stock - 1})
                self.prizes[prize_id] = prize
            if operation_id is not None:
                _record_op(
                    self.applied_ops[prize_id], operation_id, self._clock(), self._retention
                )
            return prize

    def restock(
        self, prize_id: str, quantity: int = 1, operation_id: str | None = None
    ) -> Prize | None:
        with self._lock:
            self._enter("restock")
            prize = self.prizes.get(prize_id)
            if prize is None:
                return None
            if operation_id is not None and operation_id in self.applied_ops[prize_id]:
                return prize
            if prize.stock is None:
                return prize
            prize = prize.model_copy(update={"stock": prize.stock + quantity})
            self.prizes[prize_id] = prize
            if operation_id is not None:
                _record_op(
                    self.applied_ops[prize_id], operation_id, self._clock(), self._retention
                )
            return prize

    def has_applied(self, prize_id: str, operation_id: str) -> bool:
        with self._lock:
            self._enter("has_applied")
            return operation_id in self.applied_ops[prize_id]


class FakeRedemptionRepository(_FailureInjector):
    def __init__(self, clock: FakeClock) -> None:
        super().__init__()
        self._clock = clock
        self.requests: dict[str, RedemptionRequest] = {}
        # dedup_key -> request_id. partial unique 인덱스 역할.
        self.open_keys: dict[str, str] = {}

    def reserve(self, request: RedemptionRequest) -> RedemptionRequest:
        with self._lock:
            self._enter("reserve")
            if request.dedup_key in self.open_keys:
                raise DuplicateRequestError(
                    account_id=request.account_id, prize_id=request.prize_id
                )
            self.requests[request.request_id] = request
            self.open_keys[request.dedup_key] = request.request_id
            return request

    def _update(self, request_id: str, **changes: Any) -> RedemptionRequest:
        updated = self.requests[request_id].model_copy(
            update={**changes, "updated_at": self._clock()}
        )
        self.requests[request_id] = updated
        return updated

    def _release(self, request: RedemptionRequest) -> None:
        if self.open_keys.get(request.dedup_key) == request.request_id:
            del self.open_keys[request.dedup_key]

    def advance_step(self, request_id: str, from_step: SagaStep, to_step: SagaStep) -> bool:
        with self._lock:
            self._enter("advance_step")
            current = self.requests.get(request_id)
            if current is None or current.saga_step != from_step:
                return False
            self._update(request_id, saga_step=to_step)
            return True

    def commit(self, request_id: str, now: datetime) -> RedemptionRequest | None:
        with self._lock:
            self._enter("commit")
            current = self.requests.get(request_id)
            if current is None or current.saga_step != SagaStep.STOCK_DECREMENTED:
                return None
            return self._update(
                request_id, saga_step=SagaStep.COMPLETED, status=RedemptionStatus.PENDING
            )

    def abort(self, request_id: str, from_step: SagaStep) -> bool:
        with self._lock:
            self._enter("abort")
            current = self.requests.get(request_id)
            if current is None or current.saga_step != from_step:
                return False
            self._release(self._update(request_id, saga_step=SagaStep.ABORTED))
            return True

    def transition(
        self,
        request_id: str,
        from_status: RedemptionStatus,
        to_status: RedemptionStatus,
        now: datetime,
        notes: str | None = None,
    ) -> RedemptionRequest | None:
        with self._lock:
            self._enter("transition")
            current = self.requests.get(request_id)
            if current is None or current.status != from_status:
                return None
            changes: dict[str, Any] = {"status": to_status, "processed_at": now}
            if notes is not None:
                changes["notes"] = notes
            updated = self._update(request_id, **changes)
            if from_status == RedemptionStatus.PENDING:
                self._release(updated)
            return updated

    def get(self, request_id: str) -> RedemptionRequest | None:
        with self._lock:
            return self.requests.get(request_id)

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:
        with self._lock:
            items = [
                r
                for r in self.requests.values()
                if r.account_id == account_id and r.status is not None
            ]
            items.sort(key=lambda r: r.requested_at, reverse=True)
            start = (page - 1) * page_size
            return items[start : start + page_size], len(items)

    def list_by_status(
        self, status: RedemptionStatus | None, page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:
        with self._lock:
            items = [
                r
                for r in self.requests.values()
                if r.status is not None and (status is None or r.status == status)
            ]
            items.sort(key=lambda r: r.requested_at)
            start = (page - 1) * page_size
            return items[start : start + page_size], len(items)

    def list_stale(self, before: datetime, limit: int) -> list[RedemptionRequest]:
        with self._lock:
            items = [
                r
                for r in self.requests.values()
                if r.saga_step in IN_FLIGHT_STEPS and r.updated_at < before
            ]
            return sorted(items, key=lambda r: r.updated_at)[:limit]

    def pending_count(self, account_id: str, prize_id: str) -> int:
        return sum(
            1
            for r in self.requests.values()
            if r.account_id == account_id
            and r.prize_id == prize_id
            and r.status == RedemptionStatus.PENDING
        )


class FakeTransactionLogRepository(_FailureInjector):
    def __init__(self) -> None:
        super().__init__()
        self.entries: list[TransactionLogEntry] = []

    def append(self, entry: TransactionLogEntry) -> TransactionLogEntry:
        with self._lock:
            self._enter("append")
            for existing in self.entries:
                if existing.operation_id == entry.operation_id:
                    return existing
            stored = entry.model_copy(update={"id": f"tx-{len(self.entries) + 1}"})
            self.entries.append(stored)
            return stored

    def get_by_operation_id(self, operation_id: str) -> TransactionLogEntry | None:
        with self._lock:
            self._enter("get_by_operation_id")
            for entry in self.entries:
                if entry.operation_id == operation_id:
                    return entry
            return None

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[TransactionLogEntry], int]:
        with self._lock:
            items = [e for e in reversed(self.entries) if e.account_id == account_id]
            start = (page - 1) * page_size
            return items[start : start + page_size], len(items)

    def sum_by_asset(self, account_id: str) -> dict[Asset, int]:
        with self._lock:
            totals = {asset: 0 for asset in Asset}
            for entry in self.entries:
                if entry.account_id == account_id and entry.status == "approved":
                    totals[entry.asset] += entry.amount
            return totals


class FakeDepositRepository(_FailureInjector):
    def __init__(self) -> None:
        super().__init__()
        self.deposits: dict[str, DepositRequest] = {}

    def create(self, deposit: DepositRequest) -> DepositRequest:
        with self._lock:
            for existing in self.deposits.values():
                if (existing.payment_method, existing.external_reference) == (
                    deposit.payment_method,
                    deposit.external_reference,
                ):
                    raise DuplicateRequestError(external_reference=deposit.external_reference)
            self.deposits[deposit.deposit_id] = deposit
            return deposit

    def get(self, deposit_id: str) -> DepositRequest | None:
        with self._lock:
            return self.deposits.get(deposit_id)

    def transition(
        self,
        deposit_id: str,
        from_status: DepositStatus,
        to_status: DepositStatus,
        now: datetime,
        processed_by: str | None = None,
        notes: str | None = None,
    ) -> DepositRequest | None:
        with self._lock:
            current = self.deposits.get(deposit_id)
            if current is None or current.status != from_status:
                return None
            changes: dict[str, Any] = {
                "status": to_status,
                "processed_at": now,
                "processed_by": processed_by,
                "updated_at": now,
            }
            if notes is not None:
                changes["notes"] = notes
            updated = current.model_copy(update=changes)
            self.deposits[deposit_id] = updated
            return updated

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[DepositRequest], int]:
        with self._lock:
            items = [d for d in self.deposits.values() if d.account_id == account_id]
            start = (page - 1) * page_size
            return items[start : start + page_size], len(items)


class FakeEscalator:
    def __init__(self) -> None:
        self.escalated: list[tuple[CompensationTask, int, str | None]] = []
        self.broken = False

    def escalate(self, task: CompensationTask, attempts: int, last_error: str | None) -> None:
        if self.broken:
            raise RuntimeError("kafka unavailable")
        self.escalated.append((task, attempts, last_error))
