from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Protocol

from ..models.access_grant import AccessGrant
from ..models.account import Account, BalanceField
from ..models.deposit import DepositRequest, DepositStatus
from ..models.prize import Prize
from ..models.redemption import RedemptionRequest, RedemptionStatus, SagaStep
from ..models.transaction import Asset, TransactionLogEntry


class AccountRepositoryInterface(Protocol):
    """잔액 원장(Ledger Store)이 따라야 할 계약.

    - 잔액 변경은 adjust_balance 한 번의 원자적 조건부 쓰기로만 이루어진다.
    - 읽고 나서 쓰는 두 번의 왕복은 허용하지 않는다.
    """

    def open(self, account_id: str) -> Account:  # pragma: no cover - Protocol
        ...

    def get(self, account_id: str) -> Account | None:  # pragma: no cover - Protocol
        ...

    def adjust_balance(
        self,
        account_id: str,
        field: BalanceField,
        delta: int,
        *,
        floor: int = 0,
        operation_id: str | None = None,
    ) -> int:  # pragma: no cover - Protocol
        """delta 적용 후 잔액이 floor 이상일 때만 반영하고 결과 잔액을 반환한다.

        - 조건 불만족: InsufficientFundsError
        - 계정 없음: AccountNotFoundError
        - 이미 적용된 operation_id: 아무것도 바꾸지 않고 현재 잔액 반환
        """
        ...

    def has_applied(
        self, account_id: str, operation_id: str
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def list_ids_updated_since(
        self, since: datetime, limit: int
    ) -> list[str]:  # pragma: no cover - Protocol
        ...


class AccessGrantRepositoryInterface(Protocol):
    """퀴즈 이용권 저장소 계약. 계정당 문서 1개."""

    def get(self, account_id: str) -> AccessGrant | None:  # pragma: no cover - Protocol
        ...

    def extend(
        self,
        account_id: str,
        duration: timedelta,
        now: datetime,
        operation_id: str,
    ) -> AccessGrant:  # pragma: no cover - Protocol
        """expires_at = max(now, expires_at) + duration. operation_id 기준 멱등."""
        ...

    def prune_expired(self, before: datetime) -> int:  # pragma: no cover - Protocol
        ...


class PrizeRepositoryInterface(Protocol):
    """경품 재고(Inventory Guard) 계약."""

    def create(self, prize: Prize) -> Prize:  # pragma: no cover - Protocol
        ...

    def get(self, prize_id: str) -> Prize | None:  # pragma: no cover - Protocol
        ...

    def list(
        self, redeemable_only: bool, page: int, page_size: int
    ) -> tuple[list[Prize], int]:  # pragma: no cover - Protocol
        ...

    def update_fields(
        self, prize_id: str, updates: dict[str, Any]
    ) -> Prize | None:  # pragma: no cover - Protocol
        ...

    def decrement_stock(
        self, prize_id: str, operation_id: str | None = None
    ) -> Prize:  # pragma: no cover - Protocol
        """재고가 무제한이거나 0보다 클 때만 1 감소. 아니면 OutOfStockError."""
        ...

    def restock(
        self, prize_id: str, quantity: int = 1, operation_id: str | None = None
    ) -> Prize | None:  # pragma: no cover - Protocol
        ...

    def has_applied(
        self, prize_id: str, operation_id: str
    ) -> bool:  # pragma: no cover - Protocol
        ...


class RedemptionRepositoryInterface(Protocol):
    """교환 요청 저장소 계약.

    - (account_id, prize_id) 당 진행 중/대기 요청은 저장소 유니크 제약으로 1개만 허용한다.
    - 모든 상태 전이는 현재 상태를 조건으로 건 단일 업데이트다.
    """

    def reserve(
        self, request: RedemptionRequest
    ) -> RedemptionRequest:  # pragma: no cover - Protocol
        """사가 시작. 중복이면 DuplicateRequestError."""
        ...

    def advance_step(
        self, request_id: str, from_step: SagaStep, to_step: SagaStep
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def commit(
        self, request_id: str, now: datetime
    ) -> RedemptionRequest | None:  # pragma: no cover - Protocol
        ...

    def abort(
        self, request_id: str, from_step: SagaStep
    ) -> bool:  # pragma: no cover - Protocol
        ...

    def transition(
        self,
        request_id: str,
        from_status: RedemptionStatus,
        to_status: RedemptionStatus,
        now: datetime,
        notes: str | None = None,
    ) -> RedemptionRequest | None:  # pragma: no cover - Protocol
        ...

    def get(self, request_id: str) -> RedemptionRequest | None:  # pragma: no cover - Protocol
        ...

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:  # pragma: no cover - Protocol
        ...

    def list_by_status(
        self, status: RedemptionStatus | None, page: int, page_size: int
    ) -> tuple[list[RedemptionRequest], int]:  # pragma: no cover - Protocol
        ...

    def list_stale(
        self, before: datetime, limit: int
    ) -> list[RedemptionRequest]:  # pragma: no cover - Protocol
        ...


class TransactionLogRepositoryInterface(Protocol):
    """append-only 트랜잭션 로그 계약. 수정/삭제 API 는 없다."""

    def append(
        self, entry: TransactionLogEntry
    ) -> TransactionLogEntry:  # pragma: no cover - Protocol
        """operation_id 가 이미 기록되어 있으면 기존 기록을 반환한다."""
        ...

    def get_by_operation_id(
        self, operation_id: str
    ) -> TransactionLogEntry | None:  # pragma: no cover - Protocol
        ...

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[TransactionLogEntry], int]:  # pragma: no cover - Protocol
        ...

    def sum_by_asset(self, account_id: str) -> dict[Asset, int]:  # pragma: no cover - Protocol
        ...


class DepositRepositoryInterface(Protocol):
    """충전 요청 저장소 계약."""

    def create(self, deposit: DepositRequest) -> DepositRequest:  # pragma: no cover - Protocol
        ...

    def get(self, deposit_id: str) -> DepositRequest | None:  # pragma: no cover - Protocol
        ...

    def transition(
        self,
        deposit_id: str,
        from_status: DepositStatus,
        to_status: DepositStatus,
        now: datetime,
        processed_by: str | None = None,
        notes: str | None = None,
    ) -> DepositRequest | None:  # pragma: no cover - Protocol
        ...

    def list_by_account(
        self, account_id: str, page: int, page_size: int
    ) -> tuple[list[DepositRequest], int]:  # pragma: no cover - Protocol
        ...
