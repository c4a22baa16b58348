"""잔액/충전/포인트 적립 서비스.

계정 잔액은 AccountRepository 의 조건부 원자 연산으로만 바뀌고,
모든 변경은 같은 operation_id 로 트랜잭션 로그에 한 번씩 기록된다.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, NoReturn

from fastapi import Depends

from common.mongo.types import utc_now
from common.schemas.pagination import normalize_page

from ..config import LedgerConfig
from ..exceptions import (
    AccountNotFoundError,
    DepositNotFoundError,
    InvalidAmountError,
    InvalidStateTransitionError,
    UnsupportedPaymentMethodError,
)
from ..models.account import Account, Balance, BalanceField
from ..models.compensation import CompensationKind, CompensationTask
from ..models.deposit import DepositRequest, DepositStatus
from ..models.transaction import Asset, TransactionKind, TransactionLogEntry
from ..repositories.interfaces import (
    AccountRepositoryInterface,
    DepositRepositoryInterface,
    TransactionLogRepositoryInterface,
)
from .compensation_service import CompensationRunner, append_log_task
from .dependencies import (
    get_account_repository,
    get_compensation_runner,
    get_deposit_repository,
    get_ledger_config,
    get_transaction_repository,
)


logger = logging.getLogger(__name__)


class LedgerService:
    """계정 잔액 조회, 충전 요청 처리, 포인트 적립."""

    def __init__(
        self,
        account_repo: AccountRepositoryInterface,
        transaction_repo: TransactionLogRepositoryInterface,
        deposit_repo: DepositRepositoryInterface,
        compensation: CompensationRunner,
        config: LedgerConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._account_repo = account_repo
        self._transaction_repo = transaction_repo
        self._deposit_repo = deposit_repo
        self._compensation = compensation
        self._config = config
        self._clock = clock

    # 계정 -----------------------------------------------------------------
    def open_account(self, account_id: str) -> Account:
        return self._account_repo.open(account_id)

    def get_balance(self, account_id: str) -> Balance:
        account = self._account_repo.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id=account_id)
        return Balance(
            account_id=account.account_id,
            points=account.points_balance,
            currency=account.currency_balance,
        )

    def list_transactions(
        self, account_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[TransactionLogEntry], int]:
        page, page_size = normalize_page(page, page_size)
        return self._transaction_repo.list_by_account(account_id, page, page_size)

    # 포인트 적립 ------------------------------------------------------------
    def award_points(self, account_id: str, points: int, reference_id: str) -> int:
        """퀴즈 평가/관리자 지급. 같은 reference_id 로 다시 호출해도 한 번만 적립된다."""

        if points <= 0:
            raise InvalidAmountError(points=points)

        op = f"award:{account_id}:{reference_id}"
        # 적립 기록은 유니크 operation_id 로 계속 남는다. applied_ops 보존 기간이 지난
        # 재요청은 여기서 걸러지고, 동시 재요청은 adjust_balance 의 조건이 걸러낸다.
        if self._transaction_repo.get_by_operation_id(op) is not None:
            logger.info(
                "points award already recorded",
                extra={"account_id": account_id, "operation_id": op},
            )
            return self.get_balance(account_id).points

        balance = self._account_repo.adjust_balance(
            account_id, BalanceField.POINTS, points, operation_id=op
        )
        entry = TransactionLogEntry(
            account_id=account_id,
            asset=Asset.POINTS,
            amount=points,
            kind=TransactionKind.POINTS_AWARD,
            reference_id=reference_id,
            operation_id=op,
            created_at=self._clock(),
        )
        self._compensation.run(append_log_task(entry, "points award log"))
        logger.info(
            "points awarded amount=%s balance=%s",
            points,
            balance,
            extra={"account_id": account_id, "operation_id": op},
        )
        return balance

    # 충전 -------------------------------------------------------------------
    def submit_deposit(
        self,
        account_id: str,
        amount_minor: int,
        payment_method: str,
        external_reference: str,
    ) -> DepositRequest:
        deposits = self._config.deposits
        if amount_minor < deposits.min_amount_minor:
            raise InvalidAmountError(
                f"minimum deposit is {deposits.min_amount_minor}",
                amount_minor=amount_minor,
            )
        method = payment_method.strip().lower()
        if method not in deposits.payment_methods:
            raise UnsupportedPaymentMethodError(payment_method=payment_method)
        if self._account_repo.get(account_id) is None:
            raise AccountNotFoundError(account_id=account_id)

        now = self._clock()
        deposit = self._deposit_repo.create(
            DepositRequest(
                deposit_id=uuid.uuid4().hex,
                account_id=account_id,
                amount_minor=amount_minor,
                payment_method=method,
                external_reference=external_reference.strip(),
                created_at=now,
                updated_at=now,
            )
        )
        logger.info(
            "deposit submitted amount_minor=%s method=%s",
            amount_minor,
            method,
            extra={"account_id": account_id},
        )
        return deposit

    def approve_deposit(self, deposit_id: str, processed_by: str) -> DepositRequest:
        """pending -> approved 전이에 성공한 호출만 통화 잔액을 올린다."""

        deposit = self._deposit_repo.transition(
            deposit_id,
            DepositStatus.PENDING,
            DepositStatus.APPROVED,
            self._clock(),
            processed_by=processed_by,
        )
        if deposit is None:
            self._raise_transition_error(deposit_id, DepositStatus.APPROVED)

        # 상태는 이미 approved. 입금 반영은 버려지면 안 되므로 보상 실행기로 보낸다.
        entry = TransactionLogEntry(
            account_id=deposit.account_id,
            asset=Asset.CURRENCY,
            amount=deposit.amount_minor,
            kind=TransactionKind.DEPOSIT,
            reference_id=deposit.deposit_id,
            operation_id=deposit.credit_op,
            metadata={
                "payment_method": deposit.payment_method,
                "external_reference": deposit.external_reference,
            },
            created_at=self._clock(),
        )
        self._compensation.run_all(
            [
                CompensationTask(
                    kind=CompensationKind.CREDIT_CURRENCY,
                    operation_id=deposit.credit_op,
                    account_id=deposit.account_id,
                    amount=deposit.amount_minor,
                    reference_id=deposit.deposit_id,
                    reason="deposit approved",
                ),
                append_log_task(entry, "deposit log"),
            ]
        )
        logger.info(
            "deposit approved amount_minor=%s processed_by=%s",
            deposit.amount_minor,
            processed_by,
            extra={"account_id": deposit.account_id, "operation_id": deposit.credit_op},
        )
        return deposit

    def reject_deposit(
        self, deposit_id: str, processed_by: str, notes: str | None = None
    ) -> DepositRequest:
        deposit = self._deposit_repo.transition(
            deposit_id,
            DepositStatus.PENDING,
            DepositStatus.REJECTED,
            self._clock(),
            processed_by=processed_by,
            notes=notes,
        )
        if deposit is None:
            self._raise_transition_error(deposit_id, DepositStatus.REJECTED)
        logger.info(
            "deposit rejected processed_by=%s",
            processed_by,
            extra={"account_id": deposit.account_id},
        )
        return deposit

    def list_deposits(
        self, account_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[DepositRequest], int]:
        page, page_size = normalize_page(page, page_size)
        return self._deposit_repo.list_by_account(account_id, page, page_size)

    def _raise_transition_error(self, deposit_id: str, target: DepositStatus) -> NoReturn:
        current = self._deposit_repo.get(deposit_id)
        if current is None:
            raise DepositNotFoundError(deposit_id=deposit_id)
        raise InvalidStateTransitionError(
            deposit_id=deposit_id, current=str(current.status), target=str(target)
        )


def get_ledger_service(
    account_repo: AccountRepositoryInterface = Depends(get_account_repository),
    transaction_repo: TransactionLogRepositoryInterface = Depends(get_transaction_repository),
    deposit_repo: DepositRepositoryInterface = Depends(get_deposit_repository),
    compensation: CompensationRunner = Depends(get_compensation_runner),
    config: LedgerConfig = Depends(get_ledger_config),
) -> LedgerService:
    """FastAPI DI용 LedgerService 팩토리."""

    return LedgerService(account_repo, transaction_repo, deposit_repo, compensation, config)
