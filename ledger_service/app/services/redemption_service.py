"""경품 교환 워크플로우.

교환 요청 생성은 문서 여러 개에 걸친 쓰기라 하나의 트랜잭션으로 묶을 수 없다.
각 단계를 단일 문서 조건부 쓰기로 만들고, 진행 상태(saga_step)를 요청 문서에
기록하는 사가로 처리한다.

    reserved -> points_deducted -> stock_decremented -> completed
    (reserved | points_deducted) -> aborted

- reserved / points_deducted 에서 멈춘 사가는 되돌린다 (환불, 재입고 후 aborted).
- stock_decremented 에서 멈춘 사가는 두 효과가 모두 반영되었으므로 마저 완료한다.
- 모든 보상은 요청별로 고정된 operation_id 를 쓰므로 실행 중인 프로세스와
  복구 작업이 겹쳐도 한 번만 반영된다.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, NoReturn

from fastapi import Depends

from common.mongo.types import utc_now
from common.schemas.pagination import normalize_page

from ..config import LedgerConfig
from ..exceptions import (
    AccountNotFoundError,
    InsufficientFundsError,
    InsufficientPointsError,
    InvalidStateTransitionError,
    OutOfStockError,
    PrizeUnavailableError,
    RedemptionNotFoundError,
    StoreUnavailableError,
)
from ..models.account import BalanceField
from ..models.compensation import CompensationKind, CompensationTask
from ..models.redemption import (
    ALLOWED_TRANSITIONS,
    DeliveryDetails,
    RedemptionRequest,
    RedemptionStatus,
    SagaStep,
)
from ..models.transaction import Asset, TransactionKind, TransactionLogEntry
from ..repositories.interfaces import (
    AccountRepositoryInterface,
    PrizeRepositoryInterface,
    RedemptionRepositoryInterface,
)
from .compensation_service import CompensationRunner, append_log_task
from .dependencies import (
    get_account_repository,
    get_compensation_runner,
    get_ledger_config,
    get_prize_repository,
    get_redemption_repository,
)


logger = logging.getLogger(__name__)


class RedemptionService:
    """경품 교환 요청 생성 사가와 관리자 상태 전이."""

    def __init__(
        self,
        account_repo: AccountRepositoryInterface,
        prize_repo: PrizeRepositoryInterface,
        redemption_repo: RedemptionRepositoryInterface,
        compensation: CompensationRunner,
        config: LedgerConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._account_repo = account_repo
        self._prize_repo = prize_repo
        self._redemption_repo = redemption_repo
        self._compensation = compensation
        self._config = config
        self._clock = clock

    # 생성 사가 ---------------------------------------------------------------
    def request_redemption(
        self,
        account_id: str,
        prize_id: str,
        delivery: DeliveryDetails | None = None,
    ) -> RedemptionRequest:
        # 1. 경품 확인
        prize = self._prize_repo.get(prize_id)
        if prize is None or not prize.is_redeemable:
            raise PrizeUnavailableError(prize_id=prize_id)

        # 2. 잔액 사전 확인. 실제 보장은 4단계의 조건부 차감이 한다.
        account = self._account_repo.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id=account_id)
        if account.points_balance < prize.points_required:
            raise InsufficientPointsError(
                account_id=account_id,
                points_balance=account.points_balance,
                points_required=prize.points_required,
            )

        # 3. 예약. (계정, 경품) 당 열린 요청 1개는 partial unique 인덱스가 보장한다.
        now = self._clock()
        request = self._redemption_repo.reserve(
            RedemptionRequest(
                request_id=uuid.uuid4().hex,
                account_id=account_id,
                prize_id=prize_id,
                points_used=prize.points_required,
                saga_step=SagaStep.RESERVED,
                delivery=delivery or DeliveryDetails(),
                requested_at=now,
                created_at=now,
                updated_at=now,
            )
        )
        log_extra = {
            "account_id": account_id,
            "prize_id": prize_id,
            "redemption_id": request.request_id,
        }

        # 4. 포인트 차감
        try:
            self._account_repo.adjust_balance(
                account_id,
                BalanceField.POINTS,
                -request.points_used,
                operation_id=request.charge_op,
            )
        except InsufficientFundsError as exc:
            self._redemption_repo.abort(request.request_id, SagaStep.RESERVED)
            logger.info("redemption rejected: insufficient points", extra=log_extra)
            raise InsufficientPointsError(
                account_id=account_id, points_required=request.points_used
            ) from exc
        except StoreUnavailableError:
            self._unwind_after_failure(request, SagaStep.RESERVED)
            raise
        self._advance_or_unwind(request, SagaStep.RESERVED, SagaStep.POINTS_DEDUCTED)

        # 5. 재고 차감. 실패하면 4단계를 되돌린다.
        try:
            self._prize_repo.decrement_stock(prize_id, operation_id=request.stock_op)
        except (OutOfStockError, PrizeUnavailableError):
            if self._redemption_repo.abort(request.request_id, SagaStep.POINTS_DEDUCTED):
                self._refund_points(request)
            logger.info("redemption rejected: prize no longer available", extra=log_extra)
            raise
        except StoreUnavailableError:
            self._unwind_after_failure(request, SagaStep.POINTS_DEDUCTED)
            raise
        self._advance_or_unwind(
            request, SagaStep.POINTS_DEDUCTED, SagaStep.STOCK_DECREMENTED
        )

        # 6. 확정. 여기서부터 pending 으로 보인다.
        committed = self._redemption_repo.commit(request.request_id, self._clock())
        if committed is None:
            # 복구 작업이 먼저 완료시켰을 수 있다.
            committed = self._redemption_repo.get(request.request_id)
            if committed is None or committed.saga_step != SagaStep.COMPLETED:
                raise StoreUnavailableError(
                    "redemption could not be committed", **log_extra
                )

        # 7. 원장 기록
        self._append_deduction_log(committed)

        logger.info(
            "redemption requested points_used=%s",
            committed.points_used,
            extra=log_extra,
        )
        return committed

    def _advance_or_unwind(
        self, request: RedemptionRequest, from_step: SagaStep, to_step: SagaStep
    ) -> None:
        if self._redemption_repo.advance_step(request.request_id, from_step, to_step):
            return
        # 복구 작업이 사가를 중단시켰다. 방금 반영한 효과까지 되돌린다.
        logger.warning(
            "redemption saga taken over at step=%s, compensating",
            from_step,
            extra={"redemption_id": request.request_id, "account_id": request.account_id},
        )
        tasks = [self._refund_task(request)]
        if to_step == SagaStep.STOCK_DECREMENTED:
            tasks.append(self._restock_task(request))
        self._compensation.run_all(tasks)
        raise StoreUnavailableError(
            "redemption was aborted while in progress", redemption_id=request.request_id
        )

    def _unwind_after_failure(self, request: RedemptionRequest, step: SagaStep) -> None:
        """저장소 오류로 결과를 알 수 없는 단계 이후의 정리. 실패하면 복구 작업에 맡긴다."""

        try:
            self._roll_back(request, step)
        except StoreUnavailableError:
            logger.warning(
                "could not unwind redemption saga, leaving it to recovery",
                extra={"redemption_id": request.request_id, "account_id": request.account_id},
            )

    def _roll_back(self, request: RedemptionRequest, step: SagaStep) -> bool:
        """step 에서 중단시키고 실제로 반영된 효과만 되돌린다. 중단에 성공하면 True."""

        if not self._redemption_repo.abort(request.request_id, step):
            return False
        tasks: list[CompensationTask] = []
        if self._account_repo.has_applied(request.account_id, request.charge_op):
            tasks.append(self._refund_task(request))
        if self._prize_repo.has_applied(request.prize_id, request.stock_op):
            tasks.append(self._restock_task(request))
        self._compensation.run_all(tasks)
        return True

    def _refund_points(self, request: RedemptionRequest) -> bool:
        return self._compensation.run(self._refund_task(request))

    @staticmethod
    def _refund_task(request: RedemptionRequest) -> CompensationTask:
        return CompensationTask(
            kind=CompensationKind.CREDIT_POINTS,
            operation_id=request.refund_op,
            account_id=request.account_id,
            prize_id=request.prize_id,
            amount=request.points_used,
            reference_id=request.request_id,
            reason="redemption refund",
        )

    @staticmethod
    def _restock_task(request: RedemptionRequest) -> CompensationTask:
        return CompensationTask(
            kind=CompensationKind.RESTOCK_PRIZE,
            operation_id=request.restock_op,
            account_id=request.account_id,
            prize_id=request.prize_id,
            amount=1,
            reference_id=request.request_id,
            reason="redemption restock",
        )

    def _append_deduction_log(self, request: RedemptionRequest) -> None:
        entry = TransactionLogEntry(
            account_id=request.account_id,
            asset=Asset.POINTS,
            amount=-request.points_used,
            kind=TransactionKind.REDEMPTION_DEDUCTION,
            reference_id=request.request_id,
            operation_id=request.charge_op,
            metadata={"prize_id": request.prize_id},
            created_at=request.updated_at,
        )
        self._compensation.run(append_log_task(entry, "redemption deduction log"))

    # 관리자 전이 -------------------------------------------------------------
    def approve(self, request_id: str) -> RedemptionRequest:
        return self._transition(request_id, RedemptionStatus.APPROVED)

    def mark_fulfilled(self, request_id: str) -> RedemptionRequest:
        return self._transition(request_id, RedemptionStatus.FULFILLED)

    def reject(self, request_id: str, notes: str | None = None) -> RedemptionRequest:
        """반려. 포인트 환불과 재입고를 자동으로 수행한다."""

        request = self._transition(request_id, RedemptionStatus.REJECTED, notes=notes)
        entry = TransactionLogEntry(
            account_id=request.account_id,
            asset=Asset.POINTS,
            amount=request.points_used,
            kind=TransactionKind.REDEMPTION_REFUND,
            reference_id=request.request_id,
            operation_id=request.refund_op,
            metadata={"prize_id": request.prize_id, "notes": notes},
            created_at=self._clock(),
        )
        # 상태는 이미 rejected. 앞 작업이 실패해도 남은 작업은 끝까지 시도한다.
        self._compensation.run_all(
            [
                self._refund_task(request),
                self._restock_task(request),
                append_log_task(entry, "redemption refund log"),
            ]
        )
        return request

    def _transition(
        self,
        request_id: str,
        to_status: RedemptionStatus,
        notes: str | None = None,
    ) -> RedemptionRequest:
        from_status = ALLOWED_TRANSITIONS[to_status]
        updated = self._redemption_repo.transition(
            request_id, from_status, to_status, self._clock(), notes=notes
        )
        if updated is None:
            self._raise_transition_error(request_id, to_status)
        logger.info(
            "redemption %s -> %s",
            from_status,
            to_status,
            extra={
                "redemption_id": request_id,
                "account_id": updated.account_id,
                "prize_id": updated.prize_id,
            },
        )
        return updated

    def _raise_transition_error(
        self, request_id: str, target: RedemptionStatus
    ) -> NoReturn:
        current = self._redemption_repo.get(request_id)
        if current is None or current.status is None:
            raise RedemptionNotFoundError(redemption_id=request_id)
        raise InvalidStateTransitionError(
            redemption_id=request_id,
            current=str(current.status),
            target=str(target),
        )

    # 조회 -------------------------------------------------------------------
    def get(self, request_id: str) -> RedemptionRequest:
        request = self._redemption_repo.get(request_id)
        if request is None or request.status is None:
            raise RedemptionNotFoundError(redemption_id=request_id)
        return request

    def list_for_account(
        self, account_id: str, page: int = 1, page_size: int = 20
    ) -> tuple[list[RedemptionRequest], int]:
        page, page_size = normalize_page(page, page_size)
        return self._redemption_repo.list_by_account(account_id, page, page_size)

    def list_by_status(
        self, status: RedemptionStatus | None, page: int = 1, page_size: int = 20
    ) -> tuple[list[RedemptionRequest], int]:
        page, page_size = normalize_page(page, page_size)
        return self._redemption_repo.list_by_status(status, page, page_size)

    # 복구 -------------------------------------------------------------------
    def recover_stale_sagas(
        self, older_than: timedelta | None = None, limit: int | None = None
    ) -> dict[str, int]:
        """오래 멈춘 사가를 정리한다. 프로세스가 중간에 죽은 경우를 위한 작업이다."""

        reconciliation = self._config.reconciliation
        age = older_than or timedelta(seconds=reconciliation.stale_saga_seconds)
        before = self._clock() - age
        stale = self._redemption_repo.list_stale(before, limit or reconciliation.batch_size)

        result = {"rolled_back": 0, "rolled_forward": 0}
        for request in stale:
            extra = {"redemption_id": request.request_id, "account_id": request.account_id}
            if request.saga_step == SagaStep.STOCK_DECREMENTED:
                committed = self._redemption_repo.commit(request.request_id, self._clock())
                if committed is not None:
                    self._append_deduction_log(committed)
                    result["rolled_forward"] += 1
                    logger.warning("stale redemption saga completed", extra=extra)
                continue

            if self._roll_back(request, request.saga_step):
                result["rolled_back"] += 1
                logger.warning(
                    "stale redemption saga aborted at step=%s", request.saga_step, extra=extra
                )
        return result


def get_redemption_service(
    account_repo: AccountRepositoryInterface = Depends(get_account_repository),
    prize_repo: PrizeRepositoryInterface = Depends(get_prize_repository),
    redemption_repo: RedemptionRepositoryInterface = Depends(get_redemption_repository),
    compensation: CompensationRunner = Depends(get_compensation_runner),
    config: LedgerConfig = Depends(get_ledger_config),
) -> RedemptionService:
    """FastAPI DI용 RedemptionService 팩토리."""

    return RedemptionService(account_repo, prize_repo, redemption_repo, compensation, config)
