"""퀴즈 이용권(Access Grant) 서비스.

구매 흐름
1. 통화 잔액에서 가격 차감 (조건부 원자 연산, 부족하면 여기서 끝)
2. 이용권 연장 (이미 돈을 받았으므로 되돌리지 않고 재시도/에스컬레이션)
3. 원장 기록
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable

from fastapi import Depends
from pydantic import BaseModel

from common.mongo.types import utc_now

from ..config import LedgerConfig
from ..exceptions import InvalidAmountError
from ..models.account import BalanceField
from ..models.compensation import CompensationKind, CompensationTask
from ..models.transaction import Asset, TransactionKind, TransactionLogEntry
from ..repositories.interfaces import (
    AccessGrantRepositoryInterface,
    AccountRepositoryInterface,
)
from .compensation_service import CompensationRunner, append_log_task
from .dependencies import (
    get_access_grant_repository,
    get_account_repository,
    get_compensation_runner,
    get_ledger_config,
)


logger = logging.getLogger(__name__)


class AccessPurchaseResult(BaseModel):
    """이용권 구매 결과.

    연장이 운영자 큐로 넘어간 경우 granted_until 은 None 이고 pending=True 다.
    """

    account_id: str
    price_minor: int
    granted_until: datetime | None
    pending: bool = False


class AccessStatus(BaseModel):
    account_id: str
    active: bool
    expires_at: datetime | None = None


class AccessService:
    """퀴즈 이용권 구매/조회 비즈니스 로직."""

    def __init__(
        self,
        account_repo: AccountRepositoryInterface,
        grant_repo: AccessGrantRepositoryInterface,
        compensation: CompensationRunner,
        config: LedgerConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._account_repo = account_repo
        self._grant_repo = grant_repo
        self._compensation = compensation
        self._config = config
        self._clock = clock

    @property
    def duration(self) -> timedelta:
        return timedelta(hours=self._config.access.duration_hours)

    def purchase_access(self, account_id: str, price: int | None = None) -> AccessPurchaseResult:
        """이용권 구매. 이미 유효한 이용권이 있으면 현재 만료 시각부터 이어서 연장한다."""

        price_minor = self._config.access.price_minor if price is None else price
        if price_minor <= 0:
            raise InvalidAmountError(amount=price_minor)

        purchase_id = f"access:{uuid.uuid4().hex}"
        charge_op = f"{purchase_id}:charge"
        now = self._clock()

        # 1. 차감. InsufficientFundsError 면 아무것도 바뀌지 않은 상태로 끝난다.
        remaining = self._account_repo.adjust_balance(
            account_id, BalanceField.CURRENCY, -price_minor, operation_id=charge_op
        )

        # 2. 연장, 3. 원장 기록
        entry = TransactionLogEntry(
            account_id=account_id,
            asset=Asset.CURRENCY,
            amount=-price_minor,
            kind=TransactionKind.ACCESS_PURCHASE,
            reference_id=purchase_id,
            operation_id=charge_op,
            metadata={"duration_hours": self._config.access.duration_hours},
            created_at=now,
        )
        extended, _ = self._compensation.run_all(
            [
                CompensationTask(
                    kind=CompensationKind.EXTEND_ACCESS,
                    operation_id=f"{purchase_id}:grant",
                    account_id=account_id,
                    amount=price_minor,
                    reference_id=purchase_id,
                    reason="access purchase",
                    payload={"duration_seconds": self.duration.total_seconds()},
                ),
                append_log_task(entry, "access purchase log"),
            ]
        )

        granted_until: datetime | None = None
        if extended:
            grant = self._grant_repo.get(account_id)
            granted_until = grant.expires_at if grant else None

        logger.info(
            "access purchased price=%s remaining=%s granted_until=%s",
            price_minor,
            remaining,
            granted_until,
            extra={"account_id": account_id, "operation_id": charge_op},
        )
        return AccessPurchaseResult(
            account_id=account_id,
            price_minor=price_minor,
            granted_until=granted_until,
            pending=not extended,
        )

    def get_access(self, account_id: str, now: datetime | None = None) -> AccessStatus:
        grant = self._grant_repo.get(account_id)
        if grant is None:
            return AccessStatus(account_id=account_id, active=False)
        at = now or self._clock()
        return AccessStatus(
            account_id=account_id,
            active=grant.is_active(at),
            expires_at=grant.expires_at,
        )

    def has_active_access(self, account_id: str, now: datetime | None = None) -> bool:
        """만료는 조회 시점에 판단한다. 별도 만료 처리 작업에 의존하지 않는다."""
        return self.get_access(account_id, now).active

    def prune_expired(self, now: datetime | None = None) -> int:
        retention = timedelta(hours=self._config.access.grant_retention_hours)
        before = (now or self._clock()) - retention
        deleted = self._grant_repo.prune_expired(before)
        if deleted:
            logger.info("pruned %s expired access grants", deleted)
        return deleted


def get_access_service(
    account_repo: AccountRepositoryInterface = Depends(get_account_repository),
    grant_repo: AccessGrantRepositoryInterface = Depends(get_access_grant_repository),
    compensation: CompensationRunner = Depends(get_compensation_runner),
    config: LedgerConfig = Depends(get_ledger_config),
) -> AccessService:
    """FastAPI DI용 AccessService 팩토리."""

    return AccessService(account_repo, grant_repo, compensation, config)
