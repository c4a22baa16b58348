"""잔액-원장 정합성 점검.

정지 상태의 계정이라면 트랜잭션 로그의 자산별 합계가 현재 잔액과 같아야 한다.
어긋난 계정은 ERROR 로 남긴다. 자동으로 고치지는 않는다.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from fastapi import Depends

from common.mongo.types import utc_now

from ..config import LedgerConfig
from ..exceptions import AccountNotFoundError
from ..models.reconciliation import ReconciliationReport
from ..models.transaction import Asset
from ..repositories.interfaces import (
    AccountRepositoryInterface,
    TransactionLogRepositoryInterface,
)
from .dependencies import (
    get_account_repository,
    get_ledger_config,
    get_transaction_repository,
)


logger = logging.getLogger(__name__)


class ReconciliationService:
    def __init__(
        self,
        account_repo: AccountRepositoryInterface,
        transaction_repo: TransactionLogRepositoryInterface,
        config: LedgerConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._account_repo = account_repo
        self._transaction_repo = transaction_repo
        self._config = config
        self._clock = clock

    def reconcile_account(self, account_id: str) -> ReconciliationReport:
        account = self._account_repo.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id=account_id)
        totals = self._transaction_repo.sum_by_asset(account_id)
        return ReconciliationReport(
            account_id=account_id,
            points_balance=account.points_balance,
            points_logged=totals.get(Asset.POINTS, 0),
            currency_balance=account.currency_balance,
            currency_logged=totals.get(Asset.CURRENCY, 0),
        )

    def reconcile_recent(self, window: timedelta) -> list[ReconciliationReport]:
        """최근 window 동안 잔액이 바뀐 계정을 점검하고 어긋난 보고서만 반환한다."""

        since = self._clock() - window
        account_ids = self._account_repo.list_ids_updated_since(
            since, self._config.reconciliation.batch_size
        )
        mismatches: list[ReconciliationReport] = []
        for account_id in account_ids:
            try:
                report = self.reconcile_account(account_id)
            except AccountNotFoundError:
                continue
            if report.consistent:
                continue
            mismatches.append(report)
            logger.error(
                "ledger drift detected points_drift=%s currency_drift=%s",
                report.points_drift,
                report.currency_drift,
                extra={"account_id": account_id},
            )
        logger.info(
            "reconciliation checked=%s mismatched=%s", len(account_ids), len(mismatches)
        )
        return mismatches


def get_reconciliation_service(
    account_repo: AccountRepositoryInterface = Depends(get_account_repository),
    transaction_repo: TransactionLogRepositoryInterface = Depends(get_transaction_repository),
    config: LedgerConfig = Depends(get_ledger_config),
) -> ReconciliationService:
    """FastAPI DI용 ReconciliationService 팩토리."""

    return ReconciliationService(account_repo, transaction_repo, config)
