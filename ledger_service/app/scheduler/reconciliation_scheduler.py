from __future__ import annotations

import logging
import threading
from datetime import timedelta

from common.mongo.client import get_database

from ..config import LedgerConfig, load_config
from ..services.access_service import AccessService
from ..services.dependencies import (
    build_compensation_runner,
    get_access_grant_repository,
    get_account_repository,
    get_prize_repository,
    get_redemption_repository,
    get_transaction_repository,
)
from ..services.reconciliation_service import ReconciliationService
from ..services.redemption_service import RedemptionService


logger = logging.getLogger(__name__)


_SCHEDULER_THREAD: threading.Thread | None = None
_SCHEDULER_STOP_EVENT: threading.Event | None = None


class MaintenanceJobs:
    """주기 작업 묶음: 멈춘 사가 복구, 만료 이용권 정리, 잔액-원장 대조."""

    def __init__(
        self,
        redemption: RedemptionService,
        access: AccessService,
        reconciliation: ReconciliationService,
        config: LedgerConfig,
    ) -> None:
        self._redemption = redemption
        self._access = access
        self._reconciliation = reconciliation
        self._config = config

    def run_once(self) -> None:
        # 한 작업이 실패해도 나머지는 돈다.
        try:
            recovered = self._redemption.recover_stale_sagas()
            if any(recovered.values()):
                logger.warning("stale redemption sagas recovered: %s", recovered)
        except Exception:  # noqa: BLE001
            logger.exception("stale saga recovery failed")

        try:
            self._access.prune_expired()
        except Exception:  # noqa: BLE001
            logger.exception("access grant pruning failed")

        try:
            # 직전 주기와 겹치게 두 배 구간을 본다.
            window = timedelta(seconds=self._config.reconciliation.interval_seconds * 2)
            self._reconciliation.reconcile_recent(window)
        except Exception:  # noqa: BLE001
            logger.exception("ledger reconciliation failed")


def build_jobs() -> MaintenanceJobs:
    config = load_config()
    db = get_database()
    accounts = get_account_repository(db, config)
    prizes = get_prize_repository(db, config)
    grants = get_access_grant_repository(db, config)
    transactions = get_transaction_repository(db)
    compensation = build_compensation_runner(db, config)

    return MaintenanceJobs(
        redemption=RedemptionService(
            accounts, prizes, get_redemption_repository(db), compensation, config
        ),
        access=AccessService(accounts, grants, compensation, config),
        reconciliation=ReconciliationService(accounts, transactions, config),
        config=config,
    )


def _run_scheduler_loop(stop_event: threading.Event) -> None:
    interval = load_config().reconciliation.interval_seconds
    logger.info("reconciliation scheduler thread started (interval=%.0f seconds)", interval)

    try:
        jobs = build_jobs()
        jobs.run_once()
        while not stop_event.wait(interval):
            jobs.run_once()
    except Exception:  # noqa: BLE001
        logger.exception("reconciliation scheduler crashed")
    finally:
        logger.info("reconciliation scheduler thread stopped")


def start_reconciliation_scheduler() -> None:
    """FastAPI lifespan 에서 호출된다."""

    global _SCHEDULER_THREAD, _SCHEDULER_STOP_EVENT

    if _SCHEDULER_THREAD and _SCHEDULER_THREAD.is_alive():
        return

    stop_event = threading.Event()
    thread = threading.Thread(
        target=_run_scheduler_loop,
        args=(stop_event,),
        name="reconciliation-scheduler",
        daemon=True,
    )

    _SCHEDULER_STOP_EVENT = stop_event
    _SCHEDULER_THREAD = thread

    thread.start()
    logger.info("reconciliation scheduler thread launched")


def stop_reconciliation_scheduler() -> None:
    global _SCHEDULER_THREAD, _SCHEDULER_STOP_EVENT

    if _SCHEDULER_THREAD is None or _SCHEDULER_STOP_EVENT is None:
        return

    _SCHEDULER_STOP_EVENT.set()
    _SCHEDULER_THREAD.join(timeout=10.0)

    _SCHEDULER_THREAD = None
    _SCHEDULER_STOP_EVENT = None

    logger.info("reconciliation scheduler thread stopped by shutdown")
