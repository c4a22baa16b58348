"""FastAPI DI 용 레포지토리/보상 실행기 팩토리."""

from __future__ import annotations

from datetime import timedelta

from fastapi import Depends
from pymongo.database import Database

from common.eventbus.kafka import get_kafka_event_bus
from common.mongo.client import get_database

from ..config import LedgerConfig, load_config
from ..repositories.access_grant_repository import AccessGrantRepository
from ..repositories.account_repository import AccountRepository
from ..repositories.deposit_repository import DepositRepository
from ..repositories.interfaces import (
    AccessGrantRepositoryInterface,
    AccountRepositoryInterface,
    DepositRepositoryInterface,
    PrizeRepositoryInterface,
    RedemptionRepositoryInterface,
    TransactionLogRepositoryInterface,
)
from ..repositories.prize_repository import PrizeRepository
from ..repositories.redemption_repository import RedemptionRepository
from ..repositories.transaction_repository import TransactionLogRepository
from .compensation_service import (
    CompensationExecutor,
    CompensationRunner,
    KafkaCompensationEscalator,
)


def get_ledger_config() -> LedgerConfig:
    return load_config()


def _applied_ops_retention(config: LedgerConfig) -> timedelta:
    return timedelta(hours=config.idempotency.applied_ops_retention_hours)


def get_account_repository(
    db: Database = Depends(get_database),
    config: LedgerConfig = Depends(get_ledger_config),
) -> AccountRepositoryInterface:
    return AccountRepository(db, _applied_ops_retention(config))


def get_access_grant_repository(
    db: Database = Depends(get_database),
    config: LedgerConfig = Depends(get_ledger_config),
) -> AccessGrantRepositoryInterface:
    return AccessGrantRepository(
        db,
        retention=timedelta(hours=config.access.grant_retention_hours),
        applied_ops_retention=_applied_ops_retention(config),
    )


def get_prize_repository(
    db: Database = Depends(get_database),
    config: LedgerConfig = Depends(get_ledger_config),
) -> PrizeRepositoryInterface:
    return PrizeRepository(db, _applied_ops_retention(config))


def get_redemption_repository(
    db: Database = Depends(get_database),
) -> RedemptionRepositoryInterface:
    return RedemptionRepository(db)


def get_transaction_repository(
    db: Database = Depends(get_database),
) -> TransactionLogRepositoryInterface:
    return TransactionLogRepository(db)


def get_deposit_repository(
    db: Database = Depends(get_database),
) -> DepositRepositoryInterface:
    return DepositRepository(db)


def build_compensation_executor(db: Database, config: LedgerConfig) -> CompensationExecutor:
    return CompensationExecutor(
        get_account_repository(db, config),
        get_prize_repository(db, config),
        get_access_grant_repository(db, config),
        get_transaction_repository(db),
    )


def build_compensation_runner(
    db: Database, config: LedgerConfig
) -> CompensationRunner:
    """DI 밖(스케줄러, 컨슈머)에서도 쓰는 보상 실행기 조립 함수."""

    executor = build_compensation_executor(db, config)
    escalator = KafkaCompensationEscalator(get_kafka_event_bus())
    return CompensationRunner(executor, escalator, config.compensation.retry_delays)


def get_compensation_runner(
    db: Database = Depends(get_database),
    config: LedgerConfig = Depends(get_ledger_config),
) -> CompensationRunner:
    return build_compensation_runner(db, config)
