from __future__ import annotations

from datetime import timedelta

import pytest

from ledger_service.app.config import (
    AccessConfig,
    CompensationConfig,
    DepositConfig,
    IdempotencyConfig,
    LedgerConfig,
    ReconciliationConfig,
)
from ledger_service.app.services.access_service import AccessService
from ledger_service.app.services.catalog_service import CatalogService
from ledger_service.app.services.compensation_service import (
    CompensationExecutor,
    CompensationRunner,
)
from ledger_service.app.services.ledger_service import LedgerService
from ledger_service.app.services.reconciliation_service import ReconciliationService
from ledger_service.app.services.redemption_service import RedemptionService
from ledger_service.tests.fakes import (
    FakeAccessGrantRepository,
    FakeAccountRepository,
    FakeClock,
    FakeDepositRepository,
    FakeEscalator,
    FakePrizeRepository,
    FakeRedemptionRepository,
    FakeTransactionLogRepository,
)


def _applied_ops_retention(config: LedgerConfig) -> timedelta:
    return timedelta(hours=config.idempotency.applied_ops_retention_hours)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig(
        access=AccessConfig(price_minor=200, duration_hours=24, grant_retention_hours=168),
        compensation=CompensationConfig(retry_delays=[0.01, 0.02]),
        reconciliation=ReconciliationConfig(
            interval_seconds=60, stale_saga_seconds=600, batch_size=50
        ),
        deposits=DepositConfig(min_amount_minor=500, payment_methods=["easypaisa", "bank"]),
        idempotency=IdempotencyConfig(applied_ops_retention_hours=168),
    )


@pytest.fixture
def accounts(clock: FakeClock, config: LedgerConfig) -> FakeAccountRepository:
    return FakeAccountRepository(clock, _applied_ops_retention(config))


@pytest.fixture
def grants(clock: FakeClock, config: LedgerConfig) -> FakeAccessGrantRepository:
    return FakeAccessGrantRepository(clock, _applied_ops_retention(config))


@pytest.fixture
def prizes(clock: FakeClock, config: LedgerConfig) -> FakePrizeRepository:
    return FakePrizeRepository(clock, _applied_ops_retention(config))


@pytest.fixture
def redemptions(clock: FakeClock) -> FakeRedemptionRepository:
    return FakeRedemptionRepository(clock)


@pytest.fixture
def transactions() -> FakeTransactionLogRepository:
    return FakeTransactionLogRepository()


@pytest.fixture
def deposits() -> FakeDepositRepository:
    return FakeDepositRepository()


@pytest.fixture
def escalator() -> FakeEscalator:
    return FakeEscalator()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def runner(
    accounts: FakeAccountRepository,
    prizes: FakePrizeRepository,
    grants: FakeAccessGrantRepository,
    transactions: FakeTransactionLogRepository,
    escalator: FakeEscalator,
    config: LedgerConfig,
    clock: FakeClock,
    sleeps: list[float],
) -> CompensationRunner:
    executor = CompensationExecutor(accounts, prizes, grants, transactions, clock=clock)
    return CompensationRunner(
        executor, escalator, config.compensation.retry_delays, sleep=sleeps.append
    )


@pytest.fixture
def access_service(accounts, grants, runner, config, clock) -> AccessService:
    return AccessService(accounts, grants, runner, config, clock=clock)


@pytest.fixture
def catalog_service(prizes, clock) -> CatalogService:
    return CatalogService(prizes, clock=clock)


@pytest.fixture
def ledger_service(accounts, transactions, deposits, runner, config, clock) -> LedgerService:
    return LedgerService(accounts, transactions, deposits, runner, config, clock=clock)


@pytest.fixture
def redemption_service(accounts, prizes, redemptions, runner, config, clock) -> RedemptionService:
    return RedemptionService(accounts, prizes, redemptions, runner, config, clock=clock)


@pytest.fixture
def reconciliation_service(accounts, transactions, config, clock) -> ReconciliationService:
    return ReconciliationService(accounts, transactions, config, clock=clock)
