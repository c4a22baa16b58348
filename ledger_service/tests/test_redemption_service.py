from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from ledger_service.app.exceptions import (
    DuplicateRequestError,
    InsufficientPointsError,
    InvalidStateTransitionError,
    OutOfStockError,
    PrizeUnavailableError,
    RedemptionNotFoundError,
    StoreUnavailableError,
)
from ledger_service.app.models.account import BalanceField
from ledger_service.app.models.compensation import CompensationKind
from ledger_service.app.models.prize import PrizeStatus
from ledger_service.app.models.redemption import (
    DeliveryDetails,
    RedemptionRequest,
    RedemptionStatus,
    SagaStep,
)
from ledger_service.app.models.transaction import TransactionKind
from ledger_service.app.services.compensation_service import CompensationExecutor
from ledger_service.app.services.redemption_service import RedemptionService
from ledger_service.tests.fakes import FakeAccountRepository, FakePrizeRepository


def _fund(ledger_service, accounts, account_id: str, points: int) -> None:
    accounts.seed(account_id)
    ledger_service.award_points(account_id, points, reference_id=f"seed-{account_id}")


def test_redemption_deducts_points_and_stock(
    redemption_service, ledger_service, reconciliation_service, accounts, prizes, transactions
) -> None:
    _fund(ledger_service, accounts, "acc-1", 100)
    prizes.seed("prize-1", points_required=100, stock=1)

    request = redemption_service.request_redemption(
        "acc-1", "prize-1", DeliveryDetails(full_name="Ali", whatsapp_number="0300")
    )

    assert request.status == RedemptionStatus.PENDING
    assert request.saga_step == SagaStep.COMPLETED
    assert request.points_used == 100
    assert accounts.balance("acc-1", BalanceField.POINTS) == 0
    assert prizes.prizes["prize-1"].stock == 0

    kinds = [e.kind for e in transactions.entries if e.account_id == "acc-1"]
    assert kinds == [TransactionKind.POINTS_AWARD, TransactionKind.REDEMPTION_DEDUCTION]
    assert reconciliation_service.reconcile_account("acc-1").consistent


def test_second_identical_request_is_rejected_as_duplicate(
    redemption_service, ledger_service, accounts, prizes, redemptions
) -> None:
    _fund(ledger_service, accounts, "acc-1", 300)
    prizes.seed("prize-1", points_required=100, stock=5)

    redemption_service.request_redemption("acc-1", "prize-1")
    with pytest.raises(DuplicateRequestError):
        redemption_service.request_redemption("acc-1", "prize-1")

    assert redemptions.pending_count("acc-1", "prize-1") == 1
    assert accounts.balance("acc-1", BalanceField.POINTS) == 200
    assert prizes.prizes["prize-1"].stock == 4


def test_concurrent_identical_requests_yield_one_pending(
    redemption_service, ledger_service, accounts, prizes, redemptions
) -> None:
    _fund(ledger_service, accounts, "acc-1", 1000)
    prizes.seed("prize-1", points_required=100, stock=10)

    barrier = threading.Barrier(2)
    outcomes: list[str] = []

    def _worker() -> None:
        barrier.wait(timeout=5)
        try:
            redemption_service.request_redemption("acc-1", "prize-1")
            outcomes.append("ok")
        except DuplicateRequestError:
            outcomes.append("duplicate")

    threads = [threading.Thread(target=_worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert sorted(outcomes) == ["duplicate", "ok"]
    assert redemptions.pending_count("acc-1", "prize-1") == 1
    assert accounts.balance("acc-1", BalanceField.POINTS) == 900


class _BarrierPrizeRepository(FakePrizeRepository):
    """두 요청이 모두 재고 1 을 본 뒤에 진행하도록 get 에서 기다린다."""

    def __init__(self, clock, parties: int) -> None:
        super().__init__(clock)
        self.barrier = threading.Barrier(parties)

    def get(self, prize_id):
        prize = super().get(prize_id)
        self.barrier.wait(timeout=5)
        return prize


def test_last_item_race_refunds_the_loser(
    accounts, redemptions, runner, config, clock, ledger_service
) -> None:
    prizes = _BarrierPrizeRepository(clock, parties=2)
    prizes.seed("prize-1", points_required=100, stock=1)
    service = RedemptionService(accounts, prizes, redemptions, runner, config, clock=clock)
    _fund(ledger_service, accounts, "acc-a", 100)
    _fund(ledger_service, accounts, "acc-b", 100)

    results: dict[str, str] = {}

    def _worker(account_id: str) -> None:
        try:
            service.request_redemption(account_id, "prize-1")
            results[account_id] = "pending"
        except OutOfStockError:
            results[account_id] = "out_of_stock"

    threads = [threading.Thread(target=_worker, args=(a,)) for a in ("acc-a", "acc-b")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=5)

    assert sorted(results.values()) == ["out_of_stock", "pending"]
    winner = next(a for a, r in results.items() if r == "pending")
    loser = next(a for a, r in results.items() if r == "out_of_stock")
    assert accounts.balance(winner, BalanceField.POINTS) == 0
    assert accounts.balance(loser, BalanceField.POINTS) == 100
    assert prizes.prizes["prize-1"].stock == 0
    assert set(redemptions.open_keys) == {f"{winner}:prize-1"}


def test_unavailable_prize_is_rejected_before_any_write(
    redemption_service, ledger_service, accounts, prizes, redemptions
) -> None:
    _fund(ledger_service, accounts, "acc-1", 500)
    prizes.seed("draft", status=PrizeStatus.DRAFT)
    prizes.seed("inactive", is_active=False)
    prizes.seed("empty", stock=0)

    for prize_id in ("draft", "inactive", "empty", "missing"):
        with pytest.raises(PrizeUnavailableError):
            redemption_service.request_redemption("acc-1", prize_id)

    assert redemptions.requests == {}
    assert accounts.balance("acc-1", BalanceField.POINTS) == 500


def test_insufficient_points_precheck(redemption_service, accounts, prizes, redemptions) -> None:
    accounts.seed("acc-1", points=50)
    prizes.seed("prize-1", points_required=100)

    with pytest.raises(InsufficientPointsError):
        redemption_service.request_redemption("acc-1", "prize-1")

    assert redemptions.requests == {}
    assert accounts.balance("acc-1", BalanceField.POINTS) == 50


class _SpendingAccountRepository(FakeAccountRepository):
    """사전 확인 직후 다른 요청이 포인트를 써버린 상황."""

    def get(self, account_id):
        account = super().get(account_id)
        self.docs[account_id]["points_balance"] -= 60
        return account


def test_points_spent_between_check_and_deduct_aborts_reservation(
    prizes, redemptions, runner, config, clock
) -> None:
    accounts = _SpendingAccountRepository(clock)
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=3)
    service = RedemptionService(accounts, prizes, redemptions, runner, config, clock=clock)

    with pytest.raises(InsufficientPointsError):
        service.request_redemption("acc-1", "prize-1")

    (request,) = redemptions.requests.values()
    assert request.saga_step == SagaStep.ABORTED
    assert request.status is None
    assert redemptions.open_keys == {}
    assert prizes.prizes["prize-1"].stock == 3


def test_out_of_stock_refund_is_escalated_when_store_keeps_failing(
    redemption_service, accounts, prizes, escalator, sleeps, monkeypatch, clock
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)

    def _decrement(prize_id, operation_id=None):
        # 환불 시도(첫 시도 + 재시도 2회)가 모두 실패하도록 만든다.
        accounts.fail("adjust_balance", times=3)
        raise OutOfStockError(prize_id=prize_id)

    monkeypatch.setattr(prizes, "decrement_stock", _decrement)

    with pytest.raises(OutOfStockError):
        redemption_service.request_redemption("acc-1", "prize-1")

    assert accounts.balance("acc-1", BalanceField.POINTS) == 0
    assert sleeps == [0.01, 0.02]
    (task, attempts, last_error), = escalator.escalated
    assert task.kind == CompensationKind.CREDIT_POINTS
    assert task.amount == 100
    assert task.operation_id.endswith(":refund")
    assert attempts == 3
    assert "injected failure" in (last_error or "")

    # 운영자 큐 컨슈머가 같은 작업을 두 번 실행해도 한 번만 환불된다.
    executor = CompensationExecutor(accounts, prizes, None, None, clock=clock)  # type: ignore[arg-type]
    executor.execute(task)
    executor.execute(task)
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100


def test_store_failure_during_stock_step_unwinds_saga(
    redemption_service, accounts, prizes, redemptions
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)
    prizes.fail("decrement_stock")

    with pytest.raises(StoreUnavailableError):
        redemption_service.request_redemption("acc-1", "prize-1")

    (request,) = redemptions.requests.values()
    assert request.saga_step == SagaStep.ABORTED
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100
    assert prizes.prizes["prize-1"].stock == 1
    assert redemptions.open_keys == {}


def test_saga_taken_over_by_recovery_compensates_own_charge(
    redemption_service, accounts, prizes, redemptions, monkeypatch
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)
    real_abort = redemptions.abort

    def _advance(request_id, from_step, to_step):
        # 복구 작업이 먼저 사가를 중단시킨 상황
        real_abort(request_id, from_step)
        return False

    monkeypatch.setattr(redemptions, "advance_step", _advance)

    with pytest.raises(StoreUnavailableError):
        redemption_service.request_redemption("acc-1", "prize-1")

    assert accounts.balance("acc-1", BalanceField.POINTS) == 100
    assert prizes.prizes["prize-1"].stock == 1


def test_reject_restores_points_and_stock(
    redemption_service, ledger_service, reconciliation_service, accounts, prizes, transactions
) -> None:
    _fund(ledger_service, accounts, "acc-1", 100)
    prizes.seed("prize-1", points_required=100, stock=1)
    request = redemption_service.request_redemption("acc-1", "prize-1")

    rejected = redemption_service.reject(request.request_id, notes="address invalid")

    assert rejected.status == RedemptionStatus.REJECTED
    assert rejected.notes == "address invalid"
    assert rejected.processed_at is not None
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100
    assert prizes.prizes["prize-1"].stock == 1
    assert transactions.entries[-1].kind == TransactionKind.REDEMPTION_REFUND
    assert reconciliation_service.reconcile_account("acc-1").consistent

    for action in (redemption_service.approve, redemption_service.reject, redemption_service.mark_fulfilled):
        with pytest.raises(InvalidStateTransitionError):
            action(request.request_id)
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100

    # 반려 후에는 같은 경품을 다시 요청할 수 있다.
    again = redemption_service.request_redemption("acc-1", "prize-1")
    assert again.status == RedemptionStatus.PENDING


def test_reject_keeps_restocking_and_logging_when_refund_cannot_be_escalated(
    redemption_service, accounts, prizes, redemptions, transactions, escalator, caplog
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)
    request = redemption_service.request_redemption("acc-1", "prize-1")
    accounts.fail("adjust_balance", times=10)
    escalator.broken = True

    with caplog.at_level("CRITICAL"):
        with pytest.raises(StoreUnavailableError):
            redemption_service.reject(request.request_id)

    assert redemptions.requests[request.request_id].status == RedemptionStatus.REJECTED
    assert "manual action required" in caplog.text
    assert request.refund_op in caplog.text
    # 환불은 수동 처리 대상이지만 재입고와 기록은 반영된다.
    assert prizes.prizes["prize-1"].stock == 1
    assert prizes.calls["restock"] == 1
    assert transactions.entries[-1].kind == TransactionKind.REDEMPTION_REFUND
    assert accounts.balance("acc-1", BalanceField.POINTS) == 0


def test_recovery_restocks_even_when_refund_cannot_be_escalated(
    redemption_service, accounts, prizes, redemptions, escalator, clock
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)
    request = _stuck_request(redemptions, clock, SagaStep.POINTS_DEDUCTED)
    accounts.adjust_balance("acc-1", BalanceField.POINTS, -100, operation_id=request.charge_op)
    prizes.decrement_stock("prize-1", operation_id=request.stock_op)
    clock.advance(timedelta(minutes=15))
    accounts.fail("adjust_balance", times=10)
    escalator.broken = True

    with pytest.raises(StoreUnavailableError):
        redemption_service.recover_stale_sagas()

    assert redemptions.requests["stuck"].saga_step == SagaStep.ABORTED
    assert prizes.prizes["prize-1"].stock == 1


def test_approve_then_fulfill(redemption_service, accounts, prizes) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=None)
    request = redemption_service.request_redemption("acc-1", "prize-1")

    with pytest.raises(InvalidStateTransitionError):
        redemption_service.mark_fulfilled(request.request_id)

    approved = redemption_service.approve(request.request_id)
    fulfilled = redemption_service.mark_fulfilled(request.request_id)

    assert approved.status == RedemptionStatus.APPROVED
    assert fulfilled.status == RedemptionStatus.FULFILLED
    assert prizes.prizes["prize-1"].stock is None
    with pytest.raises(InvalidStateTransitionError):
        redemption_service.reject(request.request_id)
    assert accounts.balance("acc-1", BalanceField.POINTS) == 0


def test_transition_on_unknown_request(redemption_service) -> None:
    with pytest.raises(RedemptionNotFoundError):
        redemption_service.approve("nope")
    with pytest.raises(RedemptionNotFoundError):
        redemption_service.get("nope")


def test_listings_hide_in_flight_sagas(redemption_service, accounts, prizes, redemptions, clock) -> None:
    accounts.seed("acc-1", points=300)
    prizes.seed("p1", points_required=100, stock=None)
    prizes.seed("p2", points_required=100, stock=None)
    first = redemption_service.request_redemption("acc-1", "p1")
    clock.advance(timedelta(minutes=1))
    second = redemption_service.request_redemption("acc-1", "p2")
    redemptions.reserve(
        RedemptionRequest(
            request_id="in-flight",
            account_id="acc-1",
            prize_id="p3",
            points_used=100,
            requested_at=clock(),
            created_at=clock(),
            updated_at=clock(),
        )
    )
    redemption_service.approve(first.request_id)

    mine, total = redemption_service.list_for_account("acc-1", page=1, page_size=10)
    assert total == 2
    assert [r.request_id for r in mine] == [second.request_id, first.request_id]

    pending, _ = redemption_service.list_by_status(RedemptionStatus.PENDING)
    assert [r.request_id for r in pending] == [second.request_id]
    with pytest.raises(RedemptionNotFoundError):
        redemption_service.get("in-flight")


def _stuck_request(redemptions, clock, step: SagaStep, request_id: str = "stuck") -> RedemptionRequest:
    request = RedemptionRequest(
        request_id=request_id,
        account_id="acc-1",
        prize_id="prize-1",
        points_used=100,
        saga_step=step,
        requested_at=clock(),
        created_at=clock(),
        updated_at=clock(),
    )
    return redemptions.reserve(request)


def test_recovery_rolls_back_saga_abandoned_after_charge(
    redemption_service, accounts, prizes, redemptions, clock
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)
    request = _stuck_request(redemptions, clock, SagaStep.POINTS_DEDUCTED)
    accounts.adjust_balance("acc-1", BalanceField.POINTS, -100, operation_id=request.charge_op)

    # 아직 오래되지 않았으면 건드리지 않는다.
    assert redemption_service.recover_stale_sagas() == {"rolled_back": 0, "rolled_forward": 0}

    clock.advance(timedelta(minutes=15))
    assert redemption_service.recover_stale_sagas() == {"rolled_back": 1, "rolled_forward": 0}

    assert redemptions.requests["stuck"].saga_step == SagaStep.ABORTED
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100
    assert prizes.prizes["prize-1"].stock == 1
    assert redemptions.open_keys == {}

    # 한 번 더 돌려도 변화 없음
    assert redemption_service.recover_stale_sagas() == {"rolled_back": 0, "rolled_forward": 0}
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100


def test_recovery_rolls_forward_saga_abandoned_after_stock(
    redemption_service, accounts, prizes, redemptions, transactions, clock
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=1)
    request = _stuck_request(redemptions, clock, SagaStep.STOCK_DECREMENTED)
    accounts.adjust_balance("acc-1", BalanceField.POINTS, -100, operation_id=request.charge_op)
    prizes.decrement_stock("prize-1", operation_id=request.stock_op)

    clock.advance(timedelta(minutes=15))
    result = redemption_service.recover_stale_sagas()

    assert result == {"rolled_back": 0, "rolled_forward": 1}
    recovered = redemptions.requests["stuck"]
    assert recovered.status == RedemptionStatus.PENDING
    assert recovered.saga_step == SagaStep.COMPLETED
    assert [e.operation_id for e in transactions.entries] == [request.charge_op]
    assert accounts.balance("acc-1", BalanceField.POINTS) == 0


def test_recovery_restocks_busy_prize_after_many_later_decrements(
    redemption_service, accounts, prizes, redemptions, clock
) -> None:
    accounts.seed("acc-1", points=100)
    prizes.seed("prize-1", points_required=100, stock=500)
    request = _stuck_request(redemptions, clock, SagaStep.POINTS_DEDUCTED)
    accounts.adjust_balance("acc-1", BalanceField.POINTS, -100, operation_id=request.charge_op)
    prizes.decrement_stock("prize-1", operation_id=request.stock_op)
    for n in range(300):
        prizes.decrement_stock("prize-1", operation_id=f"other-{n}:stock")

    clock.advance(timedelta(minutes=15))
    assert redemption_service.recover_stale_sagas() == {"rolled_back": 1, "rolled_forward": 0}

    assert prizes.prizes["prize-1"].stock == 200
    assert accounts.balance("acc-1", BalanceField.POINTS) == 100
