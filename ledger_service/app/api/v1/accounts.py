from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from common.schemas.pagination import PaginatedResponse, normalize_page

from ..schemas.accounts import (
    AccountResponse,
    BalanceResponse,
    ReconciliationResponse,
    TransactionItem,
)
from ...services.ledger_service import LedgerService, get_ledger_service
from ...services.reconciliation_service import (
    ReconciliationService,
    get_reconciliation_service,
)


router = APIRouter()


@router.post("/{account_id}", response_model=AccountResponse, summary="계정 개설 (이미 있으면 그대로 반환)")
def open_account(
    account_id: str,
    service: LedgerService = Depends(get_ledger_service),
) -> AccountResponse:
    account = service.open_account(account_id)
    return AccountResponse(
        account_id=account.account_id,
        points_balance=account.points_balance,
        currency_balance_minor=account.currency_balance,
        created_at=account.created_at,
    )


@router.get("/{account_id}/balance", response_model=BalanceResponse, summary="잔액 조회")
def get_balance(
    account_id: str,
    service: LedgerService = Depends(get_ledger_service),
) -> BalanceResponse:
    balance = service.get_balance(account_id)
    return BalanceResponse.build(balance.account_id, balance.points, balance.currency)


@router.get(
    "/{account_id}/transactions",
    response_model=PaginatedResponse[TransactionItem],
    summary="원장 기록 조회 (최신순)",
)
def list_transactions(
    account_id: str,
    page: int = Query(1, ge=1, description="조회할 페이지 (1부터 시작)"),
    page_size: int = Query(20, ge=1, le=100, description="페이지당 아이템 개수 (1~100)"),
    service: LedgerService = Depends(get_ledger_service),
) -> PaginatedResponse[TransactionItem]:
    page, page_size = normalize_page(page, page_size)
    items, total = service.list_transactions(account_id, page, page_size)
    return PaginatedResponse(
        items=[
            TransactionItem(
                id=tx.id,
                asset=str(tx.asset),
                amount=tx.amount,
                kind=str(tx.kind),
                status=tx.status,
                reference_id=tx.reference_id,
                created_at=tx.created_at,
            )
            for tx in items
        ],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/{account_id}/reconciliation",
    response_model=ReconciliationResponse,
    summary="잔액과 원장 합계 대조",
)
def reconcile_account(
    account_id: str,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconciliationResponse:
    report = service.reconcile_account(account_id)
    return ReconciliationResponse(
        account_id=report.account_id,
        consistent=report.consistent,
        points_balance=report.points_balance,
        points_logged=report.points_logged,
        currency_balance=report.currency_balance,
        currency_logged=report.currency_logged,
    )
