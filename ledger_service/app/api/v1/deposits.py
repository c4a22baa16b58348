from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from common.schemas.pagination import PaginatedResponse, normalize_page

from ..schemas.deposits import DepositCreateRequest, DepositItem
from ...services.ledger_service import LedgerService, get_ledger_service


router = APIRouter()


@router.post(
    "",
    response_model=DepositItem,
    status_code=status.HTTP_201_CREATED,
    summary="충전 요청 (관리자 승인 후 반영)",
)
def submit_deposit(
    body: DepositCreateRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> DepositItem:
    deposit = service.submit_deposit(
        body.account_id,
        body.amount_minor,
        body.payment_method,
        body.external_reference,
    )
    return DepositItem.from_domain(deposit)


@router.get("", response_model=PaginatedResponse[DepositItem], summary="내 충전 요청 목록")
def list_deposits(
    account_id: str = Query(..., description="계정 ID"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: LedgerService = Depends(get_ledger_service),
) -> PaginatedResponse[DepositItem]:
    page, page_size = normalize_page(page, page_size)
    items, total = service.list_deposits(account_id, page, page_size)
    return PaginatedResponse(
        items=[DepositItem.from_domain(d) for d in items],
        total=total,
        page=page,
        page_size=page_size,
    )
