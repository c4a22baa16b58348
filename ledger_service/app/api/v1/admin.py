"""관리자 API. 인증은 게이트웨이가 /admin 경로 단위로 처리한다."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from common.schemas.pagination import PaginatedResponse, normalize_page

from ..schemas.accounts import AwardPointsRequest, BalanceResponse
from ..schemas.deposits import DepositItem, ProcessDepositRequest
from ..schemas.prizes import PrizeItem, PrizeUpdateRequest, RestockRequest
from ..schemas.redemptions import RedemptionItem, RejectRedemptionRequest
from ...models.prize import PrizeCreateInput
from ...models.redemption import RedemptionStatus
from ...services.catalog_service import CatalogService, get_catalog_service
from ...services.ledger_service import LedgerService, get_ledger_service
from ...services.redemption_service import RedemptionService, get_redemption_service


router = APIRouter()

NULLABLE_PRIZE_FIELDS = frozenset({"stock", "description"})


# -------- Prizes --------


@router.get("/prizes", response_model=PaginatedResponse[PrizeItem], summary="전체 경품 목록")
def list_all_prizes(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
) -> PaginatedResponse[PrizeItem]:
    page, page_size = normalize_page(page, page_size)
    items, total = service.list_all(page, page_size)
    return PaginatedResponse(
        items=[PrizeItem.from_domain(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/prizes",
    response_model=PrizeItem,
    status_code=status.HTTP_201_CREATED,
    summary="경품 등록",
)
def create_prize(
    body: PrizeCreateInput,
    service: CatalogService = Depends(get_catalog_service),
) -> PrizeItem:
    return PrizeItem.from_domain(service.create_prize(body))


@router.patch("/prizes/{prize_id}", response_model=PrizeItem, summary="경품 수정")
def update_prize(
    prize_id: str,
    body: PrizeUpdateRequest,
    service: CatalogService = Depends(get_catalog_service),
) -> PrizeItem:
    # null 을 허용하는 필드는 stock(무제한), description 뿐이다.
    updates = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_PRIZE_FIELDS
    }
    return PrizeItem.from_domain(service.update_prize(prize_id, updates))


@router.post("/prizes/{prize_id}/restock", response_model=PrizeItem, summary="경품 재입고")
def restock_prize(
    prize_id: str,
    body: RestockRequest | None = None,
    service: CatalogService = Depends(get_catalog_service),
) -> PrizeItem:
    return PrizeItem.from_domain(service.restock(prize_id, body.quantity if body else 1))


# -------- Redemptions --------


@router.get(
    "/redemptions",
    response_model=PaginatedResponse[RedemptionItem],
    summary="교환 요청 대기열 (오래된 순)",
)
def list_redemptions_by_status(
    status_filter: RedemptionStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: RedemptionService = Depends(get_redemption_service),
) -> PaginatedResponse[RedemptionItem]:
    page, page_size = normalize_page(page, page_size)
    items, total = service.list_by_status(status_filter, page, page_size)
    return PaginatedResponse(
        items=[RedemptionItem.from_domain(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/redemptions/{request_id}/approve", response_model=RedemptionItem)
def approve_redemption(
    request_id: str,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionItem:
    return RedemptionItem.from_domain(service.approve(request_id))


@router.post(
    "/redemptions/{request_id}/reject",
    response_model=RedemptionItem,
    summary="교환 요청 반려 (포인트 환불, 재입고)",
)
def reject_redemption(
    request_id: str,
    body: RejectRedemptionRequest | None = None,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionItem:
    return RedemptionItem.from_domain(service.reject(request_id, body.notes if body else None))


@router.post("/redemptions/{request_id}/fulfill", response_model=RedemptionItem)
def fulfill_redemption(
    request_id: str,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionItem:
    return RedemptionItem.from_domain(service.mark_fulfilled(request_id))


# -------- Deposits / Points --------


@router.post("/deposits/{deposit_id}/approve", response_model=DepositItem)
def approve_deposit(
    deposit_id: str,
    body: ProcessDepositRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> DepositItem:
    return DepositItem.from_domain(service.approve_deposit(deposit_id, body.processed_by))


@router.post("/deposits/{deposit_id}/reject", response_model=DepositItem)
def reject_deposit(
    deposit_id: str,
    body: ProcessDepositRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> DepositItem:
    deposit = service.reject_deposit(deposit_id, body.processed_by, body.notes)
    return DepositItem.from_domain(deposit)


@router.post(
    "/points/{account_id}/award",
    response_model=BalanceResponse,
    summary="포인트 지급 (reference_id 당 1회)",
)
def award_points(
    account_id: str,
    body: AwardPointsRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> BalanceResponse:
    service.award_points(account_id, body.points, body.reference_id)
    balance = service.get_balance(account_id)
    return BalanceResponse.build(balance.account_id, balance.points, balance.currency)
