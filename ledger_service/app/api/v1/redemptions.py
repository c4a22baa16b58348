from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from common.schemas.pagination import PaginatedResponse, normalize_page

from ..schemas.redemptions import RedemptionCreateRequest, RedemptionItem
from ...services.redemption_service import RedemptionService, get_redemption_service


router = APIRouter()


@router.post(
    "",
    response_model=RedemptionItem,
    status_code=status.HTTP_201_CREATED,
    summary="경품 교환 요청",
)
def request_redemption(
    body: RedemptionCreateRequest,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionItem:
    request = service.request_redemption(body.account_id, body.prize_id, body.delivery)
    return RedemptionItem.from_domain(request)


@router.get("", response_model=PaginatedResponse[RedemptionItem], summary="내 교환 요청 목록")
def list_redemptions(
    account_id: str = Query(..., description="계정 ID"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: RedemptionService = Depends(get_redemption_service),
) -> PaginatedResponse[RedemptionItem]:
    page, page_size = normalize_page(page, page_size)
    items, total = service.list_for_account(account_id, page, page_size)
    return PaginatedResponse(
        items=[RedemptionItem.from_domain(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{request_id}", response_model=RedemptionItem, summary="교환 요청 상세")
def get_redemption(
    request_id: str,
    service: RedemptionService = Depends(get_redemption_service),
) -> RedemptionItem:
    return RedemptionItem.from_domain(service.get(request_id))
