from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from common.schemas.pagination import PaginatedResponse, normalize_page

from ..schemas.prizes import PrizeItem
from ...services.catalog_service import CatalogService, get_catalog_service


router = APIRouter()


@router.get("", response_model=PaginatedResponse[PrizeItem], summary="교환 가능한 경품 목록")
def list_prizes(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    service: CatalogService = Depends(get_catalog_service),
) -> PaginatedResponse[PrizeItem]:
    page, page_size = normalize_page(page, page_size)
    items, total = service.list_redeemable(page, page_size)
    return PaginatedResponse(
        items=[PrizeItem.from_domain(p) for p in items],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{prize_id}", response_model=PrizeItem, summary="경품 상세")
def get_prize(
    prize_id: str,
    service: CatalogService = Depends(get_catalog_service),
) -> PrizeItem:
    return PrizeItem.from_domain(service.get_prize(prize_id))
