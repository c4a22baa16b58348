from __future__ import annotations

from fastapi import APIRouter, Depends

from ..schemas.access import (
    AccessStatusResponse,
    PurchaseAccessRequest,
    PurchaseAccessResponse,
)
from ...services.access_service import AccessService, get_access_service


router = APIRouter()


@router.post(
    "/{account_id}/purchase",
    response_model=PurchaseAccessResponse,
    summary="퀴즈 이용권 구매",
)
def purchase_access(
    account_id: str,
    body: PurchaseAccessRequest | None = None,
    service: AccessService = Depends(get_access_service),
) -> PurchaseAccessResponse:
    result = service.purchase_access(account_id, price=body.price_minor if body else None)
    return PurchaseAccessResponse(
        account_id=result.account_id,
        price_minor=result.price_minor,
        granted_until=result.granted_until,
        pending=result.pending,
    )


@router.get("/{account_id}", response_model=AccessStatusResponse, summary="이용권 상태 조회")
def get_access(
    account_id: str,
    service: AccessService = Depends(get_access_service),
) -> AccessStatusResponse:
    access = service.get_access(account_id)
    return AccessStatusResponse(
        account_id=access.account_id,
        active=access.active,
        expires_at=access.expires_at,
    )
