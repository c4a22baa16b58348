from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from fastapi import Depends

from common.mongo.types import utc_now
from common.schemas.pagination import normalize_page

from ..exceptions import InvalidAmountError, PrizeUnavailableError
from ..models.prize import Prize, PrizeCreateInput, PrizeStatus
from ..repositories.interfaces import PrizeRepositoryInterface
from .dependencies import get_prize_repository


logger = logging.getLogger(__name__)


class CatalogService:
    """경품 카탈로그 관리 (관리자 등록/수정, 사용자 조회)."""

    def __init__(
        self,
        repo: PrizeRepositoryInterface,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repo = repo
        self._clock = clock

    def create_prize(self, data: PrizeCreateInput) -> Prize:
        now = self._clock()
        prize = Prize(
            prize_id=uuid.uuid4().hex,
            name=data.name,
            description=data.description,
            category=data.category,
            points_required=data.points_required,
            stock=data.stock,
            status=data.status,
            is_active=data.is_active,
            created_at=now,
            updated_at=now,
        )
        created = self._repo.create(prize)
        logger.info(
            "prize created points_required=%s stock=%s",
            created.points_required,
            created.stock,
            extra={"prize_id": created.prize_id},
        )
        return created

    def get_prize(self, prize_id: str) -> Prize:
        prize = self._repo.get(prize_id)
        if prize is None:
            raise PrizeUnavailableError(prize_id=prize_id)
        return prize

    def list_redeemable(self, page: int = 1, page_size: int = 20) -> tuple[list[Prize], int]:
        page, page_size = normalize_page(page, page_size)
        return self._repo.list(True, page, page_size)

    def list_all(self, page: int = 1, page_size: int = 20) -> tuple[list[Prize], int]:
        page, page_size = normalize_page(page, page_size)
        return self._repo.list(False, page, page_size)

    def update_prize(self, prize_id: str, updates: dict[str, Any]) -> Prize:
        """관리자 부분 수정. 가격 변경은 이미 열린 요청의 points_used 에 영향을 주지 않는다."""

        if "points_required" in updates and int(updates["points_required"]) <= 0:
            raise InvalidAmountError(points_required=updates["points_required"])
        if updates.get("stock") is not None and int(updates["stock"]) < 0:
            raise InvalidAmountError(stock=updates["stock"])

        prize = self._repo.update_fields(prize_id, updates)
        if prize is None:
            raise PrizeUnavailableError(prize_id=prize_id)
        logger.info(
            "prize updated fields=%s",
            sorted(updates),
            extra={"prize_id": prize_id},
        )
        return prize

    def set_status(self, prize_id: str, status: PrizeStatus) -> Prize:
        return self.update_prize(prize_id, {"status": status})

    def set_active(self, prize_id: str, is_active: bool) -> Prize:
        return self.update_prize(prize_id, {"is_active": is_active})

    def set_stock(self, prize_id: str, stock: int | None) -> Prize:
        return self.update_prize(prize_id, {"stock": stock})

    def restock(self, prize_id: str, quantity: int) -> Prize:
        if quantity <= 0:
            raise InvalidAmountError(quantity=quantity)
        prize = self._repo.restock(prize_id, quantity=quantity)
        if prize is None:
            raise PrizeUnavailableError(prize_id=prize_id)
        logger.info("prize restocked quantity=%s stock=%s", quantity, prize.stock, extra={"prize_id": prize_id})
        return prize


def get_catalog_service(
    repo: PrizeRepositoryInterface = Depends(get_prize_repository),
) -> CatalogService:
    """FastAPI DI용 CatalogService 팩토리."""

    return CatalogService(repo)
