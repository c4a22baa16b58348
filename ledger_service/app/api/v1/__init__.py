from fastapi import APIRouter

from .access import router as access_router
from .accounts import router as accounts_router
from .admin import router as admin_router
from .deposits import router as deposits_router
from .prizes import router as prizes_router
from .redemptions import router as redemptions_router

api_router = APIRouter()
api_router.include_router(accounts_router, prefix="/accounts", tags=["accounts"])
api_router.include_router(access_router, prefix="/access", tags=["access"])
api_router.include_router(prizes_router, prefix="/prizes", tags=["prizes"])
api_router.include_router(redemptions_router, prefix="/redemptions", tags=["redemptions"])
api_router.include_router(deposits_router, prefix="/deposits", tags=["deposits"])
api_router.include_router(admin_router, prefix="/admin", tags=["admin"])
