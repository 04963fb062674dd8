from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from apps.storefront.config import settings
from apps.storefront.repositories.loyalty_repository import LoyaltyRepository
from apps.storefront.routes.dependencies import get_repository

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health_root():
    return {"ok": True, "version": settings.STOREFRONT_VERSION}


@router.get("/loyalty")
async def health_loyalty(repo: LoyaltyRepository = Depends(get_repository)):
    checks = await repo.ping()
    res = {"ok": all(checks.values()), "checks": checks}
    return JSONResponse(content=res, status_code=200 if res["ok"] else 503)
