from fastapi import APIRouter, Depends

from apps.storefront.routes.dependencies import get_loyalty_service, require_loyalty_enabled
from apps.storefront.services.loyalty.loyalty_service import LoyaltyService
from apps.storefront.utils.envelope import ok

router = APIRouter(prefix="/admin/loyalty", tags=["admin"], dependencies=[Depends(require_loyalty_enabled)])


@router.get("/audit")
async def admin_audit(svc: LoyaltyService = Depends(get_loyalty_service)):
    report = await svc.audit_all_users()
    return ok(report.to_dict())


@router.post("/fix/{user_id}")
async def admin_fix_points(user_id: str, svc: LoyaltyService = Depends(get_loyalty_service)):
    res = await svc.fix_user_points(user_id)
    return ok(res.to_dict())
