from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from apps.storefront.routes.dependencies import get_engine, get_loyalty_service, require_loyalty_enabled
from apps.storefront.services.loyalty.loyalty_engine import LoyaltyEngine
from apps.storefront.services.loyalty.loyalty_service import LoyaltyService
from apps.storefront.utils.envelope import ok

router = APIRouter(prefix="/loyalty", tags=["loyalty"], dependencies=[Depends(require_loyalty_enabled)])


class CalculateIn(BaseModel):
    subtotal: Decimal
    points_to_use: int = 0
    use_points_for_shipping: bool = False
    current_user_points: int = Field(0, ge=0)
    shipping_fee: Optional[Decimal] = None


class PreviewIn(BaseModel):
    subtotal: Decimal
    points_to_use: int = 0
    use_points_for_shipping: bool = False
    shipping_fee: Optional[Decimal] = None


class ProcessOrderIn(PreviewIn):
    user_id: str
    order_number: str


@router.get("/config")
def loyalty_config(engine: LoyaltyEngine = Depends(get_engine)):
    return ok(engine.config.to_dict())


@router.post("/calculate")
def loyalty_calculate(inb: CalculateIn, engine: LoyaltyEngine = Depends(get_engine)):
    result = engine.calculate_loyalty_points(
        inb.subtotal,
        inb.points_to_use,
        inb.use_points_for_shipping,
        inb.current_user_points,
        inb.shipping_fee,
    )
    return ok(result.to_dict())


@router.get("/max-usable")
def loyalty_max_usable(
    subtotal: Decimal = Query(..., gt=0),
    user_points: int = Query(..., ge=0),
    engine: LoyaltyEngine = Depends(get_engine),
):
    points = engine.get_max_usable_points(subtotal, user_points)
    return ok(
        {
            "max_usable_points": points,
            "discount_value": engine.convert_points_to_egp(points),
            "can_use_shipping_points": engine.can_use_shipping_points(user_points, points),
        }
    )


@router.post("/preview/{user_id}")
async def loyalty_preview(user_id: str, inb: PreviewIn, svc: LoyaltyService = Depends(get_loyalty_service)):
    result = await svc.preview(
        user_id=user_id,
        subtotal=inb.subtotal,
        points_to_use=inb.points_to_use,
        use_points_for_shipping=inb.use_points_for_shipping,
        shipping_fee=inb.shipping_fee,
    )
    max_usable = await svc.max_usable(user_id=user_id, subtotal=inb.subtotal)
    return ok(result.to_dict(), meta={"max_usable_points": max_usable})


@router.get("/history/{user_id}")
async def loyalty_history(
    user_id: str,
    limit: int = Query(50, ge=1, le=500),
    svc: LoyaltyService = Depends(get_loyalty_service),
):
    rows = await svc.history(user_id, limit=limit)
    return ok([r.to_dict() for r in rows], meta={"count": len(rows)})


@router.get("/validate/{user_id}")
async def loyalty_validate(user_id: str, svc: LoyaltyService = Depends(get_loyalty_service)):
    validation = await svc.validate_user(user_id)
    return ok(validation.to_dict())


@router.post("/orders/{order_id}/process")
async def loyalty_process_order(order_id: str, inb: ProcessOrderIn, svc: LoyaltyService = Depends(get_loyalty_service)):
    result = await svc.preview(
        user_id=inb.user_id,
        subtotal=inb.subtotal,
        points_to_use=inb.points_to_use,
        use_points_for_shipping=inb.use_points_for_shipping,
        shipping_fee=inb.shipping_fee,
    )
    tx = await svc.process_order_points(
        user_id=inb.user_id,
        order_id=order_id,
        order_number=inb.order_number,
        result=result,
    )
    return ok(tx.to_dict(), meta={"calculation": result.to_dict()})


@router.post("/orders/{order_id}/cancel")
async def loyalty_cancel_order(order_id: str, svc: LoyaltyService = Depends(get_loyalty_service)):
    res = await svc.cancel_order(order_id)
    return ok(res.to_dict())
