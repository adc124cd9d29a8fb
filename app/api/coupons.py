"""
优惠券管理接口
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from app.api.dependencies import get_coupon_service, get_current_user_id
from app.models.coupon import (
    Coupon,
    CouponCreate,
    CouponStatusUpdate,
    CouponStats,
    BulkCouponGenerateRequest,
    BulkCouponGenerateResult,
)
from app.services.coupon_service import CouponService

router = APIRouter(prefix="/api/coupons", tags=["优惠券管理"])


class CouponAttemptRequest(BaseModel):
    success: bool


@router.post("", response_model=Coupon, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    coupon_data: CouponCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: CouponService = Depends(get_coupon_service),
):
    return await service.create_coupon(coupon_data, created_by=user_id)


@router.post("/bulk", response_model=BulkCouponGenerateResult, status_code=status.HTTP_201_CREATED)
async def generate_bulk_coupons(
    request: BulkCouponGenerateRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: CouponService = Depends(get_coupon_service),
):
    """批量生成一次性优惠券"""
    return await service.generate_bulk_coupons(request, created_by=user_id)


@router.get("/public", response_model=List[Coupon])
async def get_public_coupons(service: CouponService = Depends(get_coupon_service)):
    return await service.get_public_coupons()


@router.get("/mine", response_model=List[Coupon])
async def get_my_coupons(
    user_id: Optional[str] = Depends(get_current_user_id),
    service: CouponService = Depends(get_coupon_service),
):
    if not user_id:
        return []
    return await service.get_user_coupons(user_id)


@router.get("/expiring-soon", response_model=List[Coupon])
async def get_expiring_coupons(
    days: int = Query(7, ge=1),
    service: CouponService = Depends(get_coupon_service),
):
    return await service.get_expiring_soon(days)


@router.get("/promotion/{promotion_id}", response_model=List[Coupon])
async def get_promotion_coupons(promotion_id: str, service: CouponService = Depends(get_coupon_service)):
    return await service.get_promotion_coupons(promotion_id)


@router.get("/{code}", response_model=Coupon)
async def get_coupon(code: str, service: CouponService = Depends(get_coupon_service)):
    return await service.get_coupon_by_code(code, count_view=True)


@router.get("/{code}/stats", response_model=CouponStats)
async def get_coupon_stats(code: str, service: CouponService = Depends(get_coupon_service)):
    return await service.get_coupon_stats(code)


@router.put("/{code}/status", response_model=Coupon)
async def change_coupon_status(
    code: str,
    body: CouponStatusUpdate,
    service: CouponService = Depends(get_coupon_service),
):
    return await service.change_status(code, body.status)


@router.post("/{code}/attempts", status_code=status.HTTP_204_NO_CONTENT)
async def record_coupon_attempt(
    code: str,
    body: CouponAttemptRequest,
    service: CouponService = Depends(get_coupon_service),
):
    """结账流程上报一次兑换尝试结果"""
    await service.record_coupon_attempt(code, body.success)
