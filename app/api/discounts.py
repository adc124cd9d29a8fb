"""
折扣计算接口
购物车计算、优惠券试校验、订单完成后的使用记录
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from app.api.dependencies import (
    get_discount_service,
    get_coupon_service,
    get_usage_recorder,
    get_current_user_id,
)
from app.models.coupon import CouponValidationResult
from app.models.discount import (
    ApplyDiscountRequest,
    CouponValidateRequest,
    DiscountResult,
    OrderCompletedRequest,
    UsageRecordResult,
)
from app.services.discount_service import DiscountService
from app.services.coupon_service import CouponService
from app.services.usage_recorder import UsageRecorder

router = APIRouter(prefix="/api/discounts", tags=["折扣计算"])


@router.post("/calculate", response_model=DiscountResult)
async def calculate_discounts(
    request: ApplyDiscountRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: DiscountService = Depends(get_discount_service),
):
    """计算购物车可享受的折扣"""
    return await service.calculate_discounts(
        user_id,
        request.cart_items,
        request.cart_total,
        coupon_code=request.coupon_code,
    )


@router.post("/validate-coupon", response_model=CouponValidationResult)
async def validate_coupon(
    request: CouponValidateRequest,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: CouponService = Depends(get_coupon_service),
):
    """优惠券试校验，不修改任何状态"""
    return await service.validate_coupon(request.code, user_id, request.cart_items, request.cart_total)


@router.post("/usage", response_model=UsageRecordResult, status_code=status.HTTP_201_CREATED)
async def record_order_usage(
    request: OrderCompletedRequest,
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """订单完成通知，写入使用记录"""
    return await recorder.record_order_usage(request)
