"""
促销管理接口
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator

from app.api.dependencies import get_promotion_service, get_current_user_id
from app.models.discount import CartItem, DiscountCalculation
from app.models.promotion import (
    Promotion,
    PromotionCreate,
    PromotionUpdate,
    PromotionStatus,
    PromotionStatusUpdate,
    PromotionType,
    PromotionFilters,
    PromotionStats,
    SweepResult,
    to_local_naive,
)
from app.services.promotion_service import PromotionService

router = APIRouter(prefix="/api/promotions", tags=["促销管理"])


class TestDiscountRequest(BaseModel):
    cart_items: List[CartItem] = Field(..., min_length=1)
    cart_total: Decimal = Field(..., ge=0)


class SweepRequest(BaseModel):
    now: Optional[datetime] = None

    @field_validator("now")
    @classmethod
    def normalize_now(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(v)


@router.post("", response_model=Promotion, status_code=status.HTTP_201_CREATED)
async def create_promotion(
    promotion_data: PromotionCreate,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: PromotionService = Depends(get_promotion_service),
):
    """创建促销（草稿状态）"""
    return await service.create_promotion(promotion_data, created_by=user_id)


@router.get("", response_model=List[Promotion])
async def list_promotions(
    status_filter: Optional[PromotionStatus] = Query(None, alias="status"),
    type_filter: Optional[PromotionType] = Query(None, alias="type"),
    is_active: Optional[bool] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: PromotionService = Depends(get_promotion_service),
):
    filters = PromotionFilters(
        status=status_filter,
        type=type_filter,
        is_active=is_active,
        limit=limit,
        offset=offset,
    )
    return await service.list_promotions(filters)


@router.get("/active", response_model=List[Promotion])
async def get_active_promotions(service: PromotionService = Depends(get_promotion_service)):
    return await service.get_active_promotions()


@router.get("/stats", response_model=PromotionStats)
async def get_promotion_stats(service: PromotionService = Depends(get_promotion_service)):
    return await service.get_promotion_stats()


@router.get("/search", response_model=List[Promotion])
async def search_promotions(
    q: str = Query(""),
    service: PromotionService = Depends(get_promotion_service),
):
    return await service.search_promotions(q)


@router.get("/expiring-soon", response_model=List[Promotion])
async def get_expiring_soon(
    days: int = Query(7, ge=1),
    service: PromotionService = Depends(get_promotion_service),
):
    return await service.get_expiring_soon(days)


@router.get("/unused", response_model=List[Promotion])
async def get_unused_promotions(service: PromotionService = Depends(get_promotion_service)):
    return await service.get_unused_promotions()


@router.get("/category/{category}", response_model=List[Promotion])
async def get_promotions_by_category(category: str, service: PromotionService = Depends(get_promotion_service)):
    return await service.get_promotions_by_category(category)


@router.get("/product/{product_id}", response_model=List[Promotion])
async def get_promotions_by_product(product_id: str, service: PromotionService = Depends(get_promotion_service)):
    return await service.get_promotions_by_product(product_id)


@router.post("/sweep", response_model=SweepResult)
async def run_status_sweep(
    request: Optional[SweepRequest] = None,
    service: PromotionService = Depends(get_promotion_service),
):
    """手动执行一次状态巡检，可指定时间点"""
    return await service.run_status_sweep(request.now if request else None)


@router.get("/{promotion_id}", response_model=Promotion)
async def get_promotion(promotion_id: str, service: PromotionService = Depends(get_promotion_service)):
    return await service.get_promotion(promotion_id, count_view=True)


@router.put("/{promotion_id}", response_model=Promotion)
async def update_promotion(
    promotion_id: str,
    update_data: PromotionUpdate,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: PromotionService = Depends(get_promotion_service),
):
    return await service.update_promotion(promotion_id, update_data, modified_by=user_id)


@router.delete("/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promotion(promotion_id: str, service: PromotionService = Depends(get_promotion_service)):
    await service.delete_promotion(promotion_id)


@router.put("/{promotion_id}/status", response_model=Promotion)
async def change_promotion_status(
    promotion_id: str,
    body: PromotionStatusUpdate,
    user_id: Optional[str] = Depends(get_current_user_id),
    service: PromotionService = Depends(get_promotion_service),
):
    return await service.change_status(promotion_id, body.status, modified_by=user_id)


@router.post("/{promotion_id}/test-discount", response_model=DiscountCalculation)
async def test_discount(
    promotion_id: str,
    body: TestDiscountRequest,
    service: PromotionService = Depends(get_promotion_service),
):
    """用指定购物车试算促销（不检查状态和有效期）"""
    return await service.test_discount(promotion_id, body.cart_items, body.cart_total)


@router.get("/{promotion_id}/usage-report")
async def get_usage_report(
    promotion_id: str,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    service: PromotionService = Depends(get_promotion_service),
):
    return await service.get_usage_report(promotion_id, date_from, date_to)
