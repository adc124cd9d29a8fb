"""
API依赖注入
身份信息由上游网关通过 X-User-Id 请求头传入，缺省视为匿名
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db_session
from app.repositories.promotion_repository import PromotionRepository
from app.repositories.coupon_repository import CouponRepository
from app.services.coupon_validator import CouponValidator
from app.services.discount_service import DiscountService
from app.services.promotion_service import PromotionService
from app.services.coupon_service import CouponService
from app.services.usage_recorder import UsageRecorder


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> Optional[str]:
    """当前用户ID，匿名请求返回 None"""
    if x_user_id is None:
        return None
    return x_user_id.strip() or None


def get_promotion_service(db: AsyncSession = Depends(get_db_session)) -> PromotionService:
    return PromotionService(PromotionRepository(db), CouponRepository(db))


def get_coupon_service(db: AsyncSession = Depends(get_db_session)) -> CouponService:
    return CouponService(CouponRepository(db), PromotionRepository(db))


def get_discount_service(db: AsyncSession = Depends(get_db_session)) -> DiscountService:
    promotion_repo = PromotionRepository(db)
    return DiscountService(promotion_repo, CouponValidator(CouponRepository(db), promotion_repo))


def get_usage_recorder(db: AsyncSession = Depends(get_db_session)) -> UsageRecorder:
    return UsageRecorder(PromotionRepository(db), CouponRepository(db))
