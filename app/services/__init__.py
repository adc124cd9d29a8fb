"""
服务包初始化文件
"""

from .common_cache import SimpleCache, promotion_cache, coupon_cache
from .discount_service import DiscountService, BestSingleDiscountStrategy
from .coupon_validator import CouponValidator, check_coupon
from .lifecycle_service import LifecycleService
from .usage_recorder import UsageRecorder
from .promotion_service import PromotionService
from .coupon_service import CouponService

__all__ = [
    "SimpleCache",
    "promotion_cache",
    "coupon_cache",
    "DiscountService",
    "BestSingleDiscountStrategy",
    "CouponValidator",
    "check_coupon",
    "LifecycleService",
    "UsageRecorder",
    "PromotionService",
    "CouponService",
]
