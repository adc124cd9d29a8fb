"""
数据模型包初始化文件
"""

from .promotion import (
    Promotion,
    PromotionCreate,
    PromotionUpdate,
    PromotionStatusUpdate,
    PromotionUsage,
    PromotionConditions,
    PromotionRules,
    PromotionType,
    PromotionStatus,
    PromotionTarget,
    QuantityTier,
    TierDiscountType,
    SweepResult,
)
from .coupon import (
    Coupon,
    CouponCreate,
    CouponStatusUpdate,
    CouponUsage,
    CouponType,
    CouponStatus,
    CouponRejectReason,
    CouponValidationResult,
    BulkCouponGenerateRequest,
)
from .discount import (
    CartItem,
    ApplyDiscountRequest,
    CouponValidateRequest,
    DiscountCalculation,
    AppliedPromotionSummary,
    DiscountResult,
    OrderCompletedRequest,
)

__all__ = [
    "Promotion",
    "PromotionCreate",
    "PromotionUpdate",
    "PromotionStatusUpdate",
    "PromotionUsage",
    "PromotionConditions",
    "PromotionRules",
    "PromotionType",
    "PromotionStatus",
    "PromotionTarget",
    "QuantityTier",
    "TierDiscountType",
    "SweepResult",
    "Coupon",
    "CouponCreate",
    "CouponStatusUpdate",
    "CouponUsage",
    "CouponType",
    "CouponStatus",
    "CouponRejectReason",
    "CouponValidationResult",
    "BulkCouponGenerateRequest",
    "CartItem",
    "ApplyDiscountRequest",
    "CouponValidateRequest",
    "DiscountCalculation",
    "AppliedPromotionSummary",
    "DiscountResult",
    "OrderCompletedRequest",
]
