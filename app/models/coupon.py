"""
优惠券相关数据模型
优惠券必须关联一个促销，复用该促销的折扣算法，并叠加自身的使用限制
"""

import re
from decimal import Decimal
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum

from app.models.discount import DiscountCalculation
from app.models.promotion import to_local_naive

COUPON_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


class CouponType(str, Enum):
    """优惠券类型枚举"""
    SINGLE_USE = "single_use"  # 一次性
    MULTI_USE = "multi_use"  # 可多次使用
    USER_SPECIFIC = "user_specific"  # 指定用户
    PUBLIC = "public"  # 公开券


class CouponStatus(str, Enum):
    """优惠券状态枚举"""
    ACTIVE = "active"  # 有效
    USED = "used"  # 已使用（仅一次性券）
    EXPIRED = "expired"  # 已过期
    CANCELLED = "cancelled"  # 已作废


class CouponRejectReason(str, Enum):
    """优惠券校验失败原因，按检查顺序排列"""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    NOT_YET_VALID = "not_yet_valid"
    EXPIRED = "expired"
    BELOW_MINIMUM_PURCHASE = "below_minimum_purchase"
    BELOW_MINIMUM_ITEMS = "below_minimum_items"
    USER_LIMIT_REACHED = "user_limit_reached"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    USER_MISMATCH = "user_mismatch"


def normalize_coupon_code(code: str) -> str:
    """优惠券代码统一去空格并转大写"""
    return (code or "").strip().upper()


class CouponUsage(BaseModel):
    """优惠券使用记录"""

    user_id: str
    used_at: datetime
    order_id: str
    discount_amount: Decimal = Field(..., ge=0)
    order_total: Decimal = Field(default=Decimal("0"), ge=0)


class Coupon(BaseModel):
    """优惠券基础模型"""

    coupon_id: str = Field(..., description="优惠券ID")
    code: str = Field(..., min_length=1, max_length=50, description="优惠券代码")
    name: str = Field(..., min_length=1, max_length=100, description="优惠券名称")
    description: Optional[str] = Field(None, max_length=300)
    type: CouponType = Field(..., description="优惠券类型")
    status: CouponStatus = Field(default=CouponStatus.ACTIVE)
    promotion_id: str = Field(..., description="关联促销ID")
    max_uses: Optional[int] = Field(None, ge=1, description="总使用次数上限")
    max_uses_per_user: Optional[int] = Field(None, ge=1, description="单用户使用次数上限")
    specific_user_id: Optional[str] = Field(None, description="限定用户")
    valid_from: datetime
    valid_until: datetime
    usage_history: List[CouponUsage] = Field(default_factory=list)
    total_uses: int = Field(default=0, ge=0)
    total_discount_given: Decimal = Field(default=Decimal("0"), ge=0)
    is_active: bool = True
    is_public: bool = False
    minimum_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    requires_minimum_items: bool = False
    minimum_items: Optional[int] = Field(None, ge=1)
    view_count: int = Field(default=0, ge=0)
    attempt_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)
    failure_count: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime] = None
    last_used_by: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def success_rate(self) -> Decimal:
        """兑换成功率（百分比）"""
        if self.attempt_count == 0:
            return Decimal("0")
        return Decimal(self.success_count) / Decimal(self.attempt_count) * 100


class CouponCreate(BaseModel):
    """创建优惠券模型"""

    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=300)
    type: CouponType
    promotion_id: str
    max_uses: Optional[int] = Field(None, ge=1)
    max_uses_per_user: Optional[int] = Field(None, ge=1)
    specific_user_id: Optional[str] = None
    valid_from: datetime
    valid_until: datetime
    is_public: bool = False
    minimum_purchase_amount: Optional[Decimal] = Field(None, ge=0)
    requires_minimum_items: bool = False
    minimum_items: Optional[int] = Field(None, ge=1)

    @field_validator("code")
    @classmethod
    def validate_code(cls, v: str) -> str:
        """代码只能包含字母和数字，统一转大写"""
        code = normalize_coupon_code(v)
        if not COUPON_CODE_PATTERN.match(code):
            raise ValueError("优惠券代码只能包含字母和数字")
        return code

    @field_validator("valid_from", "valid_until")
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return to_local_naive(v)

    @model_validator(mode="after")
    def validate_constraints(self):
        if self.valid_from >= self.valid_until:
            raise ValueError("生效时间必须早于失效时间")
        if self.type == CouponType.USER_SPECIFIC and not self.specific_user_id:
            raise ValueError("指定用户券必须配置 specific_user_id")
        if self.requires_minimum_items and not self.minimum_items:
            raise ValueError("启用最低件数限制时必须配置 minimum_items")
        return self


class CouponStatusUpdate(BaseModel):
    status: CouponStatus


class BulkCouponGenerateRequest(BaseModel):
    """批量生成优惠券请求"""

    promotion_id: str
    quantity: int = Field(..., ge=1)
    prefix: Optional[str] = Field(None, max_length=20)

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        prefix = normalize_coupon_code(v)
        if prefix and not COUPON_CODE_PATTERN.match(prefix):
            raise ValueError("前缀只能包含字母和数字")
        return prefix


class CouponValidationResult(BaseModel):
    """优惠券校验结论（试校验与兑换共用）"""

    valid: bool
    reason: Optional[CouponRejectReason] = None
    message: str = ""
    coupon: Optional[Coupon] = None
    promotion_id: Optional[str] = None
    promotion_name: Optional[str] = None
    estimated_discount: Decimal = Decimal("0")
    calculation: Optional[DiscountCalculation] = None


class CouponStats(BaseModel):
    coupon_id: str
    code: str
    total_uses: int
    total_discount_given: Decimal
    view_count: int
    attempt_count: int
    success_count: int
    failure_count: int
    success_rate: Decimal
    last_used_at: Optional[datetime] = None


class BulkCouponGenerateResult(BaseModel):
    promotion_id: str
    generated: int
    codes: List[str]

