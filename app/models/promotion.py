"""
促销相关数据模型
促销 = 条件(conditions) + 规则(rules) + 使用记录(usage_history)
rules 按促销类型区分为不同的结构，通过 type 字段做判别联合
"""

from decimal import Decimal
from datetime import datetime
from typing import List, Optional, Dict, Any, Union, Literal, Annotated
from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from enum import Enum


class PromotionType(str, Enum):
    """促销类型枚举"""
    PERCENTAGE = "percentage"  # 百分比折扣
    FIXED_AMOUNT = "fixed_amount"  # 固定金额折扣
    FREE_SHIPPING = "free_shipping"  # 免运费
    BUY_X_GET_Y = "buy_x_get_y"  # 买X送Y
    QUANTITY_DISCOUNT = "quantity_discount"  # 阶梯数量折扣
    CATEGORY_DISCOUNT = "category_discount"  # 品类折扣
    MINIMUM_PURCHASE = "minimum_purchase"  # 满额折扣
    # 以下类型已声明，计算逻辑尚未实现
    FLASH_SALE = "flash_sale"
    BUNDLE_OFFER = "bundle_offer"
    LOYALTY_DISCOUNT = "loyalty_discount"
    FIRST_PURCHASE_DISCOUNT = "first_purchase_discount"
    SEASONAL_DISCOUNT = "seasonal_discount"


RESERVED_PROMOTION_TYPES = frozenset({
    PromotionType.FLASH_SALE,
    PromotionType.BUNDLE_OFFER,
    PromotionType.LOYALTY_DISCOUNT,
    PromotionType.FIRST_PURCHASE_DISCOUNT,
    PromotionType.SEASONAL_DISCOUNT,
})


class PromotionStatus(str, Enum):
    """促销状态枚举"""
    DRAFT = "draft"  # 草稿
    ACTIVE = "active"  # 生效中
    PAUSED = "paused"  # 已暂停
    EXPIRED = "expired"  # 已过期（终态）
    CANCELLED = "cancelled"  # 已取消（终态）


TERMINAL_PROMOTION_STATUSES = frozenset({PromotionStatus.EXPIRED, PromotionStatus.CANCELLED})


class PromotionTarget(str, Enum):
    """促销目标范围（仅作展示，实际限制由conditions决定）"""
    ALL_PRODUCTS = "all_products"
    SPECIFIC_PRODUCTS = "specific_products"
    CATEGORY = "category"
    USER_SEGMENT = "user_segment"
    FIRST_TIME_BUYERS = "first_time_buyers"
    RETURNING_CUSTOMERS = "returning_customers"


class PromotionConditions(BaseModel):
    """促销适用条件"""

    minimum_purchase_amount: Optional[Decimal] = Field(None, ge=0, description="最低消费金额")
    minimum_quantity: Optional[int] = Field(None, ge=1, description="最低购买件数")
    specific_products: List[str] = Field(default_factory=list, description="指定商品ID")
    categories: List[str] = Field(default_factory=list, description="指定品类")
    specific_users: List[str] = Field(default_factory=list, description="指定用户ID")
    user_segment: Optional[str] = Field(None, description="用户分群")
    max_uses_per_user: Optional[int] = Field(None, ge=1, description="单用户使用次数上限")
    max_total_uses: Optional[int] = Field(None, ge=1, description="总使用次数上限")
    exclude_discounted_items: bool = Field(default=False, description="排除已打折商品")
    allowed_payment_methods: List[str] = Field(default_factory=list, description="允许的支付方式")
    allowed_shipping_zones: List[str] = Field(default_factory=list, description="允许的配送区域")


class TierDiscountType(str, Enum):
    """阶梯折扣计算方式"""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class QuantityTier(BaseModel):
    """数量阶梯"""

    quantity: int = Field(..., ge=1, description="数量门槛")
    discount: Decimal = Field(..., ge=0, description="折扣值")
    discount_type: TierDiscountType = Field(..., description="折扣计算方式")

    @model_validator(mode="after")
    def validate_percentage_tier(self):
        if self.discount_type == TierDiscountType.PERCENTAGE and self.discount > 100:
            raise ValueError("百分比阶梯折扣不能超过100")
        return self


class BaseRules(BaseModel):
    """所有规则共有的折扣上下限"""

    max_discount_amount: Optional[Decimal] = Field(None, ge=0, description="折扣金额上限")
    min_discount_amount: Optional[Decimal] = Field(None, ge=0, description="最低折扣金额，未达到则不生效")


class PercentageRules(BaseRules):
    type: Literal["percentage"] = "percentage"
    discount_percentage: Decimal = Field(..., gt=0, le=100)


class FixedAmountRules(BaseRules):
    type: Literal["fixed_amount"] = "fixed_amount"
    discount_amount: Decimal = Field(..., gt=0)


class FreeShippingRules(BaseRules):
    type: Literal["free_shipping"] = "free_shipping"


class BuyXGetYRules(BaseRules):
    type: Literal["buy_x_get_y"] = "buy_x_get_y"
    buy_quantity: int = Field(..., ge=1)
    get_quantity: int = Field(..., ge=1)
    get_discount_percentage: Decimal = Field(default=Decimal("100"), ge=0, le=100)


class QuantityDiscountRules(BaseRules):
    type: Literal["quantity_discount"] = "quantity_discount"
    quantity_tiers: List[QuantityTier] = Field(..., min_length=1)


class CategoryDiscountRules(BaseRules):
    type: Literal["category_discount"] = "category_discount"
    discount_percentage: Decimal = Field(..., gt=0, le=100)


class MinimumPurchaseRules(BaseRules):
    type: Literal["minimum_purchase"] = "minimum_purchase"
    discount_amount: Optional[Decimal] = Field(None, gt=0)
    discount_percentage: Optional[Decimal] = Field(None, gt=0, le=100)

    @model_validator(mode="after")
    def validate_single_payoff(self):
        if (self.discount_amount is None) == (self.discount_percentage is None):
            raise ValueError("满额折扣必须且只能配置固定金额或百分比其中之一")
        return self


class ReservedRules(BaseRules):
    """预留类型的规则，字段原样保存"""

    model_config = ConfigDict(extra="allow")

    type: Literal[
        "flash_sale",
        "bundle_offer",
        "loyalty_discount",
        "first_purchase_discount",
        "seasonal_discount",
    ]
    discount_percentage: Optional[Decimal] = Field(None, ge=0, le=100)
    discount_amount: Optional[Decimal] = Field(None, ge=0)


PromotionRules = Annotated[
    Union[
        PercentageRules,
        FixedAmountRules,
        FreeShippingRules,
        BuyXGetYRules,
        QuantityDiscountRules,
        CategoryDiscountRules,
        MinimumPurchaseRules,
        ReservedRules,
    ],
    Field(discriminator="type"),
]


def _inject_rules_type(data: Any) -> Any:
    """rules 未显式声明 type 时继承促销的 type"""
    if isinstance(data, dict):
        rules = data.get("rules")
        promotion_type = data.get("type")
        if isinstance(rules, dict) and "type" not in rules and promotion_type is not None:
            data = dict(data)
            data["rules"] = {**rules, "type": PromotionType(promotion_type).value}
    return data


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """带时区的时间转换为本地时区的无时区时间，与库内存储及 datetime.now() 保持一致"""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class PromotionUsage(BaseModel):
    """促销使用记录（只追加）"""

    user_id: str = Field(..., description="用户ID")
    used_at: datetime = Field(..., description="使用时间")
    order_id: str = Field(..., description="订单ID")
    discount_amount: Decimal = Field(..., ge=0, description="折扣金额")
    order_total: Optional[Decimal] = Field(None, ge=0, description="订单金额")
    coupon_code: Optional[str] = Field(None, description="使用的优惠券代码")


class Promotion(BaseModel):
    """促销基础模型"""

    promotion_id: str = Field(..., description="促销ID")
    name: str = Field(..., min_length=1, max_length=100, description="促销名称")
    description: Optional[str] = Field(None, max_length=500, description="促销描述")
    type: PromotionType = Field(..., description="促销类型")
    status: PromotionStatus = Field(default=PromotionStatus.DRAFT, description="促销状态")
    target: PromotionTarget = Field(..., description="目标范围")
    start_date: datetime = Field(..., description="开始时间")
    end_date: datetime = Field(..., description="结束时间")
    conditions: PromotionConditions = Field(default_factory=PromotionConditions)
    rules: PromotionRules
    usage_history: List[PromotionUsage] = Field(default_factory=list)
    total_uses: int = Field(default=0, ge=0)
    total_discount_given: Decimal = Field(default=Decimal("0"), ge=0)
    conversion_count: int = Field(default=0, ge=0)
    view_count: int = Field(default=0, ge=0)
    is_active: bool = Field(default=True)
    is_automatic: bool = Field(default=False, description="无需代码自动应用")
    priority: int = Field(default=1, description="冲突时优先级，越大越优先")
    auto_apply_to_cart: bool = Field(default=False)
    internal_notes: Optional[str] = Field(None, max_length=200)
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="before")
    @classmethod
    def inherit_rules_type(cls, data: Any) -> Any:
        return _inject_rules_type(data)

    @model_validator(mode="after")
    def validate_consistency(self):
        """验证规则类型与有效期"""
        if self.rules.type != self.type.value:
            raise ValueError("规则类型与促销类型不一致")
        if self.start_date >= self.end_date:
            raise ValueError("开始时间必须早于结束时间")
        return self


class PromotionCreate(BaseModel):
    """创建促销模型"""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    type: PromotionType
    target: PromotionTarget = PromotionTarget.ALL_PRODUCTS
    start_date: datetime
    end_date: datetime
    conditions: PromotionConditions = Field(default_factory=PromotionConditions)
    rules: PromotionRules
    is_automatic: bool = False
    priority: int = Field(default=1, ge=1, le=10)
    auto_apply_to_cart: bool = False
    internal_notes: Optional[str] = Field(None, max_length=200)

    @model_validator(mode="before")
    @classmethod
    def inherit_rules_type(cls, data: Any) -> Any:
        return _inject_rules_type(data)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: datetime) -> datetime:
        return to_local_naive(v)


class PromotionUpdate(BaseModel):
    """更新促销模型，rules 在服务层结合现有类型校验"""

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    type: Optional[PromotionType] = None
    target: Optional[PromotionTarget] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    conditions: Optional[PromotionConditions] = None
    rules: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None
    is_automatic: Optional[bool] = None
    priority: Optional[int] = Field(None, ge=1, le=10)
    auto_apply_to_cart: Optional[bool] = None
    internal_notes: Optional[str] = Field(None, max_length=200)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(v)


class PromotionStatusUpdate(BaseModel):
    """管理员状态流转请求"""

    status: PromotionStatus


class PromotionFilters(BaseModel):
    """促销列表过滤条件"""

    status: Optional[PromotionStatus] = None
    type: Optional[PromotionType] = None
    is_active: Optional[bool] = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)

    @field_validator("limit", mode="before")
    @classmethod
    def default_limit(cls, v):
        return 50 if v is None else v


class PromotionTypeStats(BaseModel):
    type: PromotionType
    count: int
    total_discount: Decimal


class TopPromotion(BaseModel):
    promotion_id: str
    name: str
    usage_count: int
    discount_given: Decimal
    conversion_rate: Decimal


class PromotionStats(BaseModel):
    """促销统计"""

    total_promotions: int
    active_promotions: int
    total_discount_given: Decimal
    total_uses: int
    top_promotions: List[TopPromotion] = Field(default_factory=list)
    promotions_by_type: List[PromotionTypeStats] = Field(default_factory=list)


class SweepResult(BaseModel):
    """状态巡检结果"""

    activated_promotions: int = 0
    expired_promotions: int = 0
    expired_coupons: int = 0
    ran_at: datetime

    @property
    def total_changes(self) -> int:
        return self.activated_promotions + self.expired_promotions + self.expired_coupons
