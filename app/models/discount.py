"""
折扣计算相关数据模型
购物车快照由外部传入，引擎不会重新计算行金额
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional
from pydantic import BaseModel, Field

from app.models.promotion import PromotionType

CENT = Decimal("0.01")


def round_money(amount: Decimal) -> Decimal:
    """金额统一四舍五入到分"""
    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


class CartItem(BaseModel):
    """购物车行"""

    product_id: str = Field(..., description="商品ID")
    cart_item_id: str = Field(..., description="购物车行ID")
    product_name: Optional[str] = Field(None, description="商品名称")
    category: Optional[str] = Field(None, description="商品品类")
    quantity: int = Field(..., ge=1, description="数量")
    unit_price: Decimal = Field(..., ge=0, description="单价")
    is_discounted: bool = Field(default=False, description="是否已是折扣商品")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class ApplyDiscountRequest(BaseModel):
    """折扣计算请求"""

    cart_items: List[CartItem] = Field(..., min_length=1)
    cart_total: Decimal = Field(..., ge=0)
    coupon_code: Optional[str] = Field(None, max_length=50)


class CouponValidateRequest(BaseModel):
    """优惠券试校验请求"""

    code: str = Field(..., min_length=1, max_length=50)
    cart_items: List[CartItem] = Field(default_factory=list)
    cart_total: Decimal = Field(..., ge=0)


class DiscountCalculation(BaseModel):
    """单条促销的计算结果"""

    promotion_id: str
    promotion_name: str
    promotion_type: PromotionType
    discount_amount: Decimal = Decimal("0")
    discount_percentage: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    description: str = ""
    affected_item_ids: List[str] = Field(default_factory=list)
    free_shipping: bool = False


class AppliedPromotionSummary(BaseModel):
    """最终生效的折扣摘要"""

    promotion_id: str
    promotion_name: str
    promotion_type: PromotionType
    discount_amount: Decimal
    discount_percentage: Optional[Decimal] = None
    coupon_code: Optional[str] = None
    description: str


class DiscountResult(BaseModel):
    """折扣计算结果"""

    success: bool
    original_total: Decimal
    applied_promotions: List[AppliedPromotionSummary] = Field(default_factory=list)
    total_discount: Decimal = Decimal("0")
    final_total: Decimal
    savings: Decimal = Decimal("0")
    free_shipping_granted: bool = False
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class OrderCompletedRequest(BaseModel):
    """订单完成通知，触发使用记录写入"""

    order_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    promotion_id: str
    discount_amount: Decimal = Field(..., ge=0)
    order_total: Decimal = Field(default=Decimal("0"), ge=0)
    coupon_code: Optional[str] = Field(None, max_length=50)


class UsageRecordResult(BaseModel):
    promotion_id: str
    order_id: str
    coupon_code: Optional[str] = None
    coupon_status: Optional[str] = None
    recorded: bool = True
