"""
折扣计算器
按促销类型分派到对应的计算函数，每个函数都是纯函数：
(promotion, cart_items, cart_total) -> (金额, 受影响的购物车行, 描述)
计算完成后统一应用折扣上下限
"""

import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from app.models.promotion import (
    Promotion,
    PromotionType,
    TierDiscountType,
    RESERVED_PROMOTION_TYPES,
)
from app.models.discount import CartItem, DiscountCalculation
from app.services.applicability import get_applicable_items

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

Outcome = Tuple[Decimal, List[str], str]
Handler = Callable[[Promotion, List[CartItem], Decimal], Outcome]


def _fmt(value: Decimal) -> str:
    """去掉多余的小数位，用于描述文案"""
    normalized = Decimal(value).normalize()
    return format(normalized, "f")


def _subtotal(items: List[CartItem]) -> Decimal:
    return sum((item.line_total for item in items), ZERO)


def _line_ids(items: List[CartItem]) -> List[str]:
    return [item.cart_item_id for item in items]


def calculate_percentage(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    percentage = promotion.rules.discount_percentage
    items = get_applicable_items(promotion, cart_items)
    amount = _subtotal(items) * percentage / HUNDRED
    return amount, _line_ids(items), f"指定商品享{_fmt(percentage)}%折扣"


def calculate_fixed_amount(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    amount = min(promotion.rules.discount_amount, cart_total)
    return amount, _line_ids(cart_items), f"立减{_fmt(amount)}元"


def calculate_free_shipping(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    # 运费由配送模块清零，这里只标记
    return ZERO, [], "免运费"


def calculate_buy_x_get_y(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    """
    买X送Y：按商品分组，每 (buy + get) 件为一组，每组 get 件按 get_discount_percentage 优惠
    不足一组的余量按原价计算
    """
    rules = promotion.rules
    set_size = rules.buy_quantity + rules.get_quantity
    items = get_applicable_items(promotion, cart_items)

    by_product: Dict[str, List[CartItem]] = OrderedDict()
    for item in items:
        by_product.setdefault(item.product_id, []).append(item)

    amount = ZERO
    affected: List[str] = []
    for product_items in by_product.values():
        total_quantity = sum(item.quantity for item in product_items)
        sets = total_quantity // set_size
        if sets == 0:
            continue
        free_units = sets * rules.get_quantity
        unit_price = product_items[0].unit_price
        amount += free_units * unit_price * rules.get_discount_percentage / HUNDRED
        affected.extend(_line_ids(product_items))

    description = f"买{rules.buy_quantity}送{rules.get_quantity}"
    if rules.get_discount_percentage < HUNDRED:
        description = f"买{rules.buy_quantity}件，第{rules.get_quantity}件享{_fmt(rules.get_discount_percentage)}%折扣"
    return amount, affected, description


def calculate_quantity_discount(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    """阶梯数量折扣：取不超过购买数量的最高门槛"""
    items = get_applicable_items(promotion, cart_items)
    total_quantity = sum(item.quantity for item in items)

    qualified = [tier for tier in promotion.rules.quantity_tiers if tier.quantity <= total_quantity]
    if not qualified:
        return ZERO, [], "购买数量不足，未达到阶梯折扣"

    tier = max(qualified, key=lambda t: t.quantity)
    if tier.discount_type == TierDiscountType.PERCENTAGE:
        amount = _subtotal(items) * tier.discount / HUNDRED
        description = f"满{tier.quantity}件享{_fmt(tier.discount)}%折扣"
    else:
        amount = tier.discount
        description = f"满{tier.quantity}件立减{_fmt(tier.discount)}元"
    return amount, _line_ids(items), description


def calculate_category_discount(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    percentage = promotion.rules.discount_percentage
    categories = set(promotion.conditions.categories)
    items = [item for item in cart_items if item.category in categories]
    amount = _subtotal(items) * percentage / HUNDRED
    names = "、".join(promotion.conditions.categories)
    return amount, _line_ids(items), f"{names}品类享{_fmt(percentage)}%折扣"


def calculate_minimum_purchase(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    threshold = promotion.conditions.minimum_purchase_amount or ZERO
    if cart_total < threshold:
        return ZERO, [], f"需满{_fmt(threshold)}元才可使用"

    rules = promotion.rules
    if rules.discount_amount is not None:
        amount = rules.discount_amount
    else:
        amount = cart_total * rules.discount_percentage / HUNDRED
    return amount, _line_ids(cart_items), f"满{_fmt(threshold)}元优惠"


def calculate_unsupported(promotion: Promotion, cart_items: List[CartItem], cart_total: Decimal) -> Outcome:
    return ZERO, [], f"暂不支持的促销类型: {promotion.type.value}"


DISCOUNT_HANDLERS: Dict[PromotionType, Handler] = {
    PromotionType.PERCENTAGE: calculate_percentage,
    PromotionType.FIXED_AMOUNT: calculate_fixed_amount,
    PromotionType.FREE_SHIPPING: calculate_free_shipping,
    PromotionType.BUY_X_GET_Y: calculate_buy_x_get_y,
    PromotionType.QUANTITY_DISCOUNT: calculate_quantity_discount,
    PromotionType.CATEGORY_DISCOUNT: calculate_category_discount,
    PromotionType.MINIMUM_PURCHASE: calculate_minimum_purchase,
}
DISCOUNT_HANDLERS.update({promotion_type: calculate_unsupported for promotion_type in RESERVED_PROMOTION_TYPES})


def apply_clamps(promotion: Promotion, amount: Decimal, description: str) -> Tuple[Decimal, str]:
    """应用折扣上限（截断）与下限（不足则整体作废）"""
    rules = promotion.rules
    if rules.max_discount_amount is not None and amount > rules.max_discount_amount:
        amount = rules.max_discount_amount
        description = f"{description}（已按上限{_fmt(rules.max_discount_amount)}元封顶）"

    if rules.min_discount_amount is not None and amount < rules.min_discount_amount:
        amount = ZERO
        description = f"折扣未达到最低金额{_fmt(rules.min_discount_amount)}元"

    return amount, description


def _discount_percentage(promotion: Promotion) -> Optional[Decimal]:
    return getattr(promotion.rules, "discount_percentage", None)


def evaluate_promotion(
    promotion: Promotion,
    cart_items: List[CartItem],
    cart_total: Decimal,
) -> DiscountCalculation:
    """计算单个促销的折扣"""
    handler = DISCOUNT_HANDLERS.get(promotion.type, calculate_unsupported)
    amount, affected, description = handler(promotion, cart_items, cart_total)

    amount, description = apply_clamps(promotion, amount, description)
    amount = max(ZERO, min(amount, cart_total))

    return DiscountCalculation(
        promotion_id=promotion.promotion_id,
        promotion_name=promotion.name,
        promotion_type=promotion.type,
        discount_amount=amount,
        discount_percentage=_discount_percentage(promotion),
        description=description,
        affected_item_ids=affected,
        free_shipping=promotion.type == PromotionType.FREE_SHIPPING,
    )
