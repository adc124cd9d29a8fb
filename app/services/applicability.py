"""
促销适用性判断
纯函数，无副作用，可在匿名请求下安全调用
"""

from datetime import datetime
from typing import List, Optional

from app.models.promotion import Promotion, PromotionStatus
from app.models.discount import CartItem


def is_within_window(promotion: Promotion, now: datetime) -> bool:
    """当前时间是否在 [start_date, end_date] 内"""
    return promotion.start_date <= now <= promotion.end_date


def get_applicable_items(promotion: Promotion, cart_items: List[CartItem]) -> List[CartItem]:
    """按商品/品类过滤出适用的购物车行，无过滤条件时全部适用"""
    conditions = promotion.conditions
    items = list(cart_items)

    if conditions.specific_products:
        products = set(conditions.specific_products)
        items = [item for item in items if item.product_id in products]

    if conditions.categories:
        categories = set(conditions.categories)
        items = [item for item in items if item.category in categories]

    if conditions.exclude_discounted_items:
        items = [item for item in items if not item.is_discounted]

    return items


def count_user_uses(promotion: Promotion, user_id: str) -> int:
    return sum(1 for usage in promotion.usage_history if usage.user_id == user_id)


def is_promotion_applicable(
    promotion: Promotion,
    user_id: Optional[str],
    cart_items: List[CartItem],
    now: datetime,
) -> bool:
    """
    判断促销条件是否全部满足

    匿名请求（user_id 为空）不做单用户次数检查
    """
    if promotion.status != PromotionStatus.ACTIVE or not promotion.is_active:
        return False
    if not is_within_window(promotion, now):
        return False

    conditions = promotion.conditions

    if conditions.minimum_quantity is not None:
        total_quantity = sum(item.quantity for item in cart_items)
        if total_quantity < conditions.minimum_quantity:
            return False

    if conditions.specific_products:
        products = set(conditions.specific_products)
        if not any(item.product_id in products for item in cart_items):
            return False

    if conditions.categories:
        categories = set(conditions.categories)
        if not any(item.category in categories for item in cart_items):
            return False

    if conditions.max_uses_per_user is not None and user_id:
        if count_user_uses(promotion, user_id) >= conditions.max_uses_per_user:
            return False

    if conditions.max_total_uses is not None:
        if promotion.total_uses >= conditions.max_total_uses:
            return False

    return True
