"""
折扣计算服务（入口）
收集自动促销 + 可选优惠券，按冲突策略选出最终折扣
整个计算过程只读，每次都从数据库读取最新的促销状态
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import ValidationError

from app.core.exceptions import BusinessException
from app.models.discount import (
    CartItem,
    DiscountCalculation,
    DiscountResult,
    AppliedPromotionSummary,
    round_money,
)
from app.repositories.promotion_repository import PromotionRepository
from app.services.applicability import is_promotion_applicable
from app.services.coupon_validator import CouponValidator
from app.services.discount_evaluator import evaluate_promotion

logger = logging.getLogger(__name__)


class BestSingleDiscountStrategy:
    """冲突策略：只保留折扣金额最大的一个，金额相同时保留先出现的（优先级更高）"""

    def resolve(self, calculations: List[DiscountCalculation]) -> List[DiscountCalculation]:
        if not calculations:
            return []
        best = calculations[0]
        for calculation in calculations[1:]:
            if calculation.discount_amount > best.discount_amount:
                best = calculation
        return [best]


class DiscountService:
    """折扣计算服务"""

    def __init__(
        self,
        promotion_repo: PromotionRepository,
        coupon_validator: CouponValidator,
        strategy: Optional[BestSingleDiscountStrategy] = None,
    ):
        self.promotion_repo = promotion_repo
        self.coupon_validator = coupon_validator
        self.strategy = strategy or BestSingleDiscountStrategy()

    async def calculate_discounts(
        self,
        user_id: Optional[str],
        cart_items: List[CartItem],
        cart_total: Decimal,
        coupon_code: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DiscountResult:
        """
        计算购物车折扣

        单条促销计算失败只记为 warning；优惠券失败记为 error，但不影响自动促销
        """
        now = now or datetime.now()
        errors: List[str] = []
        warnings: List[str] = []
        collected: List[DiscountCalculation] = []
        free_shipping = False

        for db_promotion in await self.promotion_repo.get_active_automatic(now):
            try:
                promotion = self.promotion_repo.to_model(db_promotion)
                if not is_promotion_applicable(promotion, user_id, cart_items, now):
                    continue
                calculation = evaluate_promotion(promotion, cart_items, cart_total)
            except (ValidationError, ArithmeticError, AttributeError, TypeError, ValueError) as e:
                logger.warning(f"促销 {db_promotion.promotion_id} 计算失败: {e}")
                warnings.append(f"促销 {db_promotion.name} 计算失败: {e}")
                continue

            if calculation.free_shipping:
                free_shipping = True
            if calculation.discount_amount > 0:
                collected.append(calculation)

        if coupon_code:
            try:
                calculation = await self.coupon_validator.apply(
                    coupon_code, user_id, cart_items, cart_total, now=now
                )
            except BusinessException as e:
                errors.append(f"优惠券错误: {e.message}")
            else:
                if calculation.free_shipping:
                    free_shipping = True
                if calculation.discount_amount > 0:
                    collected.append(calculation)

        chosen = self.strategy.resolve(collected)

        total_discount = round_money(sum((c.discount_amount for c in chosen), Decimal("0")))
        total_discount = min(total_discount, round_money(cart_total))
        final_total = round_money(max(Decimal("0"), cart_total - total_discount))

        return DiscountResult(
            success=len(errors) == 0,
            original_total=round_money(cart_total),
            applied_promotions=[
                AppliedPromotionSummary(
                    promotion_id=c.promotion_id,
                    promotion_name=c.promotion_name,
                    promotion_type=c.promotion_type,
                    discount_amount=round_money(c.discount_amount),
                    discount_percentage=c.discount_percentage,
                    coupon_code=c.coupon_code,
                    description=c.description,
                )
                for c in chosen
            ],
            total_discount=total_discount,
            final_total=final_total,
            savings=total_discount,
            free_shipping_granted=free_shipping,
            errors=errors,
            warnings=warnings,
        )
