"""
优惠券兑换校验
试校验（dry-run）与实际兑换共用同一个判定函数 check_coupon，保证两者结论一致
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from pydantic import ValidationError

from app.core.exceptions import CouponRejectedException, ValidationException
from app.models.coupon import (
    Coupon,
    CouponStatus,
    CouponRejectReason,
    CouponValidationResult,
    normalize_coupon_code,
)
from app.models.discount import CartItem, DiscountCalculation
from app.models.promotion import Promotion
from app.repositories.coupon_repository import CouponRepository
from app.repositories.promotion_repository import PromotionRepository
from app.services.discount_evaluator import evaluate_promotion

logger = logging.getLogger(__name__)

Rejection = Tuple[CouponRejectReason, str]


def check_coupon(
    coupon: Optional[Coupon],
    user_id: Optional[str],
    cart_items: List[CartItem],
    cart_total: Decimal,
    now: datetime,
) -> Optional[Rejection]:
    """
    按固定顺序检查优惠券，返回第一个失败原因；全部通过返回 None

    匿名用户不做单用户次数检查，但无法通过指定用户券的校验
    """
    if coupon is None:
        return CouponRejectReason.NOT_FOUND, "优惠券不存在"

    if coupon.status == CouponStatus.USED:
        return CouponRejectReason.USAGE_LIMIT_REACHED, "优惠券已被使用"
    if coupon.status == CouponStatus.EXPIRED:
        return CouponRejectReason.EXPIRED, "优惠券已过期"
    if coupon.status != CouponStatus.ACTIVE or not coupon.is_active:
        return CouponRejectReason.INACTIVE, "优惠券已停用"

    if now < coupon.valid_from:
        return CouponRejectReason.NOT_YET_VALID, "优惠券尚未开始使用"
    if now > coupon.valid_until:
        return CouponRejectReason.EXPIRED, "优惠券已过期"

    if coupon.minimum_purchase_amount is not None and cart_total < coupon.minimum_purchase_amount:
        return (
            CouponRejectReason.BELOW_MINIMUM_PURCHASE,
            f"订单金额不满足最低要求 {coupon.minimum_purchase_amount} 元",
        )

    if coupon.requires_minimum_items and coupon.minimum_items:
        total_items = sum(item.quantity for item in cart_items)
        if total_items < coupon.minimum_items:
            return CouponRejectReason.BELOW_MINIMUM_ITEMS, f"至少需要购买 {coupon.minimum_items} 件商品"

    if coupon.max_uses_per_user is not None and user_id:
        user_uses = sum(1 for usage in coupon.usage_history if usage.user_id == user_id)
        if user_uses >= coupon.max_uses_per_user:
            return CouponRejectReason.USER_LIMIT_REACHED, "您已达到该优惠券的使用上限"

    if coupon.max_uses is not None and coupon.total_uses >= coupon.max_uses:
        return CouponRejectReason.USAGE_LIMIT_REACHED, "优惠券使用次数已达上限"

    if coupon.specific_user_id and coupon.specific_user_id != user_id:
        return CouponRejectReason.USER_MISMATCH, "该优惠券不适用于当前用户"

    return None


class CouponValidator:
    """优惠券校验服务，只读，不修改任何状态"""

    def __init__(self, coupon_repo: CouponRepository, promotion_repo: PromotionRepository):
        self.coupon_repo = coupon_repo
        self.promotion_repo = promotion_repo

    async def _load(self, code: str) -> Tuple[Optional[Coupon], Optional[Promotion]]:
        db_coupon = await self.coupon_repo.get_by_code(normalize_coupon_code(code), fresh=True)
        if db_coupon is None:
            return None, None

        coupon = self.coupon_repo.to_model(db_coupon)
        db_promotion = await self.promotion_repo.get_by_id(coupon.promotion_id, fresh=True)
        if db_promotion is None:
            return coupon, None

        try:
            promotion = self.promotion_repo.to_model(db_promotion)
        except ValidationError as e:
            logger.error(f"优惠券 {coupon.code} 关联的促销规则不合法: {e}")
            raise ValidationException(
                "优惠券关联的促销规则配置不合法",
                details={"promotion_id": coupon.promotion_id},
            )
        return coupon, promotion

    async def validate(
        self,
        code: str,
        user_id: Optional[str],
        cart_items: List[CartItem],
        cart_total: Decimal,
        now: Optional[datetime] = None,
    ) -> CouponValidationResult:
        """试校验：返回结构化结论，不抛出业务失败"""
        now = now or datetime.now()
        coupon, promotion = await self._load(code)

        rejection = check_coupon(coupon, user_id, cart_items, cart_total, now)
        if rejection is None and promotion is None:
            rejection = (CouponRejectReason.NOT_FOUND, "优惠券关联的促销不存在")

        if rejection is not None:
            reason, message = rejection
            return CouponValidationResult(
                valid=False,
                reason=reason,
                message=message,
                coupon=coupon,
                promotion_id=coupon.promotion_id if coupon else None,
                promotion_name=promotion.name if promotion else None,
            )

        calculation = self._calculate(coupon, promotion, cart_items, cart_total)
        return CouponValidationResult(
            valid=True,
            message="优惠券可用",
            coupon=coupon,
            promotion_id=promotion.promotion_id,
            promotion_name=promotion.name,
            estimated_discount=calculation.discount_amount,
            calculation=calculation,
        )

    async def apply(
        self,
        code: str,
        user_id: Optional[str],
        cart_items: List[CartItem],
        cart_total: Decimal,
        now: Optional[datetime] = None,
    ) -> DiscountCalculation:
        """兑换路径：校验失败抛出 CouponRejectedException"""
        result = await self.validate(code, user_id, cart_items, cart_total, now=now)
        if not result.valid:
            raise CouponRejectedException(result.reason.value, result.message)
        return result.calculation

    def _calculate(
        self,
        coupon: Coupon,
        promotion: Promotion,
        cart_items: List[CartItem],
        cart_total: Decimal,
    ) -> DiscountCalculation:
        calculation = evaluate_promotion(promotion, cart_items, cart_total)
        calculation.coupon_code = coupon.code
        calculation.description = f"优惠券 {coupon.code}: {calculation.description}"
        return calculation
