"""
使用记录写入
订单完成后追加使用记录并累加计数，是 usage_history 的唯一写入方
计数累加使用带上限条件的 UPDATE，与使用记录在同一事务内提交
"""

import logging
from datetime import datetime
from typing import Optional

from app.core.exceptions import NotFoundException, ValidationException, UsageLimitExceededException
from app.models.coupon import normalize_coupon_code
from app.models.discount import OrderCompletedRequest, UsageRecordResult
from app.models.promotion import PromotionConditions
from app.repositories.promotion_repository import PromotionRepository
from app.repositories.coupon_repository import CouponRepository
from app.services.common_cache import promotion_cache, coupon_cache

logger = logging.getLogger(__name__)


class UsageRecorder:
    """使用记录服务"""

    def __init__(self, promotion_repo: PromotionRepository, coupon_repo: CouponRepository):
        self.promotion_repo = promotion_repo
        self.coupon_repo = coupon_repo

    async def _abort(self, message: str, details: dict) -> None:
        await self.promotion_repo.db.rollback()
        logger.warning(f"使用记录写入被拒绝: {message} {details}")
        raise UsageLimitExceededException(message, details=details)

    async def record_order_usage(
        self,
        request: OrderCompletedRequest,
        now: Optional[datetime] = None,
    ) -> UsageRecordResult:
        """
        记录一次订单使用

        Raises:
            NotFoundException: 促销或优惠券不存在
            ValidationException: 优惠券不属于该促销
            UsageLimitExceededException: 上限已被并发兑换占满，本次不做任何写入
        """
        now = now or datetime.now()

        # 先锁促销行再锁优惠券行，锁内读取的计数才是最新的
        if not await self.promotion_repo.lock_for_update(request.promotion_id):
            raise NotFoundException("促销不存在", details={"promotion_id": request.promotion_id})
        db_promotion = await self.promotion_repo.get_by_id(request.promotion_id, fresh=True)
        conditions = PromotionConditions(**(db_promotion.conditions or {}))

        db_coupon = None
        coupon_code = None
        if request.coupon_code:
            coupon_code = normalize_coupon_code(request.coupon_code)
            db_coupon = await self.coupon_repo.get_by_code(coupon_code, fresh=True)
            if db_coupon is None:
                raise NotFoundException("优惠券不存在", details={"code": coupon_code})
            await self.coupon_repo.lock_for_update(db_coupon.coupon_id)
            if db_coupon.promotion_id != request.promotion_id:
                raise ValidationException(
                    "优惠券不属于该促销",
                    details={"code": coupon_code, "promotion_id": request.promotion_id},
                )

        incremented = await self.promotion_repo.try_increment_usage(
            request.promotion_id,
            request.user_id,
            request.discount_amount,
            max_total_uses=conditions.max_total_uses,
            max_uses_per_user=conditions.max_uses_per_user,
        )
        if not incremented:
            await self._abort("促销使用次数已达上限", {"promotion_id": request.promotion_id})

        await self.promotion_repo.add_usage(
            request.promotion_id,
            request.user_id,
            request.order_id,
            request.discount_amount,
            order_total=request.order_total,
            coupon_code=coupon_code,
            used_at=now,
        )

        coupon_status = None
        if db_coupon is not None:
            redeemed = await self.coupon_repo.try_redeem(
                db_coupon.coupon_id,
                request.user_id,
                request.discount_amount,
                now,
            )
            if not redeemed:
                await self._abort("优惠券已无法兑换", {"code": coupon_code})

            await self.coupon_repo.add_usage(
                db_coupon.coupon_id,
                request.user_id,
                request.order_id,
                request.discount_amount,
                request.order_total,
                used_at=now,
            )
            refreshed = await self.coupon_repo.get_by_id(db_coupon.coupon_id, fresh=True)
            coupon_status = refreshed.status

        await promotion_cache.delete_pattern("*")
        if db_coupon is not None:
            await coupon_cache.delete_pattern("*")

        logger.info(f"订单 {request.order_id} 使用记录已写入: 促销 {request.promotion_id}, 优惠券 {coupon_code}")
        return UsageRecordResult(
            promotion_id=request.promotion_id,
            order_id=request.order_id,
            coupon_code=coupon_code,
            coupon_status=coupon_status,
        )
