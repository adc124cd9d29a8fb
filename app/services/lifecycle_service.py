"""
促销/优惠券生命周期管理
状态机校验 + 按给定时间点执行的状态巡检
"""

import logging
from datetime import datetime
from typing import Dict, FrozenSet

from app.core.exceptions import InvalidStatusTransitionException
from app.models.promotion import PromotionStatus, SweepResult
from app.models.coupon import CouponStatus
from app.repositories.promotion_repository import PromotionRepository
from app.repositories.coupon_repository import CouponRepository

logger = logging.getLogger(__name__)

PROMOTION_TRANSITIONS: Dict[PromotionStatus, FrozenSet[PromotionStatus]] = {
    PromotionStatus.DRAFT: frozenset({PromotionStatus.ACTIVE, PromotionStatus.CANCELLED}),
    PromotionStatus.ACTIVE: frozenset({PromotionStatus.PAUSED, PromotionStatus.CANCELLED, PromotionStatus.EXPIRED}),
    PromotionStatus.PAUSED: frozenset({PromotionStatus.ACTIVE, PromotionStatus.CANCELLED}),
    PromotionStatus.EXPIRED: frozenset(),
    PromotionStatus.CANCELLED: frozenset(),
}

# USED 只能由兑换写入，管理员不能手动设置
COUPON_TRANSITIONS: Dict[CouponStatus, FrozenSet[CouponStatus]] = {
    CouponStatus.ACTIVE: frozenset({CouponStatus.EXPIRED, CouponStatus.CANCELLED}),
    CouponStatus.USED: frozenset(),
    CouponStatus.EXPIRED: frozenset(),
    CouponStatus.CANCELLED: frozenset(),
}


def validate_promotion_transition(current: PromotionStatus, new: PromotionStatus) -> None:
    """校验促销状态流转，非法时抛出 InvalidStatusTransitionException"""
    current = PromotionStatus(current)
    new = PromotionStatus(new)
    if new not in PROMOTION_TRANSITIONS[current]:
        raise InvalidStatusTransitionException(current.value, new.value)


def validate_coupon_transition(current: CouponStatus, new: CouponStatus) -> None:
    """校验优惠券状态流转"""
    current = CouponStatus(current)
    new = CouponStatus(new)
    if new not in COUPON_TRANSITIONS[current]:
        raise InvalidStatusTransitionException(current.value, new.value)


class LifecycleService:
    """状态巡检服务"""

    def __init__(self, promotion_repo: PromotionRepository, coupon_repo: CouponRepository):
        self.promotion_repo = promotion_repo
        self.coupon_repo = coupon_repo

    async def run_sweep(self, now: datetime) -> SweepResult:
        """
        按 now 执行一次巡检：
        1. 窗口已开启的草稿促销 -> 生效
        2. 窗口已关闭的生效/暂停促销 -> 过期
        3. 已过失效时间的有效优惠券 -> 过期

        重复执行不会产生额外变化
        """
        activated = await self.promotion_repo.activate_due(now)
        expired = await self.promotion_repo.expire_due(now)
        expired_coupons = await self.coupon_repo.expire_due(now)

        result = SweepResult(
            activated_promotions=activated,
            expired_promotions=expired,
            expired_coupons=expired_coupons,
            ran_at=now,
        )
        if result.total_changes:
            logger.info(
                f"状态巡检完成: 生效促销 {activated} 个, 过期促销 {expired} 个, 过期优惠券 {expired_coupons} 个"
            )
        return result
