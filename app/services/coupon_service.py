"""
优惠券业务服务层
创建、批量生成、状态流转、查询与统计
"""

import logging
import secrets
import string
import uuid
from typing import List, Optional
from decimal import Decimal
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.exceptions import ValidationException, NotFoundException, ConflictException
from app.models.coupon import (
    Coupon,
    CouponCreate,
    CouponStatus,
    CouponType,
    CouponStats,
    CouponValidationResult,
    BulkCouponGenerateRequest,
    BulkCouponGenerateResult,
    normalize_coupon_code,
)
from app.models.discount import CartItem
from app.repositories.coupon_repository import CouponRepository
from app.repositories.promotion_repository import PromotionRepository
from app.services.common_cache import coupon_cache
from app.services.coupon_validator import CouponValidator
from app.services.lifecycle_service import validate_coupon_transition

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_coupon_code(prefix: str) -> str:
    """前缀 + 6位随机字母数字 + 3位数字"""
    random_part = "".join(secrets.choice(CODE_ALPHABET) for _ in range(6))
    digits = "".join(secrets.choice(string.digits) for _ in range(3))
    return f"{prefix}{random_part}{digits}"


class CouponService:
    """优惠券业务服务"""

    def __init__(self, coupon_repo: CouponRepository, promotion_repo: PromotionRepository):
        self.coupon_repo = coupon_repo
        self.promotion_repo = promotion_repo
        self.validator = CouponValidator(coupon_repo, promotion_repo)
        self.cache = coupon_cache
        self.cache_prefix = "coupons"
        self.cache_ttl = settings.promotion_cache_ttl

    async def _get_by_code(self, code: str) -> Coupon:
        db_coupon = await self.coupon_repo.get_by_code(normalize_coupon_code(code), fresh=True)
        if db_coupon is None:
            raise NotFoundException("优惠券不存在", details={"code": normalize_coupon_code(code)})
        return self.coupon_repo.to_model(db_coupon)

    async def create_coupon(self, coupon_data: CouponCreate, created_by: Optional[str] = None) -> Coupon:
        """创建优惠券，必须关联已存在的促销，代码全局唯一"""
        db_promotion = await self.promotion_repo.get_by_id(coupon_data.promotion_id)
        if db_promotion is None:
            raise NotFoundException("关联促销不存在", details={"promotion_id": coupon_data.promotion_id})

        if await self.coupon_repo.code_exists(coupon_data.code):
            raise ConflictException("优惠券代码已存在", details={"code": coupon_data.code})

        coupon = Coupon(
            coupon_id=str(uuid.uuid4()),
            status=CouponStatus.ACTIVE,
            created_by=created_by,
            **coupon_data.model_dump(),
        )
        try:
            await self.coupon_repo.create(coupon)
        except IntegrityError:
            # 并发创建同一代码时由唯一约束兜底
            await self.coupon_repo.db.rollback()
            raise ConflictException("优惠券代码已存在", details={"code": coupon.code})
        await self.cache.delete_pattern("*")
        logger.info(f"优惠券已创建: {coupon.code} -> 促销 {coupon.promotion_id}")
        return coupon

    async def generate_bulk_coupons(
        self,
        request: BulkCouponGenerateRequest,
        created_by: Optional[str] = None,
    ) -> BulkCouponGenerateResult:
        """
        批量生成一次性优惠券，有效期沿用促销的有效期

        任一代码在重试上限内都无法避开重复时整批失败，不写入任何数据
        """
        max_quantity = settings.bulk_coupon_max_quantity
        if request.quantity > max_quantity:
            raise ValidationException(f"单次最多生成 {max_quantity} 张优惠券")

        db_promotion = await self.promotion_repo.get_by_id(request.promotion_id)
        if db_promotion is None:
            raise NotFoundException("关联促销不存在", details={"promotion_id": request.promotion_id})

        prefix = request.prefix or settings.bulk_coupon_default_prefix
        codes: List[str] = []
        seen = set()
        for _ in range(request.quantity):
            code = await self._unique_code(prefix, seen)
            seen.add(code)
            codes.append(code)

        now = datetime.now()
        coupons = [
            Coupon(
                coupon_id=str(uuid.uuid4()),
                code=code,
                name=f"{db_promotion.name} - {code}",
                type=CouponType.SINGLE_USE,
                status=CouponStatus.ACTIVE,
                promotion_id=request.promotion_id,
                max_uses=1,
                max_uses_per_user=1,
                valid_from=db_promotion.start_date,
                valid_until=db_promotion.end_date,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            for code in codes
        ]
        await self.coupon_repo.create_many(coupons)
        await self.cache.delete_pattern("*")
        logger.info(f"批量生成优惠券 {len(codes)} 张, 促销 {request.promotion_id}")
        return BulkCouponGenerateResult(promotion_id=request.promotion_id, generated=len(codes), codes=codes)

    async def _unique_code(self, prefix: str, seen: set) -> str:
        max_attempts = settings.coupon_code_max_attempts
        for _ in range(max_attempts):
            code = generate_coupon_code(prefix)
            if code not in seen and not await self.coupon_repo.code_exists(code):
                return code
        raise ConflictException(
            f"生成唯一优惠券代码失败（已重试 {max_attempts} 次）",
            details={"prefix": prefix},
        )

    async def get_coupon_by_code(self, code: str, count_view: bool = False) -> Coupon:
        coupon = await self._get_by_code(code)
        if count_view:
            await self.coupon_repo.increment_view_count(coupon.coupon_id)
            coupon.view_count += 1
        return coupon

    async def get_promotion_coupons(self, promotion_id: str) -> List[Coupon]:
        return [self.coupon_repo.to_model(c) for c in await self.coupon_repo.list_by_promotion(promotion_id)]

    async def get_public_coupons(self, use_cache: bool = True, now: Optional[datetime] = None) -> List[Coupon]:
        """获取公开优惠券"""
        cache_key = f"{self.cache_prefix}:public"
        if use_cache:
            cached = await self.cache.get(cache_key)
            if cached:
                return [Coupon(**item) for item in cached]

        coupons = [
            self.coupon_repo.to_model(c)
            for c in await self.coupon_repo.get_public_coupons(now or datetime.now())
        ]
        if use_cache:
            await self.cache.set(cache_key, [c.model_dump(mode="json") for c in coupons], ttl=self.cache_ttl)
        return coupons

    async def get_user_coupons(self, user_id: str, now: Optional[datetime] = None) -> List[Coupon]:
        return [
            self.coupon_repo.to_model(c)
            for c in await self.coupon_repo.get_user_coupons(user_id, now or datetime.now())
        ]

    async def get_expiring_soon(self, days: int = 7, now: Optional[datetime] = None) -> List[Coupon]:
        if days < 1:
            raise ValidationException("天数必须大于0")
        return [
            self.coupon_repo.to_model(c)
            for c in await self.coupon_repo.get_expiring_soon(now or datetime.now(), days)
        ]

    async def change_status(self, code: str, new_status: CouponStatus) -> Coupon:
        """管理员状态流转"""
        coupon = await self._get_by_code(code)
        validate_coupon_transition(coupon.status, new_status)
        db_coupon = await self.coupon_repo.update_status(coupon.coupon_id, CouponStatus(new_status))
        await self.cache.delete_pattern("*")
        logger.info(f"优惠券状态变更: {coupon.code} {coupon.status.value} -> {CouponStatus(new_status).value}")
        return self.coupon_repo.to_model(db_coupon)

    async def validate_coupon(
        self,
        code: str,
        user_id: Optional[str],
        cart_items: List[CartItem],
        cart_total: Decimal,
        now: Optional[datetime] = None,
    ) -> CouponValidationResult:
        """试校验（不修改任何状态）"""
        return await self.validator.validate(code, user_id, cart_items, cart_total, now=now)

    async def record_coupon_attempt(self, code: str, success: bool) -> None:
        """记录结账时的一次兑换尝试（不在试算路径上调用）"""
        coupon = await self._get_by_code(code)
        await self.coupon_repo.record_attempt(coupon.coupon_id, success)

    async def get_coupon_stats(self, code: str) -> CouponStats:
        coupon = await self._get_by_code(code)
        return CouponStats(
            coupon_id=coupon.coupon_id,
            code=coupon.code,
            total_uses=coupon.total_uses,
            total_discount_given=coupon.total_discount_given,
            view_count=coupon.view_count,
            attempt_count=coupon.attempt_count,
            success_count=coupon.success_count,
            failure_count=coupon.failure_count,
            success_rate=coupon.success_rate.quantize(Decimal("0.01")),
            last_used_at=coupon.last_used_at,
        )
