"""
促销业务服务层
管理端的创建/更新/删除/状态流转，以及查询、搜索和统计
"""

import logging
import uuid
from typing import List, Optional, Dict, Any
from decimal import Decimal
from datetime import datetime

from pydantic import ValidationError

from app.core.exceptions import (
    ValidationException,
    NotFoundException,
    ConflictException,
)
from app.models.promotion import (
    Promotion,
    PromotionCreate,
    PromotionUpdate,
    PromotionStatus,
    PromotionType,
    PromotionFilters,
    PromotionStats,
    TopPromotion,
    PromotionTypeStats,
    SweepResult,
    TERMINAL_PROMOTION_STATUSES,
)
from app.models.discount import CartItem, DiscountCalculation, round_money
from app.repositories.promotion_repository import PromotionRepository
from app.repositories.coupon_repository import CouponRepository
from app.services.common_cache import promotion_cache
from app.services.discount_evaluator import evaluate_promotion
from app.services.lifecycle_service import LifecycleService, validate_promotion_transition
from app.core.config import settings

logger = logging.getLogger(__name__)

MIN_SEARCH_TERM_LENGTH = 2


def _validation_message(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in item['loc'])}: {item['msg']}" if item["loc"] else item["msg"]
        for item in error.errors()
    )


def check_rule_requirements(promotion: Promotion) -> None:
    """规则结构之外、依赖条件字段的校验"""
    rules = promotion.rules
    conditions = promotion.conditions

    if promotion.type == PromotionType.CATEGORY_DISCOUNT and not conditions.categories:
        raise ValidationException("品类折扣必须配置至少一个品类")
    if promotion.type == PromotionType.MINIMUM_PURCHASE and conditions.minimum_purchase_amount is None:
        raise ValidationException("满额折扣必须配置最低消费金额")
    if (
        rules.max_discount_amount is not None
        and rules.min_discount_amount is not None
        and rules.min_discount_amount > rules.max_discount_amount
    ):
        raise ValidationException("最低折扣金额不能大于折扣上限")


class PromotionService:
    """促销业务服务"""

    def __init__(self, promotion_repo: PromotionRepository, coupon_repo: Optional[CouponRepository] = None):
        self.promotion_repo = promotion_repo
        self.coupon_repo = coupon_repo or CouponRepository(promotion_repo.db)
        self.cache = promotion_cache
        self.cache_prefix = "promotions"
        self.cache_ttl = settings.promotion_cache_ttl

    async def _invalidate_cache(self) -> None:
        await self.cache.delete_pattern("*")

    async def _get_model(self, promotion_id: str) -> Promotion:
        db_promotion = await self.promotion_repo.get_by_id(promotion_id, fresh=True)
        if db_promotion is None:
            raise NotFoundException("促销不存在", details={"promotion_id": promotion_id})
        return self.promotion_repo.to_model(db_promotion)

    async def create_promotion(
        self,
        promotion_data: PromotionCreate,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Promotion:
        """创建促销，初始状态为草稿"""
        now = now or datetime.now()
        if promotion_data.start_date >= promotion_data.end_date:
            raise ValidationException("开始时间必须早于结束时间")
        if promotion_data.end_date <= now:
            raise ValidationException("结束时间必须晚于当前时间")

        try:
            promotion = Promotion(
                promotion_id=str(uuid.uuid4()),
                status=PromotionStatus.DRAFT,
                created_by=created_by,
                last_modified_by=created_by,
                created_at=now,
                updated_at=now,
                **promotion_data.model_dump(),
            )
        except ValidationError as e:
            raise ValidationException(f"促销配置不合法: {_validation_message(e)}")
        check_rule_requirements(promotion)

        await self.promotion_repo.create(promotion)
        await self._invalidate_cache()
        logger.info(f"促销已创建: {promotion.promotion_id} {promotion.name} ({promotion.type.value})")
        return promotion

    async def get_promotion(self, promotion_id: str, count_view: bool = False) -> Promotion:
        """获取促销详情，count_view=True 时累计浏览次数"""
        if count_view:
            await self.promotion_repo.increment_view_count(promotion_id)
        return await self._get_model(promotion_id)

    async def list_promotions(self, filters: PromotionFilters, use_cache: bool = True) -> List[Promotion]:
        cache_key = f"{self.cache_prefix}:list:{filters.model_dump_json()}"
        if use_cache:
            cached = await self.cache.get(cache_key)
            if cached:
                return [Promotion(**item) for item in cached]

        promotions = [self.promotion_repo.to_model(p) for p in await self.promotion_repo.list_promotions(filters)]

        if use_cache:
            await self.cache.set(
                cache_key,
                [p.model_dump(mode="json") for p in promotions],
                ttl=self.cache_ttl,
            )
        return promotions

    async def get_active_promotions(self, now: Optional[datetime] = None) -> List[Promotion]:
        now = now or datetime.now()
        return [self.promotion_repo.to_model(p) for p in await self.promotion_repo.get_active(now)]

    async def update_promotion(
        self,
        promotion_id: str,
        update_data: PromotionUpdate,
        modified_by: Optional[str] = None,
    ) -> Promotion:
        """更新促销，已过期/已取消的促销不可修改"""
        existing = await self._get_model(promotion_id)
        if existing.status in TERMINAL_PROMOTION_STATUSES:
            raise ValidationException(f"{existing.status.value} 状态的促销不能修改")

        changes = update_data.model_dump(exclude_unset=True)
        merged = existing.model_dump()

        new_type = changes.get("type", existing.type)
        if "rules" in changes:
            base_rules = merged["rules"] if new_type == existing.type else {}
            rules = {**base_rules, **(changes.pop("rules") or {})}
            rules["type"] = PromotionType(new_type).value
            merged["rules"] = rules
        merged.update(changes)
        merged["last_modified_by"] = modified_by
        merged["updated_at"] = datetime.now()

        try:
            promotion = Promotion(**merged)
        except ValidationError as e:
            raise ValidationException(f"促销配置不合法: {_validation_message(e)}")
        check_rule_requirements(promotion)

        values = promotion.model_dump(
            mode="json",
            include={
                "name", "description", "type", "target", "conditions", "rules", "is_active",
                "is_automatic", "priority", "auto_apply_to_cart", "internal_notes", "last_modified_by",
            },
        )
        values["start_date"] = promotion.start_date
        values["end_date"] = promotion.end_date

        db_promotion = await self.promotion_repo.update_fields(promotion_id, values)
        await self._invalidate_cache()
        logger.info(f"促销已更新: {promotion_id}")
        return self.promotion_repo.to_model(db_promotion)

    async def delete_promotion(self, promotion_id: str) -> None:
        """删除促销及其优惠券，已被使用过的促销不可删除"""
        existing = await self._get_model(promotion_id)
        if existing.total_uses > 0:
            raise ConflictException(
                "促销已被使用，不能删除",
                details={"promotion_id": promotion_id, "total_uses": existing.total_uses},
            )
        await self.promotion_repo.delete_with_coupons(promotion_id)
        await self._invalidate_cache()
        logger.info(f"促销已删除: {promotion_id}")

    async def change_status(
        self,
        promotion_id: str,
        new_status: PromotionStatus,
        modified_by: Optional[str] = None,
    ) -> Promotion:
        """管理员状态流转"""
        existing = await self._get_model(promotion_id)
        validate_promotion_transition(existing.status, new_status)

        db_promotion = await self.promotion_repo.update_fields(
            promotion_id,
            {"status": PromotionStatus(new_status).value, "last_modified_by": modified_by},
        )
        await self._invalidate_cache()
        logger.info(f"促销状态变更: {promotion_id} {existing.status.value} -> {PromotionStatus(new_status).value}")
        return self.promotion_repo.to_model(db_promotion)

    async def search_promotions(self, term: str, limit: int = 20) -> List[Promotion]:
        term = (term or "").strip()
        if len(term) < MIN_SEARCH_TERM_LENGTH:
            raise ValidationException(f"搜索关键词至少需要 {MIN_SEARCH_TERM_LENGTH} 个字符")
        return [self.promotion_repo.to_model(p) for p in await self.promotion_repo.search(term, limit)]

    async def get_promotions_by_category(self, category: str, now: Optional[datetime] = None) -> List[Promotion]:
        return [p for p in await self.get_active_promotions(now) if category in p.conditions.categories]

    async def get_promotions_by_product(self, product_id: str, now: Optional[datetime] = None) -> List[Promotion]:
        return [p for p in await self.get_active_promotions(now) if product_id in p.conditions.specific_products]

    async def get_expiring_soon(self, days: int = 7, now: Optional[datetime] = None) -> List[Promotion]:
        if days < 1:
            raise ValidationException("天数必须大于0")
        now = now or datetime.now()
        return [self.promotion_repo.to_model(p) for p in await self.promotion_repo.get_expiring_soon(now, days)]

    async def get_unused_promotions(self) -> List[Promotion]:
        return [self.promotion_repo.to_model(p) for p in await self.promotion_repo.get_unused()]

    async def get_promotion_stats(self, use_cache: bool = True) -> PromotionStats:
        """促销统计，转化率 = conversion_count / (view_count + 1) * 100"""
        cache_key = f"{self.cache_prefix}:stats"
        if use_cache:
            cached = await self.cache.get(cache_key)
            if cached:
                return PromotionStats(**cached)

        overview = await self.promotion_repo.get_overview_stats()

        ranked = []
        for db_promotion in await self.promotion_repo.get_all_for_ranking():
            rate = Decimal(db_promotion.conversion_count or 0) / Decimal((db_promotion.view_count or 0) + 1) * 100
            ranked.append((rate, db_promotion))
        ranked.sort(key=lambda pair: pair[0], reverse=True)

        stats = PromotionStats(
            total_promotions=overview["total_promotions"],
            active_promotions=overview["active_promotions"],
            total_discount_given=overview["total_discount_given"],
            total_uses=overview["total_uses"],
            top_promotions=[
                TopPromotion(
                    promotion_id=p.promotion_id,
                    name=p.name,
                    usage_count=p.total_uses,
                    discount_given=p.total_discount_given,
                    conversion_rate=round_money(rate),
                )
                for rate, p in ranked[:10]
            ],
            promotions_by_type=[PromotionTypeStats(**row) for row in overview["promotions_by_type"]],
        )

        if use_cache:
            await self.cache.set(cache_key, stats.model_dump(mode="json"), ttl=self.cache_ttl)
        return stats

    async def get_usage_report(
        self,
        promotion_id: str,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """使用报表"""
        promotion = await self._get_model(promotion_id)
        usages = await self.promotion_repo.get_usage_between(promotion_id, date_from, date_to)
        total_discount = sum((Decimal(u.discount_amount) for u in usages), Decimal("0"))
        return {
            "promotion_id": promotion.promotion_id,
            "name": promotion.name,
            "date_from": date_from,
            "date_to": date_to,
            "uses": len(usages),
            "unique_users": len({u.user_id for u in usages}),
            "total_discount": round_money(total_discount),
            "records": [
                {
                    "user_id": u.user_id,
                    "order_id": u.order_id,
                    "discount_amount": u.discount_amount,
                    "coupon_code": u.coupon_code,
                    "used_at": u.used_at,
                }
                for u in usages
            ],
        }

    async def test_discount(
        self,
        promotion_id: str,
        cart_items: List[CartItem],
        cart_total: Decimal,
    ) -> DiscountCalculation:
        """不检查状态和有效期，直接用促销规则试算（用于上线前验证）"""
        promotion = await self._get_model(promotion_id)
        return evaluate_promotion(promotion, cart_items, cart_total)

    async def run_status_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """手动触发一次状态巡检"""
        service = LifecycleService(self.promotion_repo, self.coupon_repo)
        result = await service.run_sweep(now or datetime.now())
        if result.total_changes:
            await self._invalidate_cache()
        return result
