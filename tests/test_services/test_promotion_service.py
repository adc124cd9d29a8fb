"""
促销业务服务测试
"""

import pytest
import pytest_asyncio
from decimal import Decimal
from datetime import timedelta

from app.core.exceptions import (
    ValidationException,
    NotFoundException,
    ConflictException,
    InvalidStatusTransitionException,
)
from app.models.promotion import (
    PromotionCreate,
    PromotionUpdate,
    PromotionStatus,
    PromotionType,
    PercentageRules,
)
from app.services.promotion_service import PromotionService


@pytest.mark.asyncio
class TestPromotionService:
    """促销管理"""

    @pytest_asyncio.fixture
    async def service(self, promotion_repo, coupon_repo):
        return PromotionService(promotion_repo, coupon_repo)

    def _create_data(self, now, **overrides):
        data = {
            "name": "夏季大促",
            "type": PromotionType.PERCENTAGE,
            "start_date": now + timedelta(days=1),
            "end_date": now + timedelta(days=10),
            "rules": {"discount_percentage": "20"},
            "is_automatic": True,
        }
        data.update(overrides)
        return PromotionCreate(**data)

    async def test_create_starts_as_draft(self, service, now):
        promotion = await service.create_promotion(self._create_data(now), created_by="admin", now=now)

        assert promotion.status == PromotionStatus.DRAFT
        assert promotion.created_by == "admin"
        loaded = await service.get_promotion(promotion.promotion_id)
        assert isinstance(loaded.rules, PercentageRules)

    async def test_create_rejects_past_window(self, service, now):
        data = self._create_data(now, start_date=now - timedelta(days=5), end_date=now - timedelta(days=1))

        with pytest.raises(ValidationException):
            await service.create_promotion(data, now=now)

    async def test_category_discount_requires_categories(self, service, now):
        data = self._create_data(now, type=PromotionType.CATEGORY_DISCOUNT)

        with pytest.raises(ValidationException):
            await service.create_promotion(data, now=now)

    async def test_min_discount_not_above_max(self, service, now):
        data = self._create_data(
            now,
            rules={"discount_percentage": "20", "min_discount_amount": "50", "max_discount_amount": "10"},
        )

        with pytest.raises(ValidationException):
            await service.create_promotion(data, now=now)

    async def test_get_missing(self, service):
        with pytest.raises(NotFoundException):
            await service.get_promotion("missing")

    async def test_get_counts_views(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory()
        await promotion_repo.create(promotion)

        await service.get_promotion(promotion.promotion_id, count_view=True)
        loaded = await service.get_promotion(promotion.promotion_id, count_view=True)

        assert loaded.view_count == 2

    async def test_update_merges_rules(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory(rules={"discount_percentage": "10", "max_discount_amount": "30"})
        await promotion_repo.create(promotion)

        updated = await service.update_promotion(
            promotion.promotion_id,
            PromotionUpdate(name="新名称", rules={"discount_percentage": "25"}),
            modified_by="admin",
        )

        assert updated.name == "新名称"
        assert updated.rules.discount_percentage == Decimal("25")
        assert updated.rules.max_discount_amount == Decimal("30")
        assert updated.last_modified_by == "admin"

    async def test_update_rejects_invalid_rules(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory()
        await promotion_repo.create(promotion)

        with pytest.raises(ValidationException):
            await service.update_promotion(
                promotion.promotion_id, PromotionUpdate(rules={"discount_percentage": "150"})
            )

    async def test_update_rejects_inverted_window(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory()
        await promotion_repo.create(promotion)

        with pytest.raises(ValidationException):
            await service.update_promotion(promotion.promotion_id, PromotionUpdate(end_date=promotion.start_date))
        with pytest.raises(ValidationException):
            await service.update_promotion(
                promotion.promotion_id, PromotionUpdate(start_date=promotion.end_date + timedelta(days=1))
            )

        loaded = await service.get_promotion(promotion.promotion_id)
        assert loaded.end_date == promotion.end_date

    @pytest.mark.parametrize("status", [PromotionStatus.EXPIRED, PromotionStatus.CANCELLED])
    async def test_update_terminal_rejected(self, service, promotion_repo, promotion_factory, status):
        promotion = promotion_factory(status=status)
        await promotion_repo.create(promotion)

        with pytest.raises(ValidationException):
            await service.update_promotion(promotion.promotion_id, PromotionUpdate(name="x"))

    async def test_delete_unused(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory()
        await promotion_repo.create(promotion)

        await service.delete_promotion(promotion.promotion_id)

        assert await promotion_repo.get_by_id(promotion.promotion_id) is None

    async def test_delete_used_rejected(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory(total_uses=1)
        await promotion_repo.create(promotion)

        with pytest.raises(ConflictException):
            await service.delete_promotion(promotion.promotion_id)

    async def test_change_status(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory()
        await promotion_repo.create(promotion)

        paused = await service.change_status(promotion.promotion_id, PromotionStatus.PAUSED)

        assert paused.status == PromotionStatus.PAUSED

    async def test_expired_cannot_reactivate(self, service, promotion_repo, promotion_factory):
        promotion = promotion_factory(status=PromotionStatus.EXPIRED)
        await promotion_repo.create(promotion)

        with pytest.raises(InvalidStatusTransitionException):
            await service.change_status(promotion.promotion_id, PromotionStatus.ACTIVE)

    async def test_search_term_too_short(self, service):
        with pytest.raises(ValidationException):
            await service.search_promotions("a")

    async def test_lookup_by_category_and_product(self, service, promotion_repo, promotion_factory, now):
        clothing = promotion_factory(conditions={"categories": ["clothing"]})
        shoes = promotion_factory(conditions={"specific_products": ["shoes"]})
        await promotion_repo.create(clothing)
        await promotion_repo.create(shoes)

        by_category = await service.get_promotions_by_category("clothing", now=now)
        by_product = await service.get_promotions_by_product("shoes", now=now)

        assert [p.promotion_id for p in by_category] == [clothing.promotion_id]
        assert [p.promotion_id for p in by_product] == [shoes.promotion_id]

    async def test_expiring_soon_requires_positive_days(self, service, now):
        with pytest.raises(ValidationException):
            await service.get_expiring_soon(days=0, now=now)

    async def test_stats_conversion_rate(self, service, promotion_repo, promotion_factory):
        await promotion_repo.create(
            promotion_factory(
                name="热门",
                total_uses=1,
                conversion_count=1,
                view_count=3,
                total_discount_given=Decimal("10"),
            )
        )
        await promotion_repo.create(promotion_factory(name="冷门"))

        stats = await service.get_promotion_stats(use_cache=False)

        assert stats.total_promotions == 2
        assert stats.total_uses == 1
        assert [p.name for p in stats.top_promotions] == ["热门"]
        assert stats.top_promotions[0].conversion_rate == Decimal("25.00")

    async def test_usage_report(self, service, promotion_repo, promotion_factory, now):
        promotion = promotion_factory()
        await promotion_repo.create(promotion)
        await promotion_repo.add_usage(promotion.promotion_id, "user_1", "o1", Decimal("5"), used_at=now)
        await promotion_repo.add_usage(promotion.promotion_id, "user_1", "o2", Decimal("7.5"), used_at=now)

        report = await service.get_usage_report(promotion.promotion_id)

        assert report["uses"] == 2
        assert report["unique_users"] == 1
        assert report["total_discount"] == Decimal("12.50")

    async def test_test_discount_ignores_status(self, service, promotion_repo, promotion_factory, cart_items, cart_total):
        promotion = promotion_factory(status=PromotionStatus.DRAFT)
        await promotion_repo.create(promotion)

        calculation = await service.test_discount(promotion.promotion_id, cart_items, cart_total)

        assert calculation.discount_amount == Decimal("10")

    async def test_run_status_sweep(self, service, promotion_repo, promotion_factory, now):
        await promotion_repo.create(promotion_factory(status=PromotionStatus.DRAFT))

        result = await service.run_status_sweep(now)

        assert result.activated_promotions == 1
