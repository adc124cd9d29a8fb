"""
促销数据模型测试
"""

import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone
from pydantic import ValidationError

from app.models.promotion import (
    Promotion,
    PromotionCreate,
    PromotionUpdate,
    PromotionType,
    PercentageRules,
    BuyXGetYRules,
    QuantityDiscountRules,
    MinimumPurchaseRules,
    ReservedRules,
    TierDiscountType,
    to_local_naive,
)


class TestPromotionRules:
    """规则判别联合测试"""

    def test_rules_inherit_promotion_type(self, promotion_factory):
        """rules 未声明 type 时按促销类型解析"""
        promotion = promotion_factory(rules={"discount_percentage": "15"})

        assert isinstance(promotion.rules, PercentageRules)
        assert promotion.rules.discount_percentage == Decimal("15")

    def test_buy_x_get_y_defaults_to_free_item(self, promotion_factory):
        promotion = promotion_factory(
            type=PromotionType.BUY_X_GET_Y,
            rules={"buy_quantity": 2, "get_quantity": 1},
        )

        assert isinstance(promotion.rules, BuyXGetYRules)
        assert promotion.rules.get_discount_percentage == Decimal("100")

    def test_quantity_tiers_parsed(self, promotion_factory):
        promotion = promotion_factory(
            type=PromotionType.QUANTITY_DISCOUNT,
            rules={
                "quantity_tiers": [
                    {"quantity": 3, "discount": "10", "discount_type": "percentage"},
                    {"quantity": 5, "discount": "20", "discount_type": "percentage"},
                ]
            },
        )

        assert isinstance(promotion.rules, QuantityDiscountRules)
        assert [tier.quantity for tier in promotion.rules.quantity_tiers] == [3, 5]
        assert promotion.rules.quantity_tiers[0].discount_type == TierDiscountType.PERCENTAGE

    def test_percentage_over_100_rejected(self, promotion_factory):
        with pytest.raises(ValidationError):
            promotion_factory(rules={"discount_percentage": "120"})

    def test_empty_quantity_tiers_rejected(self, promotion_factory):
        with pytest.raises(ValidationError):
            promotion_factory(type=PromotionType.QUANTITY_DISCOUNT, rules={"quantity_tiers": []})

    def test_percentage_tier_over_100_rejected(self, promotion_factory):
        with pytest.raises(ValidationError):
            promotion_factory(
                type=PromotionType.QUANTITY_DISCOUNT,
                rules={"quantity_tiers": [{"quantity": 2, "discount": "150", "discount_type": "percentage"}]},
            )

    def test_minimum_purchase_requires_exactly_one_payoff(self, promotion_factory):
        with pytest.raises(ValidationError):
            promotion_factory(type=PromotionType.MINIMUM_PURCHASE, rules={})

        with pytest.raises(ValidationError):
            promotion_factory(
                type=PromotionType.MINIMUM_PURCHASE,
                rules={"discount_amount": "10", "discount_percentage": "5"},
            )

        promotion = promotion_factory(
            type=PromotionType.MINIMUM_PURCHASE,
            rules={"discount_amount": "10"},
            conditions={"minimum_purchase_amount": "100"},
        )
        assert isinstance(promotion.rules, MinimumPurchaseRules)

    def test_reserved_type_keeps_extra_fields(self, promotion_factory):
        promotion = promotion_factory(
            type=PromotionType.FLASH_SALE,
            rules={"discount_percentage": "30", "flash_window_minutes": 15},
        )

        assert isinstance(promotion.rules, ReservedRules)
        assert promotion.rules.type == "flash_sale"

    def test_rules_type_must_match_promotion_type(self, promotion_factory):
        with pytest.raises(ValidationError):
            promotion_factory(rules={"type": "fixed_amount", "discount_amount": "10"})

    def test_negative_clamp_rejected(self, promotion_factory):
        with pytest.raises(ValidationError):
            promotion_factory(rules={"discount_percentage": "10", "max_discount_amount": "-1"})


class TestPromotionWindow:
    """有效期测试"""

    def test_start_must_be_before_end(self, promotion_factory, now):
        with pytest.raises(ValidationError):
            promotion_factory(start_date=now, end_date=now)

        with pytest.raises(ValidationError):
            promotion_factory(start_date=now + timedelta(days=2), end_date=now + timedelta(days=1))

    def test_create_model_priority_bounds(self):
        base = {
            "name": "限时折扣",
            "type": "percentage",
            "start_date": datetime(2026, 1, 1),
            "end_date": datetime(2026, 2, 1),
            "rules": {"discount_percentage": "10"},
        }
        assert PromotionCreate(**base).priority == 1

        with pytest.raises(ValidationError):
            PromotionCreate(**base, priority=11)

    def test_model_dump_round_trip_keeps_rule_shape(self, promotion_factory):
        promotion = promotion_factory(
            type=PromotionType.BUY_X_GET_Y,
            rules={"buy_quantity": 2, "get_quantity": 1, "get_discount_percentage": "50"},
        )

        restored = Promotion(**promotion.model_dump(mode="json"))

        assert isinstance(restored.rules, BuyXGetYRules)
        assert restored.rules.get_discount_percentage == Decimal("50")

    def test_aware_dates_become_local_naive(self):
        start = datetime(2026, 1, 1, tzinfo=timezone.utc)
        end = datetime(2099, 1, 1, tzinfo=timezone.utc)

        data = PromotionCreate(
            name="UTC窗口",
            type=PromotionType.PERCENTAGE,
            start_date=start,
            end_date=end,
            rules={"discount_percentage": "10"},
        )

        assert data.start_date.tzinfo is None
        assert data.start_date == start.astimezone().replace(tzinfo=None)
        assert PromotionUpdate(end_date=end).end_date.tzinfo is None
        assert to_local_naive(None) is None
