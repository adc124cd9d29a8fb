"""
优惠券校验测试
check_coupon 为纯函数；CouponValidator 使用内存数据库
"""

import pytest
import pytest_asyncio
from datetime import timedelta
from decimal import Decimal

from app.core.exceptions import CouponRejectedException
from app.models.coupon import CouponStatus, CouponType, CouponRejectReason, CouponUsage
from app.models.promotion import PromotionType
from app.services.coupon_validator import CouponValidator, check_coupon


class TestCheckCoupon:
    """校验顺序与失败原因"""

    def test_not_found(self, cart_items, cart_total, now):
        reason, _ = check_coupon(None, "user_1", cart_items, cart_total, now)
        assert reason == CouponRejectReason.NOT_FOUND

    def test_valid_coupon(self, coupon_factory, cart_items, cart_total, now):
        assert check_coupon(coupon_factory("promo_1"), "user_1", cart_items, cart_total, now) is None

    @pytest.mark.parametrize(
        "overrides, expected",
        [
            ({"status": CouponStatus.CANCELLED}, CouponRejectReason.INACTIVE),
            ({"is_active": False}, CouponRejectReason.INACTIVE),
            ({"status": CouponStatus.EXPIRED}, CouponRejectReason.EXPIRED),
            ({"status": CouponStatus.USED}, CouponRejectReason.USAGE_LIMIT_REACHED),
            ({"minimum_purchase_amount": Decimal("150")}, CouponRejectReason.BELOW_MINIMUM_PURCHASE),
            ({"requires_minimum_items": True, "minimum_items": 5}, CouponRejectReason.BELOW_MINIMUM_ITEMS),
            ({"max_uses": 3, "total_uses": 3}, CouponRejectReason.USAGE_LIMIT_REACHED),
            ({"specific_user_id": "user_2"}, CouponRejectReason.USER_MISMATCH),
        ],
    )
    def test_rejection_reasons(self, coupon_factory, cart_items, cart_total, now, overrides, expected):
        coupon = coupon_factory("promo_1", **overrides)

        reason, message = check_coupon(coupon, "user_1", cart_items, cart_total, now)

        assert reason == expected
        assert message

    def test_window(self, coupon_factory, cart_items, cart_total, now):
        future = coupon_factory("promo_1", valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=2))
        past = coupon_factory("promo_1", valid_from=now - timedelta(days=2), valid_until=now - timedelta(days=1))

        assert check_coupon(future, None, cart_items, cart_total, now)[0] == CouponRejectReason.NOT_YET_VALID
        assert check_coupon(past, None, cart_items, cart_total, now)[0] == CouponRejectReason.EXPIRED

    def test_first_failure_wins(self, coupon_factory, cart_items, cart_total, now):
        """同时不满足多个条件时，返回最先检查的原因"""
        coupon = coupon_factory(
            "promo_1",
            minimum_purchase_amount=Decimal("500"),
            specific_user_id="user_2",
            max_uses=1,
            total_uses=1,
        )

        reason, _ = check_coupon(coupon, "user_1", cart_items, cart_total, now)

        assert reason == CouponRejectReason.BELOW_MINIMUM_PURCHASE

    def test_per_user_cap(self, coupon_factory, cart_items, cart_total, now):
        usage = CouponUsage(user_id="user_1", used_at=now, order_id="o1", discount_amount=Decimal("5"))
        coupon = coupon_factory("promo_1", max_uses_per_user=1, usage_history=[usage], total_uses=1)

        assert check_coupon(coupon, "user_1", cart_items, cart_total, now)[0] == CouponRejectReason.USER_LIMIT_REACHED
        assert check_coupon(coupon, "user_2", cart_items, cart_total, now) is None
        # 匿名请求不做单用户次数检查
        assert check_coupon(coupon, None, cart_items, cart_total, now) is None

    def test_anonymous_cannot_use_pinned_coupon(self, coupon_factory, cart_items, cart_total, now):
        coupon = coupon_factory("promo_1", type=CouponType.USER_SPECIFIC, specific_user_id="user_1")

        assert check_coupon(coupon, None, cart_items, cart_total, now)[0] == CouponRejectReason.USER_MISMATCH


@pytest.mark.asyncio
class TestCouponValidator:
    """试校验与兑换路径一致性"""

    @pytest_asyncio.fixture
    async def validator(self, promotion_repo, coupon_repo):
        return CouponValidator(coupon_repo, promotion_repo)

    @pytest_asyncio.fixture
    async def promotion(self, promotion_repo, promotion_factory):
        promotion = promotion_factory(
            type=PromotionType.FIXED_AMOUNT,
            rules={"discount_amount": "15"},
            is_automatic=False,
        )
        await promotion_repo.create(promotion)
        return promotion

    async def test_valid_coupon_discount(self, validator, coupon_repo, coupon_factory, promotion, cart_items, cart_total, now):
        await coupon_repo.create(coupon_factory(promotion.promotion_id, code="SAVE15"))

        result = await validator.validate("save15", "user_1", cart_items, cart_total, now=now)

        assert result.valid is True
        assert result.estimated_discount == Decimal("15")
        assert result.calculation.coupon_code == "SAVE15"
        assert result.calculation.description.startswith("优惠券 SAVE15")

    async def test_unknown_code(self, validator, cart_items, cart_total, now):
        result = await validator.validate("NOPE", "user_1", cart_items, cart_total, now=now)

        assert result.valid is False
        assert result.reason == CouponRejectReason.NOT_FOUND

    @pytest.mark.parametrize(
        "overrides, user_id",
        [
            ({}, "user_1"),
            ({}, None),
            ({"status": CouponStatus.USED}, "user_1"),
            ({"minimum_purchase_amount": Decimal("500")}, "user_1"),
            ({"specific_user_id": "user_9"}, "user_1"),
            ({"specific_user_id": "user_9"}, None),
            ({"max_uses": 1, "total_uses": 1}, "user_1"),
        ],
    )
    async def test_dry_run_agrees_with_redemption(
        self, validator, coupon_repo, coupon_factory, promotion, cart_items, cart_total, now, overrides, user_id
    ):
        await coupon_repo.create(coupon_factory(promotion.promotion_id, code="AGREE", **overrides))

        verdict = await validator.validate("AGREE", user_id, cart_items, cart_total, now=now)

        if verdict.valid:
            calculation = await validator.apply("AGREE", user_id, cart_items, cart_total, now=now)
            assert calculation.discount_amount == verdict.estimated_discount
        else:
            with pytest.raises(CouponRejectedException) as exc_info:
                await validator.apply("AGREE", user_id, cart_items, cart_total, now=now)
            assert exc_info.value.reason == verdict.reason.value

    async def test_dry_run_does_not_mutate(self, validator, coupon_repo, coupon_factory, promotion, cart_items, cart_total, now):
        await coupon_repo.create(coupon_factory(promotion.promotion_id, code="READONLY"))

        await validator.validate("READONLY", "user_1", cart_items, cart_total, now=now)
        await validator.validate("READONLY", "user_1", cart_items, cart_total, now=now)

        db_coupon = await coupon_repo.get_by_code("READONLY", fresh=True)
        assert db_coupon.total_uses == 0
        assert db_coupon.attempt_count == 0
        assert db_coupon.view_count == 0
