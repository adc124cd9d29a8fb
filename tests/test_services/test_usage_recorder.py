"""
使用记录写入测试
上限被占满时会回滚整个会话，因此准备数据后先提交
"""

import pytest
import pytest_asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from app.core.exceptions import NotFoundException, ValidationException, UsageLimitExceededException
from app.models.coupon import CouponStatus, CouponType, CouponRejectReason
from app.models.discount import OrderCompletedRequest
from app.models.promotion import PromotionType
from app.repositories.coupon_repository import CouponRepository
from app.repositories.promotion_repository import PromotionRepository
from app.services.coupon_validator import CouponValidator
from app.services.usage_recorder import UsageRecorder


@pytest.mark.asyncio
class TestUsageRecorder:
    """订单完成后的使用记录"""

    @pytest_asyncio.fixture
    async def recorder(self, promotion_repo, coupon_repo):
        return UsageRecorder(promotion_repo, coupon_repo)

    @pytest_asyncio.fixture
    async def promotion(self, db_session, promotion_repo, promotion_factory):
        promotion = promotion_factory(
            type=PromotionType.FIXED_AMOUNT,
            rules={"discount_amount": "10"},
            is_automatic=False,
        )
        await promotion_repo.create(promotion)
        await db_session.commit()
        return promotion

    def _request(self, promotion_id, order_id="order_1", user_id="user_1", coupon_code=None):
        return OrderCompletedRequest(
            order_id=order_id,
            user_id=user_id,
            promotion_id=promotion_id,
            discount_amount=Decimal("10"),
            order_total=Decimal("100"),
            coupon_code=coupon_code,
        )

    async def test_records_promotion_usage(self, recorder, promotion_repo, promotion, now):
        result = await recorder.record_order_usage(self._request(promotion.promotion_id), now=now)

        db_promotion = await promotion_repo.get_by_id(promotion.promotion_id, fresh=True)
        assert result.recorded is True
        assert result.coupon_code is None
        assert db_promotion.total_uses == 1
        assert db_promotion.conversion_count == 1
        assert [u.order_id for u in db_promotion.usage_history] == ["order_1"]

    async def test_unknown_promotion(self, recorder):
        with pytest.raises(NotFoundException):
            await recorder.record_order_usage(self._request("missing"))

    async def test_unknown_coupon(self, recorder, promotion):
        with pytest.raises(NotFoundException):
            await recorder.record_order_usage(self._request(promotion.promotion_id, coupon_code="NOPE"))

    async def test_coupon_from_other_promotion(
        self, db_session, recorder, promotion_repo, coupon_repo, promotion_factory, coupon_factory, promotion
    ):
        other = promotion_factory()
        await promotion_repo.create(other)
        await coupon_repo.create(coupon_factory(other.promotion_id, code="OTHER"))
        await db_session.commit()

        with pytest.raises(ValidationException):
            await recorder.record_order_usage(self._request(promotion.promotion_id, coupon_code="OTHER"))

    async def test_single_use_coupon_lifecycle(
        self, db_session, recorder, promotion_repo, coupon_repo, coupon_factory, promotion, cart_items, cart_total, now
    ):
        """一次性券：兑换后变为已使用，再次试校验返回次数已满，再次写入被拒绝且不留下记录"""
        await coupon_repo.create(
            coupon_factory(promotion.promotion_id, code="ONCE", type=CouponType.SINGLE_USE, max_uses=1)
        )
        await db_session.commit()

        result = await recorder.record_order_usage(
            self._request(promotion.promotion_id, coupon_code="once"), now=now
        )
        await db_session.commit()

        assert result.coupon_code == "ONCE"
        assert result.coupon_status == CouponStatus.USED.value

        verdict = await CouponValidator(coupon_repo, promotion_repo).validate(
            "ONCE", "user_2", cart_items, cart_total, now=now
        )
        assert verdict.valid is False
        assert verdict.reason == CouponRejectReason.USAGE_LIMIT_REACHED

        with pytest.raises(UsageLimitExceededException):
            await recorder.record_order_usage(
                self._request(promotion.promotion_id, order_id="order_2", user_id="user_2", coupon_code="ONCE"),
                now=now,
            )

        db_promotion = await promotion_repo.get_by_id(promotion.promotion_id, fresh=True)
        db_coupon = await coupon_repo.get_by_code("ONCE", fresh=True)
        assert db_promotion.total_uses == 1
        assert len(db_promotion.usage_history) == 1
        assert db_coupon.total_uses == 1
        assert len(db_coupon.usage_history) == 1

    async def test_promotion_total_cap(self, db_session, recorder, promotion_repo, promotion_factory, now):
        capped = promotion_factory(conditions={"max_total_uses": 1})
        await promotion_repo.create(capped)
        await db_session.commit()

        await recorder.record_order_usage(self._request(capped.promotion_id), now=now)
        await db_session.commit()

        with pytest.raises(UsageLimitExceededException):
            await recorder.record_order_usage(
                self._request(capped.promotion_id, order_id="order_2", user_id="user_2"), now=now
            )

        db_promotion = await promotion_repo.get_by_id(capped.promotion_id, fresh=True)
        assert db_promotion.total_uses == 1

    async def test_promotion_per_user_cap(self, db_session, recorder, promotion_repo, promotion_factory, now):
        capped = promotion_factory(conditions={"max_uses_per_user": 1})
        await promotion_repo.create(capped)
        await db_session.commit()

        await recorder.record_order_usage(self._request(capped.promotion_id), now=now)
        await db_session.commit()

        with pytest.raises(UsageLimitExceededException):
            await recorder.record_order_usage(self._request(capped.promotion_id, order_id="order_2"), now=now)

        # 其他用户不受影响
        result = await recorder.record_order_usage(
            self._request(capped.promotion_id, order_id="order_3", user_id="user_2"), now=now
        )
        assert result.recorded is True


@pytest.mark.asyncio
async def test_rows_locked_before_conditional_writes():
    """先锁促销行、再锁优惠券行，之后才执行带上限条件的更新"""
    calls = []
    promotion_repo = AsyncMock(spec=PromotionRepository)
    coupon_repo = AsyncMock(spec=CouponRepository)

    db_promotion = MagicMock()
    db_promotion.conditions = {"max_uses_per_user": 1}
    db_coupon = MagicMock()
    db_coupon.coupon_id = "coupon_1"
    db_coupon.promotion_id = "promo_1"

    promotion_repo.lock_for_update.side_effect = lambda *args: calls.append("lock_promotion") or True
    promotion_repo.get_by_id.return_value = db_promotion
    promotion_repo.try_increment_usage.side_effect = lambda *args, **kwargs: calls.append("increment") or True
    coupon_repo.get_by_code.return_value = db_coupon
    coupon_repo.lock_for_update.side_effect = lambda *args: calls.append("lock_coupon") or True
    coupon_repo.try_redeem.side_effect = lambda *args: calls.append("redeem") or True
    coupon_repo.get_by_id.return_value = MagicMock(status=CouponStatus.USED.value)

    recorder = UsageRecorder(promotion_repo, coupon_repo)
    await recorder.record_order_usage(
        OrderCompletedRequest(
            order_id="order_1",
            user_id="user_1",
            promotion_id="promo_1",
            discount_amount=Decimal("10"),
            coupon_code="save10",
        )
    )

    assert calls == ["lock_promotion", "lock_coupon", "increment", "redeem"]
    promotion_repo.try_increment_usage.assert_awaited_once_with(
        "promo_1", "user_1", Decimal("10"), max_total_uses=None, max_uses_per_user=1
    )


@pytest.mark.asyncio
async def test_missing_promotion_detected_by_lock():
    promotion_repo = AsyncMock(spec=PromotionRepository)
    promotion_repo.lock_for_update.return_value = False
    recorder = UsageRecorder(promotion_repo, AsyncMock(spec=CouponRepository))

    with pytest.raises(NotFoundException):
        await recorder.record_order_usage(
            OrderCompletedRequest(
                order_id="order_1", user_id="user_1", promotion_id="missing", discount_amount=Decimal("10")
            )
        )

    promotion_repo.try_increment_usage.assert_not_awaited()
