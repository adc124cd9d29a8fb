"""
优惠券数据库操作层
"""

import uuid
from typing import List, Optional, Dict, Any
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update, and_, or_, desc, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.coupon import Coupon, CouponUsage, CouponStatus, CouponType
from app.models.database.coupon_db import CouponDB, CouponUsageDB


class CouponRepository:
    """优惠券数据库操作类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, coupon: Coupon) -> CouponDB:
        """保存新优惠券"""
        db_coupon = CouponDB(**self._to_columns(coupon), usage_history=[])
        self.db.add(db_coupon)
        await self.db.flush()
        return db_coupon

    async def create_many(self, coupons: List[Coupon]) -> None:
        """批量保存优惠券"""
        self.db.add_all([CouponDB(**self._to_columns(coupon), usage_history=[]) for coupon in coupons])
        await self.db.flush()

    async def get_by_code(self, code: str, fresh: bool = False) -> Optional[CouponDB]:
        """根据优惠券代码获取优惠券"""
        query = select(CouponDB).where(CouponDB.code == code)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_by_id(self, coupon_id: str, fresh: bool = False) -> Optional[CouponDB]:
        """根据优惠券ID获取优惠券"""
        query = select(CouponDB).where(CouponDB.coupon_id == coupon_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def code_exists(self, code: str) -> bool:
        result = await self.db.execute(select(func.count(CouponDB.coupon_id)).where(CouponDB.code == code))
        return (result.scalar() or 0) > 0

    async def list_by_promotion(self, promotion_id: str) -> List[CouponDB]:
        """获取促销下的全部优惠券"""
        result = await self.db.execute(
            select(CouponDB)
            .where(CouponDB.promotion_id == promotion_id)
            .order_by(desc(CouponDB.created_at))
        )
        return list(result.scalars().all())

    async def get_public_coupons(self, now: datetime) -> List[CouponDB]:
        """获取当前可领取的公开优惠券"""
        query = select(CouponDB).where(
            and_(
                CouponDB.status == CouponStatus.ACTIVE.value,
                CouponDB.is_active.is_(True),
                CouponDB.is_public.is_(True),
                CouponDB.type.in_([CouponType.MULTI_USE.value, CouponType.PUBLIC.value]),
                CouponDB.valid_from <= now,
                CouponDB.valid_until >= now,
            )
        ).order_by(CouponDB.valid_until)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_user_coupons(self, user_id: str, now: datetime) -> List[CouponDB]:
        """获取指定给用户的可用优惠券"""
        query = select(CouponDB).where(
            and_(
                CouponDB.specific_user_id == user_id,
                CouponDB.status == CouponStatus.ACTIVE.value,
                CouponDB.valid_until >= now,
            )
        ).order_by(CouponDB.valid_until)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_expiring_soon(self, now: datetime, days: int = 7) -> List[CouponDB]:
        """获取即将过期的优惠券"""
        query = select(CouponDB).where(
            and_(
                CouponDB.status == CouponStatus.ACTIVE.value,
                CouponDB.valid_until >= now,
                CouponDB.valid_until <= now + timedelta(days=days),
            )
        ).order_by(CouponDB.valid_until)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_status(self, coupon_id: str, status: CouponStatus) -> Optional[CouponDB]:
        await self.db.execute(
            update(CouponDB)
            .where(CouponDB.coupon_id == coupon_id)
            .values(status=status.value, updated_at=datetime.now())
        )
        await self.db.flush()
        return await self.get_by_id(coupon_id, fresh=True)

    async def increment_view_count(self, coupon_id: str) -> None:
        await self.db.execute(
            update(CouponDB)
            .where(CouponDB.coupon_id == coupon_id)
            .values(view_count=CouponDB.view_count + 1)
        )

    async def record_attempt(self, coupon_id: str, success: bool) -> None:
        """记录一次兑换尝试"""
        values = {"attempt_count": CouponDB.attempt_count + 1}
        if not success:
            values["failure_count"] = CouponDB.failure_count + 1
        await self.db.execute(
            update(CouponDB)
            .where(CouponDB.coupon_id == coupon_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def count_user_usage(self, coupon_id: str, user_id: str) -> int:
        """获取用户对特定优惠券的使用次数"""
        result = await self.db.execute(
            select(func.count(CouponUsageDB.usage_id)).where(
                and_(
                    CouponUsageDB.coupon_id == coupon_id,
                    CouponUsageDB.user_id == user_id,
                )
            )
        )
        return result.scalar() or 0

    async def lock_for_update(self, coupon_id: str) -> bool:
        """锁定优惠券行直至事务结束"""
        result = await self.db.execute(
            select(CouponDB.coupon_id).where(CouponDB.coupon_id == coupon_id).with_for_update()
        )
        return result.scalar_one_or_none() is not None

    async def try_redeem(
        self,
        coupon_id: str,
        user_id: str,
        discount_amount: Decimal,
        now: datetime,
    ) -> bool:
        """
        条件兑换：状态仍有效且总次数/单用户次数未满时才累加计数，
        一次性券在同一条语句中置为已使用

        Returns:
            bool: False 表示已被并发兑换占满
        """
        user_count = (
            select(func.count(CouponUsageDB.usage_id))
            .where(
                and_(
                    CouponUsageDB.coupon_id == coupon_id,
                    CouponUsageDB.user_id == user_id,
                )
            )
            .scalar_subquery()
        )

        result = await self.db.execute(
            update(CouponDB)
            .where(
                and_(
                    CouponDB.coupon_id == coupon_id,
                    CouponDB.status == CouponStatus.ACTIVE.value,
                    CouponDB.is_active.is_(True),
                    or_(CouponDB.max_uses.is_(None), CouponDB.total_uses < CouponDB.max_uses),
                    or_(CouponDB.max_uses_per_user.is_(None), user_count < CouponDB.max_uses_per_user),
                )
            )
            .values(
                total_uses=CouponDB.total_uses + 1,
                total_discount_given=CouponDB.total_discount_given + discount_amount,
                success_count=CouponDB.success_count + 1,
                last_used_at=now,
                last_used_by=user_id,
                status=case(
                    (CouponDB.type == CouponType.SINGLE_USE.value, CouponStatus.USED.value),
                    else_=CouponDB.status,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_usage(
        self,
        coupon_id: str,
        user_id: str,
        order_id: str,
        discount_amount: Decimal,
        order_total: Decimal,
        used_at: Optional[datetime] = None,
    ) -> CouponUsageDB:
        """追加使用记录"""
        usage = CouponUsageDB(
            usage_id=str(uuid.uuid4()),
            coupon_id=coupon_id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
            order_total=order_total,
            used_at=used_at or datetime.now(),
        )
        self.db.add(usage)
        await self.db.flush()
        return usage

    async def expire_due(self, now: datetime) -> int:
        """将已过失效时间的有效优惠券置为过期"""
        result = await self.db.execute(
            update(CouponDB)
            .where(
                and_(
                    CouponDB.status == CouponStatus.ACTIVE.value,
                    CouponDB.valid_until < now,
                )
            )
            .values(status=CouponStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_usage_between(
        self,
        coupon_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[CouponUsageDB]:
        query = select(CouponUsageDB).where(CouponUsageDB.coupon_id == coupon_id)
        if start is not None:
            query = query.where(CouponUsageDB.used_at >= start)
        if end is not None:
            query = query.where(CouponUsageDB.used_at <= end)
        result = await self.db.execute(query.order_by(CouponUsageDB.used_at))
        return list(result.scalars().all())

    def _to_columns(self, coupon: Coupon) -> Dict[str, Any]:
        data = coupon.model_dump(exclude={"usage_history"})
        data["type"] = coupon.type.value
        data["status"] = coupon.status.value
        return data

    def to_model(self, db_coupon: CouponDB) -> Coupon:
        """转换为Pydantic模型"""
        return Coupon(
            coupon_id=db_coupon.coupon_id,
            code=db_coupon.code,
            name=db_coupon.name,
            description=db_coupon.description,
            type=db_coupon.type,
            status=db_coupon.status,
            promotion_id=db_coupon.promotion_id,
            max_uses=db_coupon.max_uses,
            max_uses_per_user=db_coupon.max_uses_per_user,
            specific_user_id=db_coupon.specific_user_id,
            valid_from=db_coupon.valid_from,
            valid_until=db_coupon.valid_until,
            usage_history=[
                CouponUsage(
                    user_id=usage.user_id,
                    used_at=usage.used_at,
                    order_id=usage.order_id,
                    discount_amount=usage.discount_amount,
                    order_total=usage.order_total or Decimal("0"),
                )
                for usage in db_coupon.usage_history
            ],
            total_uses=db_coupon.total_uses or 0,
            total_discount_given=db_coupon.total_discount_given or Decimal("0"),
            is_active=db_coupon.is_active,
            is_public=db_coupon.is_public,
            minimum_purchase_amount=db_coupon.minimum_purchase_amount,
            requires_minimum_items=db_coupon.requires_minimum_items,
            minimum_items=db_coupon.minimum_items,
            view_count=db_coupon.view_count or 0,
            attempt_count=db_coupon.attempt_count or 0,
            success_count=db_coupon.success_count or 0,
            failure_count=db_coupon.failure_count or 0,
            last_used_at=db_coupon.last_used_at,
            last_used_by=db_coupon.last_used_by,
            created_by=db_coupon.created_by,
            created_at=db_coupon.created_at,
            updated_at=db_coupon.updated_at,
        )
