"""
促销数据库操作层
"""

import uuid
from typing import List, Optional, Dict, Any
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update, delete, and_, or_, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.promotion import (
    Promotion,
    PromotionUsage,
    PromotionStatus,
    PromotionFilters,
)
from app.models.database.promotion_db import PromotionDB, PromotionUsageDB
from app.models.database.coupon_db import CouponDB


class PromotionRepository:
    """促销数据库操作类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, promotion: Promotion) -> PromotionDB:
        """保存新促销"""
        db_promotion = PromotionDB(**self._to_columns(promotion), usage_history=[])
        self.db.add(db_promotion)
        await self.db.flush()
        return db_promotion

    async def get_by_id(self, promotion_id: str, fresh: bool = False) -> Optional[PromotionDB]:
        """根据ID获取促销，fresh=True 时忽略会话内已加载的旧状态"""
        query = select(PromotionDB).where(PromotionDB.promotion_id == promotion_id)
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_promotions(self, filters: PromotionFilters) -> List[PromotionDB]:
        """按条件分页查询促销"""
        query = select(PromotionDB)
        if filters.status is not None:
            query = query.where(PromotionDB.status == filters.status.value)
        if filters.type is not None:
            query = query.where(PromotionDB.type == filters.type.value)
        if filters.is_active is not None:
            query = query.where(PromotionDB.is_active == filters.is_active)

        query = query.order_by(desc(PromotionDB.priority), desc(PromotionDB.created_at))
        query = query.limit(filters.limit).offset(filters.offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_active_automatic(self, now: datetime) -> List[PromotionDB]:
        """获取当前可自动应用的促销，按优先级降序"""
        query = select(PromotionDB).where(
            and_(
                PromotionDB.status == PromotionStatus.ACTIVE.value,
                PromotionDB.is_active.is_(True),
                PromotionDB.is_automatic.is_(True),
                PromotionDB.start_date <= now,
                PromotionDB.end_date >= now,
            )
        ).order_by(desc(PromotionDB.priority)).execution_options(populate_existing=True)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_active(self, now: datetime) -> List[PromotionDB]:
        """获取当前生效中的促销（含需要券码的）"""
        query = select(PromotionDB).where(
            and_(
                PromotionDB.status == PromotionStatus.ACTIVE.value,
                PromotionDB.is_active.is_(True),
                PromotionDB.start_date <= now,
                PromotionDB.end_date >= now,
            )
        ).order_by(desc(PromotionDB.priority))

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def search(self, term: str, limit: int = 20) -> List[PromotionDB]:
        """按名称或描述模糊搜索"""
        pattern = f"%{term}%"
        query = select(PromotionDB).where(
            or_(
                PromotionDB.name.ilike(pattern),
                PromotionDB.description.ilike(pattern),
            )
        ).order_by(desc(PromotionDB.priority)).limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_expiring_soon(self, now: datetime, days: int = 7) -> List[PromotionDB]:
        """获取即将结束的生效中促销"""
        query = select(PromotionDB).where(
            and_(
                PromotionDB.status == PromotionStatus.ACTIVE.value,
                PromotionDB.end_date >= now,
                PromotionDB.end_date <= now + timedelta(days=days),
            )
        ).order_by(PromotionDB.end_date)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_unused(self) -> List[PromotionDB]:
        """获取未过期且从未被使用的促销"""
        query = select(PromotionDB).where(
            and_(
                PromotionDB.status != PromotionStatus.EXPIRED.value,
                PromotionDB.total_uses == 0,
            )
        ).order_by(PromotionDB.created_at)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def update_fields(self, promotion_id: str, values: Dict[str, Any]) -> Optional[PromotionDB]:
        """更新促销字段"""
        values = dict(values)
        values["updated_at"] = datetime.now()
        await self.db.execute(
            update(PromotionDB)
            .where(PromotionDB.promotion_id == promotion_id)
            .values(**values)
        )
        await self.db.flush()
        return await self.get_by_id(promotion_id, fresh=True)

    async def delete_with_coupons(self, promotion_id: str) -> None:
        """删除促销及其下所有优惠券"""
        await self.db.execute(delete(CouponDB).where(CouponDB.promotion_id == promotion_id))
        await self.db.execute(delete(PromotionDB).where(PromotionDB.promotion_id == promotion_id))
        await self.db.flush()

    async def increment_view_count(self, promotion_id: str) -> None:
        await self.db.execute(
            update(PromotionDB)
            .where(PromotionDB.promotion_id == promotion_id)
            .values(view_count=PromotionDB.view_count + 1)
        )

    async def count_user_usage(self, promotion_id: str, user_id: str) -> int:
        """获取用户对该促销的使用次数"""
        result = await self.db.execute(
            select(func.count(PromotionUsageDB.usage_id)).where(
                and_(
                    PromotionUsageDB.promotion_id == promotion_id,
                    PromotionUsageDB.user_id == user_id,
                )
            )
        )
        return result.scalar() or 0

    async def lock_for_update(self, promotion_id: str) -> bool:
        """
        锁定促销行直至事务结束

        后续条件更新中的单用户计数子查询因此读取到并发事务已提交的使用记录
        """
        result = await self.db.execute(
            select(PromotionDB.promotion_id)
            .where(PromotionDB.promotion_id == promotion_id)
            .with_for_update()
        )
        return result.scalar_one_or_none() is not None

    async def try_increment_usage(
        self,
        promotion_id: str,
        user_id: str,
        discount_amount: Decimal,
        max_total_uses: Optional[int] = None,
        max_uses_per_user: Optional[int] = None,
    ) -> bool:
        """
        条件更新计数：仅当上限仍满足时才累加

        Returns:
            bool: False 表示上限已被占满，未做任何修改
        """
        criteria = [PromotionDB.promotion_id == promotion_id]
        if max_total_uses is not None:
            criteria.append(PromotionDB.total_uses < max_total_uses)
        if max_uses_per_user is not None:
            user_count = (
                select(func.count(PromotionUsageDB.usage_id))
                .where(
                    and_(
                        PromotionUsageDB.promotion_id == promotion_id,
                        PromotionUsageDB.user_id == user_id,
                    )
                )
                .scalar_subquery()
            )
            criteria.append(user_count < max_uses_per_user)

        result = await self.db.execute(
            update(PromotionDB)
            .where(and_(*criteria))
            .values(
                total_uses=PromotionDB.total_uses + 1,
                total_discount_given=PromotionDB.total_discount_given + discount_amount,
                conversion_count=PromotionDB.conversion_count + 1,
                updated_at=datetime.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def add_usage(
        self,
        promotion_id: str,
        user_id: str,
        order_id: str,
        discount_amount: Decimal,
        order_total: Optional[Decimal] = None,
        coupon_code: Optional[str] = None,
        used_at: Optional[datetime] = None,
    ) -> PromotionUsageDB:
        """追加使用记录"""
        usage = PromotionUsageDB(
            usage_id=str(uuid.uuid4()),
            promotion_id=promotion_id,
            user_id=user_id,
            order_id=order_id,
            discount_amount=discount_amount,
            order_total=order_total,
            coupon_code=coupon_code,
            used_at=used_at or datetime.now(),
        )
        self.db.add(usage)
        await self.db.flush()
        return usage

    async def activate_due(self, now: datetime) -> int:
        """将窗口已开启的草稿促销置为生效"""
        result = await self.db.execute(
            update(PromotionDB)
            .where(
                and_(
                    PromotionDB.status == PromotionStatus.DRAFT.value,
                    PromotionDB.is_active.is_(True),
                    PromotionDB.start_date <= now,
                    PromotionDB.end_date >= now,
                )
            )
            .values(status=PromotionStatus.ACTIVE.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def expire_due(self, now: datetime) -> int:
        """将窗口已关闭的生效/暂停促销置为过期"""
        result = await self.db.execute(
            update(PromotionDB)
            .where(
                and_(
                    PromotionDB.status.in_([PromotionStatus.ACTIVE.value, PromotionStatus.PAUSED.value]),
                    PromotionDB.end_date < now,
                )
            )
            .values(status=PromotionStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def get_overview_stats(self) -> Dict[str, Any]:
        """汇总统计"""
        totals = await self.db.execute(
            select(
                func.count(PromotionDB.promotion_id).label("total_promotions"),
                func.coalesce(func.sum(PromotionDB.total_discount_given), 0).label("total_discount"),
                func.coalesce(func.sum(PromotionDB.total_uses), 0).label("total_uses"),
            )
        )
        row = totals.one()

        active = await self.db.execute(
            select(func.count(PromotionDB.promotion_id)).where(
                and_(
                    PromotionDB.status == PromotionStatus.ACTIVE.value,
                    PromotionDB.is_active.is_(True),
                )
            )
        )

        by_type = await self.db.execute(
            select(
                PromotionDB.type,
                func.count(PromotionDB.promotion_id).label("count"),
                func.coalesce(func.sum(PromotionDB.total_discount_given), 0).label("total_discount"),
            ).group_by(PromotionDB.type).order_by(desc("count"))
        )

        return {
            "total_promotions": row.total_promotions or 0,
            "active_promotions": active.scalar() or 0,
            "total_discount_given": Decimal(str(row.total_discount or 0)),
            "total_uses": int(row.total_uses or 0),
            "promotions_by_type": [
                {
                    "type": type_row.type,
                    "count": type_row.count,
                    "total_discount": Decimal(str(type_row.total_discount or 0)),
                }
                for type_row in by_type.fetchall()
            ],
        }

    async def get_all_for_ranking(self) -> List[PromotionDB]:
        """获取参与转化率排名的促销"""
        result = await self.db.execute(
            select(PromotionDB).where(PromotionDB.total_uses > 0)
        )
        return list(result.scalars().all())

    async def get_usage_between(
        self,
        promotion_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[PromotionUsageDB]:
        """获取时间范围内的使用记录"""
        query = select(PromotionUsageDB).where(PromotionUsageDB.promotion_id == promotion_id)
        if start is not None:
            query = query.where(PromotionUsageDB.used_at >= start)
        if end is not None:
            query = query.where(PromotionUsageDB.used_at <= end)
        result = await self.db.execute(query.order_by(PromotionUsageDB.used_at))
        return list(result.scalars().all())

    def _to_columns(self, promotion: Promotion) -> Dict[str, Any]:
        data = promotion.model_dump(mode="json", exclude={"usage_history"})
        for key in ("start_date", "end_date", "created_at", "updated_at"):
            data[key] = getattr(promotion, key)
        data["total_discount_given"] = promotion.total_discount_given
        return data

    def to_model(self, db_promotion: PromotionDB) -> Promotion:
        """转换为Pydantic模型，规则不合法时抛出 pydantic.ValidationError"""
        return Promotion(
            promotion_id=db_promotion.promotion_id,
            name=db_promotion.name,
            description=db_promotion.description,
            type=db_promotion.type,
            status=db_promotion.status,
            target=db_promotion.target,
            start_date=db_promotion.start_date,
            end_date=db_promotion.end_date,
            conditions=db_promotion.conditions or {},
            rules=db_promotion.rules or {},
            usage_history=[
                PromotionUsage(
                    user_id=usage.user_id,
                    used_at=usage.used_at,
                    order_id=usage.order_id,
                    discount_amount=usage.discount_amount,
                    order_total=usage.order_total,
                    coupon_code=usage.coupon_code,
                )
                for usage in db_promotion.usage_history
            ],
            total_uses=db_promotion.total_uses or 0,
            total_discount_given=db_promotion.total_discount_given or Decimal("0"),
            conversion_count=db_promotion.conversion_count or 0,
            view_count=db_promotion.view_count or 0,
            is_active=db_promotion.is_active,
            is_automatic=db_promotion.is_automatic,
            priority=db_promotion.priority,
            auto_apply_to_cart=db_promotion.auto_apply_to_cart,
            internal_notes=db_promotion.internal_notes,
            created_by=db_promotion.created_by,
            last_modified_by=db_promotion.last_modified_by,
            created_at=db_promotion.created_at,
            updated_at=db_promotion.updated_at,
        )
