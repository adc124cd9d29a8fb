"""
测试配置文件 - pytest fixtures和共用配置
数据库测试使用内存SQLite (aiosqlite)，Redis缓存在测试中不初始化（缓存自动降级为空操作）
"""

import uuid
import pytest
import pytest_asyncio
from decimal import Decimal
from datetime import datetime, timedelta
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.models import database as _orm_models  # noqa: F401  注册表结构
from app.models.promotion import Promotion, PromotionStatus, PromotionType, PromotionTarget
from app.models.coupon import Coupon, CouponType, CouponStatus
from app.models.discount import CartItem
from app.repositories.promotion_repository import PromotionRepository
from app.repositories.coupon_repository import CouponRepository

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 固定的"当前时间"，保证时间窗口相关测试可重复
NOW = datetime(2026, 6, 1, 12, 0, 0)


@pytest_asyncio.fixture
async def test_db_engine():
    """测试数据库引擎 - 内存SQLite，每个测试独立建表"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_db_engine) -> async_sessionmaker:
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """测试数据库会话"""
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def promotion_factory():
    """构造促销模型，默认为生效中的自动百分比促销"""

    def _make(**overrides) -> Promotion:
        promotion_type = overrides.pop("type", PromotionType.PERCENTAGE)
        data = {
            "promotion_id": overrides.pop("promotion_id", f"promo_{uuid.uuid4().hex[:8]}"),
            "name": "测试促销",
            "type": promotion_type,
            "status": PromotionStatus.ACTIVE,
            "target": PromotionTarget.ALL_PRODUCTS,
            "start_date": NOW - timedelta(days=1),
            "end_date": NOW + timedelta(days=30),
            "rules": {"discount_percentage": "10"},
            "is_automatic": True,
            "priority": 1,
        }
        data.update(overrides)
        return Promotion(**data)

    return _make


@pytest.fixture
def coupon_factory():
    """构造优惠券模型，默认为可多次使用的有效券"""

    def _make(promotion_id: str, **overrides) -> Coupon:
        data = {
            "coupon_id": f"coupon_{uuid.uuid4().hex[:8]}",
            "code": "SAVE10",
            "name": "测试优惠券",
            "type": CouponType.MULTI_USE,
            "status": CouponStatus.ACTIVE,
            "promotion_id": promotion_id,
            "valid_from": NOW - timedelta(days=1),
            "valid_until": NOW + timedelta(days=30),
        }
        data.update(overrides)
        return Coupon(**data)

    return _make


@pytest.fixture
def cart_items():
    """示例购物车：两件上衣 + 一双鞋"""
    return [
        CartItem(
            product_id="shirt",
            cart_item_id="line_1",
            product_name="T恤",
            category="clothing",
            quantity=2,
            unit_price=Decimal("25.00"),
        ),
        CartItem(
            product_id="shoes",
            cart_item_id="line_2",
            product_name="跑鞋",
            category="footwear",
            quantity=1,
            unit_price=Decimal("50.00"),
        ),
    ]


@pytest.fixture
def cart_total():
    return Decimal("100.00")


@pytest_asyncio.fixture
async def promotion_repo(db_session) -> PromotionRepository:
    return PromotionRepository(db_session)


@pytest_asyncio.fixture
async def coupon_repo(db_session) -> CouponRepository:
    return CouponRepository(db_session)
