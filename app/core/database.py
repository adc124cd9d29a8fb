from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, AsyncEngine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text, inspect
from typing import AsyncGenerator, Optional, List
import logging

from app.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()

# 促销引擎依赖的表
ENGINE_TABLES = ("promotions", "promotion_usage", "coupons", "coupon_usage")

engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


async def init_database() -> None:
    """初始化数据库连接，按配置自动建表"""
    global engine, async_session_maker

    try:
        engine_kwargs = {
            "echo": settings.debug,
            "pool_pre_ping": True,
        }
        if settings.is_testing:
            engine_kwargs["poolclass"] = NullPool
        else:
            engine_kwargs["pool_recycle"] = 3600

        engine = create_async_engine(settings.database_url_computed, **engine_kwargs)
        async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

        if settings.db_auto_create_tables:
            await create_tables()

        logger.info("数据库连接初始化成功")

    except Exception as e:
        logger.error(f"数据库连接初始化失败: {e}")
        raise


async def create_tables() -> None:
    """创建促销/优惠券相关表（已存在的表不受影响）"""
    # 注册ORM模型
    from app.models import database as _orm_models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"数据表检查完成: {', '.join(ENGINE_TABLES)}")


async def close_database() -> None:
    """关闭数据库连接"""
    global engine

    if engine:
        await engine.dispose()
        logger.info("数据库连接已关闭")


def get_session_maker() -> async_sessionmaker:
    """获取session工厂，供状态巡检等后台任务使用独立会话"""
    if not async_session_maker:
        raise RuntimeError("数据库未初始化，请先调用 init_database()")
    return async_session_maker


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    请求级数据库会话

    请求正常结束时提交，使用记录与计数累加因此落在同一个事务里
    """
    session_maker = get_session_maker()

    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


class DatabaseService:
    """数据库服务类"""

    @property
    def engine(self):
        return engine

    async def missing_tables(self) -> List[str]:
        async with self.engine.connect() as conn:
            existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        return [name for name in ENGINE_TABLES if name not in existing]

    async def health_check(self) -> dict:
        """数据库健康检查：连接可用且促销引擎的表都已创建"""
        try:
            if not self.engine:
                return {"status": "error", "message": "数据库引擎未初始化"}

            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))

            missing = await self.missing_tables()
            if missing:
                return {"status": "error", "message": f"缺少数据表: {', '.join(missing)}"}

            return {"status": "healthy", "message": "数据库连接正常"}

        except Exception as e:
            return {
                "status": "error",
                "message": f"数据库连接失败: {str(e)}"
            }


database_service = DatabaseService()
