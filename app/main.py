from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import uvicorn

from app.core.config import settings
from app.core.redis import redis_manager
from app.core.database import init_database, close_database
from app.core.exceptions import BusinessException
from app.models.promotion import PromotionType, RESERVED_PROMOTION_TYPES
from app.api.health import router as health_router
from app.api.promotions import router as promotions_router
from app.api.coupons import router as coupons_router
from app.api.discounts import router as discounts_router
from app.api.exceptions import (
    validation_exception_handler,
    http_exception_handler,
    database_exception_handler,
    general_exception_handler,
    business_exception_handler,
)
from app.services import status_sweep_scheduler

# 简化日志配置
import logging

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    logger.info("正在启动促销引擎")

    try:
        await init_database()
        logger.info("PostgreSQL数据库初始化成功")
    except Exception as e:
        logger.error(f"应用启动失败: {e}")
        raise

    # 缓存只用于列表和统计，Redis不可用时继续启动
    try:
        await redis_manager.init_redis()
        logger.info("Redis初始化成功")
    except Exception as e:
        logger.warning(f"Redis初始化失败，缓存已禁用: {e}")
        redis_manager.redis_pool = None

    status_sweep_scheduler.start(app)
    logger.info("应用启动完成")

    yield

    logger.info("正在关闭应用")
    await status_sweep_scheduler.stop(app)
    await close_database()
    await redis_manager.close_redis()
    logger.info("应用关闭完成")


# 创建FastAPI应用
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="促销与折扣规则引擎 - 规则计算、优惠券兑换与生命周期管理",
    debug=settings.debug,
    lifespan=lifespan
)

# CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 注册路由
app.include_router(health_router)
app.include_router(promotions_router)
app.include_router(coupons_router)
app.include_router(discounts_router)

# 注册异常处理器
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(BusinessException, business_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/")
async def root():
    """服务信息与当前支持计算的促销类型"""
    return {
        "message": f"欢迎使用 {settings.app_name}",
        "version": settings.app_version,
        "supported_promotion_types": [t.value for t in PromotionType if t not in RESERVED_PROMOTION_TYPES],
        "reserved_promotion_types": sorted(t.value for t in RESERVED_PROMOTION_TYPES),
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8002,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
