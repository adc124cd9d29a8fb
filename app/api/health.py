from fastapi import APIRouter, HTTPException, Request
import logging

from app.core.config import settings
from app.core.redis import redis_manager
from app.core.database import database_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["健康检查"])


@router.get("")
async def health_check():
    """基础健康检查接口"""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment
    }


@router.get("/database")
async def database_health():
    """数据库与缓存连接检查，Redis 不可用时只降级不报错"""
    health_status = {
        "postgresql": False,
        "redis": False,
        "overall": False,
        "details": {}
    }

    try:
        pg_status = await database_service.health_check()
        health_status["postgresql"] = pg_status["status"] == "healthy"
        health_status["details"]["postgresql"] = pg_status["message"]

        if redis_manager.redis_pool:
            health_status["redis"] = await redis_manager.ping()
            health_status["details"]["redis"] = "连接正常" if health_status["redis"] else "ping失败"
        else:
            health_status["details"]["redis"] = "连接池未初始化"

        health_status["overall"] = health_status["postgresql"]

        if not health_status["redis"]:
            logger.warning("Redis不可用，列表与统计缓存已降级")
        return health_status

    except Exception as e:
        logger.error(f"数据库健康检查异常: {str(e)}")
        raise HTTPException(
            status_code=503,
            detail={
                "error": "数据库连接失败",
                "message": str(e),
                "status": health_status
            }
        )


@router.get("/sweep")
async def sweep_health(request: Request):
    """状态巡检任务运行情况"""
    task = getattr(request.app.state, "promotion_sweep_task", None)
    return {
        "enabled": settings.promotion_sweep_enabled,
        "interval_seconds": settings.promotion_sweep_interval_seconds,
        "running": task is not None and not task.done(),
    }
