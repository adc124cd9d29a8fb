"""
促销状态定时巡检任务
独立于请求流量，按固定间隔在自己的数据库会话中执行 LifecycleService.run_sweep
"""

import asyncio
from contextlib import suppress
from datetime import datetime
from typing import Optional

import structlog
from fastapi import FastAPI

from app.core.config import settings
from app.core.database import get_session_maker
from app.models.promotion import SweepResult
from app.repositories.promotion_repository import PromotionRepository
from app.repositories.coupon_repository import CouponRepository
from app.services.lifecycle_service import LifecycleService
from app.services.common_cache import promotion_cache, coupon_cache

logger = structlog.get_logger()


async def run_sweep_once(now: Optional[datetime] = None) -> SweepResult:
    """在独立会话中执行一次巡检并提交"""
    now = now or datetime.now()
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            service = LifecycleService(PromotionRepository(session), CouponRepository(session))
            result = await service.run_sweep(now)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

    if result.total_changes:
        await promotion_cache.delete_pattern("*")
        await coupon_cache.delete_pattern("*")
    return result


async def _loop(stop: asyncio.Event) -> None:
    interval = max(30, int(settings.promotion_sweep_interval_seconds or 3600))
    while not stop.is_set():
        try:
            result = await run_sweep_once()
            if result.total_changes:
                logger.info(
                    "促销状态巡检",
                    activated=result.activated_promotions,
                    expired=result.expired_promotions,
                    expired_coupons=result.expired_coupons,
                )
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.warning("促销状态巡检失败", error=str(e))

        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(stop.wait(), timeout=interval)


def start(app: FastAPI) -> None:
    """启动巡检任务"""
    if not settings.promotion_sweep_enabled:
        return
    if getattr(app.state, "promotion_sweep_task", None) is not None:
        return

    stop_event = asyncio.Event()
    app.state.promotion_sweep_stop = stop_event
    app.state.promotion_sweep_task = asyncio.create_task(_loop(stop_event))
    logger.info("促销状态巡检任务已启动", interval=settings.promotion_sweep_interval_seconds)


async def stop(app: FastAPI) -> None:
    """停止巡检任务"""
    stop_event = getattr(app.state, "promotion_sweep_stop", None)
    task = getattr(app.state, "promotion_sweep_task", None)
    if stop_event:
        stop_event.set()
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
    app.state.promotion_sweep_stop = None
    app.state.promotion_sweep_task = None
