from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
import uvicorn

from promotions.core.config import settings
from promotions.core.redis import redis_manager
from promotions.core.database import init_database, close_database, create_tables
from promotions.services.common_cache import rule_cache, event_cache
from promotions.api.deps import reset_usage_ledger
from promotions.api.health import router as health_router
from promotions.api.discounts import router as discounts_router
from promotions.api.events import router as events_router
from promotions.api.checkout import router as checkout_router
from promotions.api.exceptions import (
    validation_exception_handler,
    http_exception_handler,
    database_exception_handler,
    general_exception_handler,
    business_exception_handler,
    BusinessException
)

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
    logger.info("正在启动促销优惠服务")

    try:
        await init_database()
        if settings.is_testing:
            await create_tables()
        logger.info("数据库初始化成功")
    except Exception as e:
        logger.error(f"应用启动失败: {e}")
        raise

    # Redis只用于读缓存和限流，连接失败时降级运行
    try:
        await redis_manager.init_redis()
        await rule_cache.init_redis()
        await event_cache.init_redis()
        logger.info("Redis初始化成功")
    except Exception as e:
        logger.warning(f"Redis不可用，缓存与限流已停用: {e}")

    logger.info("应用启动完成")

    yield

    logger.info("正在关闭应用")
    await close_database()
    await redis_manager.close_redis()
    await rule_cache.close_redis()
    await event_cache.close_redis()
    reset_usage_ledger()
    logger.info("应用关闭完成")


# 创建FastAPI应用
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="电商平台促销优惠服务 - 优惠码、活动折扣、商品折扣的资格检查、计算与冲突处理",
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
app.include_router(discounts_router)
app.include_router(events_router)
app.include_router(checkout_router)

# 注册异常处理器
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(SQLAlchemyError, database_exception_handler)
app.add_exception_handler(BusinessException, business_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)


@app.get("/")
async def root():
    """根路径"""
    return {
        "message": f"欢迎使用 {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run(
        "promotions.main:app",
        host="0.0.0.0",
        port=8002,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
