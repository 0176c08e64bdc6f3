from fastapi import APIRouter, HTTPException
import logging

from promotions.core.config import settings
from promotions.core.redis import redis_manager
from promotions.core.database import database_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["健康检查"])


@router.get("")
async def health_check():
    """基础健康检查接口"""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "usage_ledger_backend": settings.usage_ledger_backend,
    }


@router.get("/database")
async def database_health():
    """数据库与Redis连接健康检查"""
    health_status = {
        "database": False,
        "redis": False,
        "overall": False,
        "details": {}
    }

    try:
        db_status = await database_service.health_check()
        health_status["database"] = db_status["status"] == "healthy"
        health_status["details"]["database"] = db_status["message"]

        # Redis只承载读缓存和限流，不可用时服务降级运行
        if redis_manager.redis_pool:
            try:
                await redis_manager.redis_pool.ping()
                health_status["redis"] = True
                health_status["details"]["redis"] = "连接正常"
            except Exception as e:
                health_status["details"]["redis"] = f"连接失败: {str(e)}"
        else:
            health_status["details"]["redis"] = "连接池未初始化"

        health_status["overall"] = health_status["database"]

        if not health_status["overall"]:
            logger.warning(f"数据库连接检查失败: {health_status['details']}")
            raise HTTPException(status_code=503, detail=health_status)

        logger.info("数据库连接检查通过")
        return health_status

    except HTTPException:
        raise
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
