import redis.asyncio as aioredis
import json
from typing import Optional, Union
from promotions.core.config import settings
import structlog

"redis连接管理器"

logger = structlog.get_logger()


class RedisManager:
    """Redis连接管理器"""

    def __init__(self):
        self.redis_pool: Optional[aioredis.Redis] = None

    async def init_redis(self) -> None:
        """初始化Redis连接池"""
        try:
            self.redis_pool = aioredis.from_url(
                settings.redis_url_computed,
                encoding="utf-8",
                decode_responses=True,
                max_connections=20,
                retry_on_timeout=True
            )
            # 测试连接
            await self.redis_pool.ping()
            logger.info("Redis连接初始化成功")
        except Exception as e:
            logger.error("Redis连接初始化失败", error=str(e))
            raise

    async def close_redis(self) -> None:
        """关闭Redis连接"""
        if self.redis_pool:
            await self.redis_pool.close()
            logger.info("Redis连接已关闭")

    async def get(self, key: str) -> Optional[str]:
        """获取缓存值"""
        try:
            return await self.redis_pool.get(key)
        except Exception as e:
            logger.error("Redis获取数据失败", key=key, error=str(e))
            return None

    async def set(
            self,
            key: str,
            value: Union[str, dict, list],
            expire: Optional[int] = None
    ) -> bool:
        """设置缓存值"""
        try:
            if isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)

            result = await self.redis_pool.set(key, value, ex=expire)
            return bool(result)
        except Exception as e:
            logger.error("Redis设置数据失败", key=key, error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        """删除缓存"""
        try:
            result = await self.redis_pool.delete(key)
            return bool(result)
        except Exception as e:
            logger.error("Redis删除数据失败", key=key, error=str(e))
            return False

    async def incr_with_expire(self, key: str, expire: int) -> Optional[int]:
        """计数器自增，首次创建时设置过期时间；失败返回None"""
        try:
            async with self.redis_pool.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, expire, nx=True)
                count, _ = await pipe.execute()
            return int(count)
        except Exception as e:
            logger.error("Redis计数器自增失败", key=key, error=str(e))
            return None


# 全局Redis管理器实例
redis_manager = RedisManager()


def get_redis_client():
    """获取Redis客户端实例"""
    return redis_manager.redis_pool
