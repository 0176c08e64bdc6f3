"""
卖家端读缓存
只缓存规则/活动的展示数据；资格检查与订单提交始终读取数据库
"""

import json
import logging
from typing import Optional, Any
import redis.asyncio as redis

from promotions.core.config import settings

logger = logging.getLogger(__name__)


class SimpleCache:
    """简单缓存管理器，未连接Redis时所有操作为空操作"""

    def __init__(self, redis_client: Optional[redis.Redis] = None, key_prefix: str = ""):
        self.redis_client = redis_client
        self.key_prefix = key_prefix

    @property
    def enabled(self) -> bool:
        return self.redis_client is not None

    async def init_redis(self) -> None:
        """初始化Redis连接"""
        if not self.redis_client:
            self.redis_client = redis.from_url(
                settings.redis_url_computed,
                encoding='utf-8',
                decode_responses=True,
                socket_timeout=30,
                socket_connect_timeout=30,
                retry_on_timeout=True,
                max_connections=20
            )

        try:
            await self.redis_client.ping()
            logger.info(f"{self.key_prefix}缓存Redis连接初始化成功")
        except Exception as e:
            logger.error(f"Redis连接失败: {e}")
            self.redis_client = None
            raise

    async def close_redis(self) -> None:
        """关闭Redis连接"""
        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None

    def _get_key(self, key: str) -> str:
        """获取完整的缓存key"""
        return f"{self.key_prefix}{key}" if self.key_prefix else key

    async def get(self, key: str) -> Optional[Any]:
        """获取缓存值"""
        if not self.enabled:
            return None
        try:
            data = await self.redis_client.get(self._get_key(key))
            return json.loads(data) if data else None
        except Exception as e:
            logger.error(f"获取缓存失败 {key}: {e}")
            return None

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """设置缓存值"""
        if not self.enabled:
            return False
        try:
            data = json.dumps(value, default=str, ensure_ascii=False)
            await self.redis_client.setex(self._get_key(key), ttl or settings.rule_cache_ttl, data)
            return True
        except Exception as e:
            logger.error(f"设置缓存失败 {key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        """删除缓存"""
        if not self.enabled:
            return False
        try:
            result = await self.redis_client.delete(self._get_key(key))
            return result > 0
        except Exception as e:
            logger.error(f"删除缓存失败 {key}: {e}")
            return False


# 各个模块的缓存实例
rule_cache = SimpleCache(key_prefix="promo:rule:")
event_cache = SimpleCache(key_prefix="promo:event:")
