"""
优惠码校验限流
按IP统计每小时的校验次数，计数保存在Redis
"""

from typing import Optional

import structlog

from promotions.core.config import settings
from promotions.core.redis import RedisManager, redis_manager

logger = structlog.get_logger()

WINDOW_SECONDS = 3600


class CodeValidationRateLimiter:
    """每IP每小时的优惠码尝试次数限制"""

    def __init__(
        self,
        redis: Optional[RedisManager] = None,
        limit: Optional[int] = None,
        key_prefix: str = "promo:rate:code:",
    ):
        self.redis = redis or redis_manager
        self.limit = settings.code_validation_rate_limit_per_ip if limit is None else limit
        self.key_prefix = key_prefix

    async def allow(self, ip_address: Optional[str]) -> bool:
        """记录一次尝试并返回是否放行；Redis不可用时放行"""
        if not ip_address or self.limit <= 0:
            return True
        if self.redis.redis_pool is None:
            logger.warning("Redis未初始化，跳过优惠码校验限流")
            return True

        count = await self.redis.incr_with_expire(f"{self.key_prefix}{ip_address}", WINDOW_SECONDS)
        if count is None:
            return True
        if count > self.limit:
            logger.warning("优惠码校验过于频繁", ip=ip_address, count=count, limit=self.limit)
            return False
        return True


# 全局限流器实例
code_rate_limiter = CodeValidationRateLimiter()
