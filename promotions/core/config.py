from pydantic_settings import BaseSettings
from typing import Optional
from enum import Enum


class Environment(str, Enum):

    """运行环境枚举"""
    TESTING = "testing"
    PRODUCTION = "production"


class LedgerBackend(str, Enum):
    """使用记录存储后端"""
    DATABASE = "database"
    MEMORY = "memory"


class Settings(BaseSettings):

    # 应用基础配置
    app_name: str = "Marketplace Promotions"
    app_version: str = "1.0.0"
    environment: Environment = Environment.TESTING
    debug: bool = True

    # 数据库配置
    database_url: Optional[str] = None
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "promotions_db"
    db_user: str = "promotions_user"
    db_password: str = "promotions_password"

    # Redis配置 (读缓存 + 限流计数)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    # 金额精度（最小货币单位的小数位数）
    currency_decimal_places: int = 2

    # 活动时长业务边界
    event_min_duration_hours: int = 1
    event_max_duration_days: int = 90

    # 优惠码校验限流（每IP每小时尝试次数，0表示不限）
    code_validation_rate_limit_per_ip: int = 30

    # 使用记录
    usage_ledger_backend: LedgerBackend = LedgerBackend.DATABASE
    ledger_write_max_attempts: int = 3

    # 卖家端读缓存
    rule_cache_ttl: int = 600

    # 日志配置
    log_level: str = "INFO"

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def database_url_computed(self) -> str:
        """计算数据库URL"""
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def redis_url_computed(self) -> str:
        """计算Redis URL"""
        if self.redis_url:
            return self.redis_url
        if self.redis_password:
            return f"redis://:{self.redis_password}@{self.redis_host}:{self.redis_port}/{self.redis_db}"
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"

    class Config:
        env_file = ".env"
        case_sensitive = False


# 全局配置实例
settings = Settings()
