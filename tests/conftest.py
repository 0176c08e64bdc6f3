"""
测试配置文件 - pytest fixtures和共用配置
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from promotions.core.database import Base
from promotions.models import database  # noqa: F401  注册表结构
from promotions.models.discount import Applicability, CustomerRestriction

from factories import NOW, make_context, make_line, make_rule


@pytest.fixture
def now():
    return NOW


@pytest_asyncio.fixture
async def test_db_engine(tmp_path):
    """测试数据库引擎 - 使用临时SQLite文件"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'promotions_test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_db_engine) -> async_sessionmaker:
    """测试session工厂"""
    return async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """测试数据库会话"""
    async with session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@pytest.fixture
def sample_rule():
    return make_rule()


@pytest.fixture
def sample_context():
    return make_context(
        make_line("L1", "P1", "60.00", 2, category_id="C1"),
        make_line("L2", "P2", "80.00", 1, category_id="C2"),
        customer_id="cust_001",
        customer_email="buyer@example.com",
    )


@pytest.fixture
def restricted_applicability():
    return Applicability(applies_to_all=False, include_products=["P1"])


@pytest.fixture
def first_time_restriction():
    return CustomerRestriction(first_time_only=True)
