"""
优惠使用记录（UsageLedger）
只有已提交的订单才会写入；预览/校验只读取计数快照。
提交时的条件自增是权威校验，预览时的资格检查仅供参考。
"""

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from promotions.core.config import settings
from promotions.core.exceptions import (
    LedgerUnavailableError,
    OrderReversedError,
    UsageLedgerError,
    UsageLimitExceededError,
)
from promotions.models.discount import utc_now
from promotions.models.database.usage_db import DiscountUsageCounterDB, DiscountUsageRecordDB

logger = structlog.get_logger()

TOTAL_SCOPE = "total"
STATUS_COMMITTED = "committed"
STATUS_REVERSED = "reversed"


def customer_scope(customer_id: str) -> str:
    return f"customer:{customer_id}"


def ip_scope(ip_address: str) -> str:
    return f"ip:{ip_address}"


@dataclass(frozen=True)
class UsageClaim:
    """一次订单对某条规则的使用申请"""

    rule_id: str
    customer_id: Optional[str] = None
    ip_address: Optional[str] = None
    usage_limit_total: Optional[int] = None
    usage_limit_per_user: Optional[int] = None
    discount_amount: Decimal = Decimal("0")

    def scopes(self) -> List[Tuple[str, Optional[int]]]:
        """需要自增的 (范围, 上限) 列表"""
        scopes: List[Tuple[str, Optional[int]]] = [(TOTAL_SCOPE, self.usage_limit_total)]
        if self.customer_id:
            scopes.append((customer_scope(self.customer_id), self.usage_limit_per_user))
        if self.ip_address:
            # 匿名顾客的单用户限制按IP计
            ip_limit = None if self.customer_id else self.usage_limit_per_user
            scopes.append((ip_scope(self.ip_address), ip_limit))
        return scopes


@dataclass(frozen=True)
class UsageRecord:
    """使用记录"""

    record_id: str
    order_id: str
    rule_id: str
    customer_id: Optional[str]
    ip_address: Optional[str]
    discount_amount: Decimal
    status: str
    used_at: Optional[datetime] = None
    reversed_at: Optional[datetime] = None


@dataclass(frozen=True)
class CommitOutcome:
    """提交结果，replayed表示同一订单的重复提交"""

    order_id: str
    records: List[UsageRecord]
    replayed: bool = False


@dataclass(frozen=True)
class UsageSnapshot:
    """计算前读取的只读计数快照，资格检查基于它做纯计算"""

    totals: Dict[str, int] = field(default_factory=dict)
    per_customer: Dict[str, int] = field(default_factory=dict)
    per_ip: Dict[str, int] = field(default_factory=dict)

    def total(self, rule_id: str) -> int:
        return self.totals.get(rule_id, 0)

    def for_customer(self, rule_id: str) -> int:
        return self.per_customer.get(rule_id, 0)

    def for_ip(self, rule_id: str) -> int:
        return self.per_ip.get(rule_id, 0)


EMPTY_SNAPSHOT = UsageSnapshot()


class UsageLedger(ABC):
    """使用记录接口"""

    @abstractmethod
    async def count(
        self,
        rule_id: str,
        customer_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """查询使用次数；customer_id与ip_address都为空时返回总次数"""

    @abstractmethod
    async def snapshot(
        self,
        rule_ids: Iterable[str],
        customer_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> UsageSnapshot:
        """批量读取计数快照"""

    @abstractmethod
    async def commit_usage(self, order_id: str, claims: List[UsageClaim]) -> CommitOutcome:
        """
        原子提交订单的全部使用申请
        任一上限被突破时整体失败并抛出UsageLimitExceededError；
        同一订单重复提交不会重复计数
        """

    @abstractmethod
    async def reverse_usage(self, order_id: str) -> List[UsageRecord]:
        """订单取消/退款时冲正，与提交一一对应"""

    @abstractmethod
    async def get_order_records(self, order_id: str) -> List[UsageRecord]:
        """查询订单的使用记录"""

    @abstractmethod
    async def has_records(self, rule_id: str) -> bool:
        """规则是否有过使用记录（含已冲正）"""


class InMemoryUsageLedger(UsageLedger):
    """进程内实现（开发/测试使用），通过asyncio.Lock保证检查与自增原子"""

    def __init__(self):
        self._counters: Dict[Tuple[str, str], int] = {}
        self._records: Dict[str, List[UsageRecord]] = {}
        self._lock = asyncio.Lock()

    async def count(
        self,
        rule_id: str,
        customer_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        if customer_id:
            return self._counters.get((rule_id, customer_scope(customer_id)), 0)
        if ip_address:
            return self._counters.get((rule_id, ip_scope(ip_address)), 0)
        return self._counters.get((rule_id, TOTAL_SCOPE), 0)

    async def snapshot(
        self,
        rule_ids: Iterable[str],
        customer_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> UsageSnapshot:
        rule_ids = list(rule_ids)
        return UsageSnapshot(
            totals={rule_id: await self.count(rule_id) for rule_id in rule_ids},
            per_customer={
                rule_id: await self.count(rule_id, customer_id=customer_id)
                for rule_id in rule_ids
            } if customer_id else {},
            per_ip={
                rule_id: await self.count(rule_id, ip_address=ip_address)
                for rule_id in rule_ids
            } if ip_address else {},
        )

    async def commit_usage(self, order_id: str, claims: List[UsageClaim]) -> CommitOutcome:
        async with self._lock:
            existing = [
                record for record in self._records.get(order_id, [])
                if record.status == STATUS_COMMITTED
            ]
            if existing:
                logger.info("重复提交，返回已有使用记录", order_id=order_id)
                return CommitOutcome(order_id=order_id, records=existing, replayed=True)
            if any(record.status == STATUS_REVERSED for record in self._records.get(order_id, [])):
                raise OrderReversedError(order_id)

            # 先整体检查再整体写入，保证全有或全无
            for claim in claims:
                for scope, limit in claim.scopes():
                    if limit is not None and self._counters.get((claim.rule_id, scope), 0) >= limit:
                        logger.warning(
                            "使用次数已达上限，拒绝提交",
                            order_id=order_id, rule_id=claim.rule_id, scope=scope,
                        )
                        raise UsageLimitExceededError(claim.rule_id, scope)

            now = utc_now()
            records = []
            for claim in claims:
                for scope, _ in claim.scopes():
                    key = (claim.rule_id, scope)
                    self._counters[key] = self._counters.get(key, 0) + 1
                records.append(UsageRecord(
                    record_id=str(uuid.uuid4()),
                    order_id=order_id,
                    rule_id=claim.rule_id,
                    customer_id=claim.customer_id,
                    ip_address=claim.ip_address,
                    discount_amount=claim.discount_amount,
                    status=STATUS_COMMITTED,
                    used_at=now,
                ))
            self._records[order_id] = self._records.get(order_id, []) + records
            logger.info("使用记录已提交", order_id=order_id, rules=[c.rule_id for c in claims])
            return CommitOutcome(order_id=order_id, records=records)

    async def reverse_usage(self, order_id: str) -> List[UsageRecord]:
        async with self._lock:
            reversed_records = []
            now = utc_now()
            updated = []
            for record in self._records.get(order_id, []):
                if record.status != STATUS_COMMITTED:
                    updated.append(record)
                    continue
                claim = UsageClaim(
                    rule_id=record.rule_id,
                    customer_id=record.customer_id,
                    ip_address=record.ip_address,
                )
                for scope, _ in claim.scopes():
                    key = (record.rule_id, scope)
                    self._counters[key] = max(self._counters.get(key, 0) - 1, 0)
                reversed_record = UsageRecord(
                    record_id=record.record_id,
                    order_id=record.order_id,
                    rule_id=record.rule_id,
                    customer_id=record.customer_id,
                    ip_address=record.ip_address,
                    discount_amount=record.discount_amount,
                    status=STATUS_REVERSED,
                    used_at=record.used_at,
                    reversed_at=now,
                )
                updated.append(reversed_record)
                reversed_records.append(reversed_record)
            if order_id in self._records:
                self._records[order_id] = updated
            if reversed_records:
                logger.info("使用记录已冲正", order_id=order_id, count=len(reversed_records))
            return reversed_records

    async def get_order_records(self, order_id: str) -> List[UsageRecord]:
        return list(self._records.get(order_id, []))

    async def has_records(self, rule_id: str) -> bool:
        return any(
            record.rule_id == rule_id
            for records in self._records.values()
            for record in records
        )


class SqlUsageLedger(UsageLedger):
    """
    数据库实现
    计数行使用 UPDATE ... SET count = count + 1 WHERE count < limit 条件自增，
    并发提交在行锁上串行化；每次尝试使用独立事务，失败整体回滚
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        max_attempts: Optional[int] = None,
    ):
        self.session_maker = session_maker
        self.max_attempts = max_attempts or settings.ledger_write_max_attempts

    async def count(
        self,
        rule_id: str,
        customer_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        if customer_id:
            scope = customer_scope(customer_id)
        elif ip_address:
            scope = ip_scope(ip_address)
        else:
            scope = TOTAL_SCOPE

        async with self.session_maker() as session:
            result = await session.execute(
                select(DiscountUsageCounterDB.count).where(
                    and_(
                        DiscountUsageCounterDB.rule_id == rule_id,
                        DiscountUsageCounterDB.scope_key == scope,
                    )
                )
            )
            return result.scalar() or 0

    async def snapshot(
        self,
        rule_ids: Iterable[str],
        customer_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> UsageSnapshot:
        rule_ids = list(rule_ids)
        if not rule_ids:
            return EMPTY_SNAPSHOT

        scopes = [TOTAL_SCOPE]
        if customer_id:
            scopes.append(customer_scope(customer_id))
        if ip_address:
            scopes.append(ip_scope(ip_address))

        async with self.session_maker() as session:
            result = await session.execute(
                select(
                    DiscountUsageCounterDB.rule_id,
                    DiscountUsageCounterDB.scope_key,
                    DiscountUsageCounterDB.count,
                ).where(
                    and_(
                        DiscountUsageCounterDB.rule_id.in_(rule_ids),
                        DiscountUsageCounterDB.scope_key.in_(scopes),
                    )
                )
            )
            rows = result.fetchall()

        totals, per_customer, per_ip = {}, {}, {}
        for row in rows:
            if row.scope_key == TOTAL_SCOPE:
                totals[row.rule_id] = row.count
            elif customer_id and row.scope_key == customer_scope(customer_id):
                per_customer[row.rule_id] = row.count
            elif ip_address and row.scope_key == ip_scope(ip_address):
                per_ip[row.rule_id] = row.count
        return UsageSnapshot(totals=totals, per_customer=per_customer, per_ip=per_ip)

    async def commit_usage(self, order_id: str, claims: List[UsageClaim]) -> CommitOutcome:
        try:
            async for attempt in AsyncRetrying(
                retry=retry_if_exception_type(LedgerUnavailableError),
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=0.1, max=2),
                reraise=False,
            ):
                with attempt:
                    return await self._commit_once(order_id, claims)
        except IntegrityError as e:
            # 同一订单并发提交触发唯一约束，以先提交者为准
            async with self.session_maker() as session:
                existing = await self._committed_records(session, order_id)
            if existing:
                logger.info("并发重复提交，返回已有使用记录", order_id=order_id)
                return CommitOutcome(order_id=order_id, records=existing, replayed=True)
            logger.error("使用记录唯一约束冲突", order_id=order_id, error=str(e))
            raise UsageLedgerError(order_id, str(e)) from e
        except RetryError as e:
            last_exception = e.last_attempt.exception()
            logger.error(
                "使用记录写入失败，订单提交中止",
                order_id=order_id, attempts=self.max_attempts, error=str(last_exception),
            )
            raise UsageLedgerError(order_id, str(last_exception)) from last_exception

    async def _commit_once(self, order_id: str, claims: List[UsageClaim]) -> CommitOutcome:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    existing = await self._committed_records(session, order_id)
                    if existing:
                        logger.info("重复提交，返回已有使用记录", order_id=order_id)
                        return CommitOutcome(order_id=order_id, records=existing, replayed=True)
                    if await self._has_reversed_records(session, order_id):
                        raise OrderReversedError(order_id)

                    now = utc_now()
                    records = []
                    for claim in claims:
                        for scope, limit in claim.scopes():
                            await self._ensure_counter(session, claim.rule_id, scope)
                            if not await self._conditional_increment(session, claim.rule_id, scope, limit):
                                logger.warning(
                                    "使用次数已达上限，拒绝提交",
                                    order_id=order_id, rule_id=claim.rule_id, scope=scope,
                                )
                                # 抛出异常使事务整体回滚
                                raise UsageLimitExceededError(claim.rule_id, scope)

                        record = DiscountUsageRecordDB(
                            record_id=str(uuid.uuid4()),
                            order_id=order_id,
                            rule_id=claim.rule_id,
                            customer_id=claim.customer_id,
                            ip_address=claim.ip_address,
                            discount_amount=claim.discount_amount,
                            status=STATUS_COMMITTED,
                            used_at=now,
                        )
                        session.add(record)
                        records.append(self.to_record(record))
                    await session.flush()

            logger.info("使用记录已提交", order_id=order_id, rules=[c.rule_id for c in claims])
            return CommitOutcome(order_id=order_id, records=records)
        except IntegrityError:
            # 约束冲突不是暂时性故障，不重试
            raise
        except (OperationalError, DBAPIError) as e:
            raise LedgerUnavailableError("使用记录存储不可用", e) from e

    async def reverse_usage(self, order_id: str) -> List[UsageRecord]:
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    result = await session.execute(
                        select(DiscountUsageRecordDB).where(
                            and_(
                                DiscountUsageRecordDB.order_id == order_id,
                                DiscountUsageRecordDB.status == STATUS_COMMITTED,
                            )
                        ).with_for_update()
                    )
                    records = result.scalars().all()
                    now = utc_now()
                    for record in records:
                        claim = UsageClaim(
                            rule_id=record.rule_id,
                            customer_id=record.customer_id,
                            ip_address=record.ip_address,
                        )
                        for scope, _ in claim.scopes():
                            await session.execute(
                                update(DiscountUsageCounterDB)
                                .where(
                                    and_(
                                        DiscountUsageCounterDB.rule_id == record.rule_id,
                                        DiscountUsageCounterDB.scope_key == scope,
                                        DiscountUsageCounterDB.count > 0,
                                    )
                                )
                                .values(count=DiscountUsageCounterDB.count - 1)
                            )
                        record.status = STATUS_REVERSED
                        record.reversed_at = now
                    await session.flush()
                    reversed_records = [self.to_record(record) for record in records]
        except (OperationalError, DBAPIError) as e:
            logger.error("使用记录冲正失败", order_id=order_id, error=str(e))
            raise UsageLedgerError(order_id, str(e)) from e

        if reversed_records:
            logger.info("使用记录已冲正", order_id=order_id, count=len(reversed_records))
        return reversed_records

    async def get_order_records(self, order_id: str) -> List[UsageRecord]:
        async with self.session_maker() as session:
            result = await session.execute(
                select(DiscountUsageRecordDB)
                .where(DiscountUsageRecordDB.order_id == order_id)
                .order_by(DiscountUsageRecordDB.rule_id)
            )
            return [self.to_record(record) for record in result.scalars().all()]

    async def has_records(self, rule_id: str) -> bool:
        async with self.session_maker() as session:
            result = await session.execute(
                select(DiscountUsageRecordDB.record_id)
                .where(DiscountUsageRecordDB.rule_id == rule_id)
                .limit(1)
            )
            return result.scalar() is not None

    async def _committed_records(self, session: AsyncSession, order_id: str) -> List[UsageRecord]:
        result = await session.execute(
            select(DiscountUsageRecordDB).where(
                and_(
                    DiscountUsageRecordDB.order_id == order_id,
                    DiscountUsageRecordDB.status == STATUS_COMMITTED,
                )
            )
        )
        return [self.to_record(record) for record in result.scalars().all()]

    async def _has_reversed_records(self, session: AsyncSession, order_id: str) -> bool:
        result = await session.execute(
            select(DiscountUsageRecordDB.record_id)
            .where(
                and_(
                    DiscountUsageRecordDB.order_id == order_id,
                    DiscountUsageRecordDB.status == STATUS_REVERSED,
                )
            )
            .limit(1)
        )
        return result.scalar() is not None

    async def _ensure_counter(self, session: AsyncSession, rule_id: str, scope: str) -> None:
        """计数行不存在时插入，已存在则忽略"""
        dialect = session.get_bind().dialect.name
        values = {"rule_id": rule_id, "scope_key": scope, "count": 0}
        if dialect == "postgresql":
            stmt = postgresql.insert(DiscountUsageCounterDB).values(**values).on_conflict_do_nothing(
                index_elements=["rule_id", "scope_key"]
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(DiscountUsageCounterDB).values(**values).on_conflict_do_nothing(
                index_elements=["rule_id", "scope_key"]
            )
        else:
            exists = await session.execute(
                select(DiscountUsageCounterDB.rule_id).where(
                    and_(
                        DiscountUsageCounterDB.rule_id == rule_id,
                        DiscountUsageCounterDB.scope_key == scope,
                    )
                )
            )
            if exists.scalar() is not None:
                return
            session.add(DiscountUsageCounterDB(**values))
            await session.flush()
            return
        await session.execute(stmt)

    async def _conditional_increment(
        self,
        session: AsyncSession,
        rule_id: str,
        scope: str,
        limit: Optional[int],
    ) -> bool:
        """原子条件自增，返回是否成功"""
        conditions = [
            DiscountUsageCounterDB.rule_id == rule_id,
            DiscountUsageCounterDB.scope_key == scope,
        ]
        if limit is not None:
            conditions.append(DiscountUsageCounterDB.count < limit)

        result = await session.execute(
            update(DiscountUsageCounterDB)
            .where(and_(*conditions))
            .values(count=DiscountUsageCounterDB.count + 1)
        )
        return result.rowcount == 1

    def to_record(self, db_record: DiscountUsageRecordDB) -> UsageRecord:
        """转换为记录对象"""
        return UsageRecord(
            record_id=db_record.record_id,
            order_id=db_record.order_id,
            rule_id=db_record.rule_id,
            customer_id=db_record.customer_id,
            ip_address=db_record.ip_address,
            discount_amount=Decimal(db_record.discount_amount or 0),
            status=db_record.status,
            used_at=db_record.used_at,
            reversed_at=db_record.reversed_at,
        )
