"""
优惠规则数据库操作层
"""

from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime

from sqlalchemy import select, update, delete, and_, or_, desc, func, true
from sqlalchemy.ext.asyncio import AsyncSession

from promotions.models.discount import (
    DiscountRule,
    DiscountTier,
    DiscountType,
    Applicability,
    CustomerRestriction,
    RuleKind,
    RuleListStatus,
    utc_now,
)
from promotions.models.database.discount_db import DiscountRuleDB


class DiscountRuleRepository:
    """优惠规则数据库操作类"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, rule_id: str) -> Optional[DiscountRuleDB]:
        """根据规则ID获取规则"""
        result = await self.db.execute(
            select(DiscountRuleDB).where(DiscountRuleDB.rule_id == rule_id)
        )
        return result.scalar_one_or_none()

    async def get_by_code(self, code: str) -> Optional[DiscountRuleDB]:
        """根据优惠码获取规则（调用方负责规范化大小写）"""
        result = await self.db.execute(
            select(DiscountRuleDB).where(DiscountRuleDB.code == code)
        )
        return result.scalar_one_or_none()

    async def get_by_codes(self, codes: List[str]) -> List[DiscountRuleDB]:
        """批量获取优惠码规则"""
        if not codes:
            return []
        result = await self.db.execute(
            select(DiscountRuleDB).where(DiscountRuleDB.code.in_(codes))
        )
        return result.scalars().all()

    async def code_exists(self, code: str, exclude_rule_id: Optional[str] = None) -> bool:
        """检查优惠码是否已被占用"""
        conditions = [DiscountRuleDB.code == code]
        if exclude_rule_id:
            conditions.append(DiscountRuleDB.rule_id != exclude_rule_id)
        result = await self.db.execute(
            select(func.count(DiscountRuleDB.rule_id)).where(and_(*conditions))
        )
        return (result.scalar() or 0) > 0

    async def get_automatic_rules(
        self,
        shop_id: Optional[str] = None,
    ) -> List[DiscountRuleDB]:
        """获取无需输入优惠码的规则（活动折扣/商品折扣）"""
        conditions = [
            DiscountRuleDB.kind.in_([RuleKind.EVENT.value, RuleKind.PRODUCT.value]),
            DiscountRuleDB.is_active == True,
        ]
        if shop_id:
            conditions.append(DiscountRuleDB.shop_id == shop_id)

        query = select(DiscountRuleDB).where(and_(*conditions)).order_by(
            desc(DiscountRuleDB.priority), DiscountRuleDB.rule_id
        )
        result = await self.db.execute(query)
        return result.scalars().all()

    async def get_event_rules(self, event_id: str) -> List[DiscountRuleDB]:
        """获取活动下的全部规则"""
        result = await self.db.execute(
            select(DiscountRuleDB).where(DiscountRuleDB.event_id == event_id)
        )
        return result.scalars().all()

    async def list_rules(
        self,
        shop_id: Optional[str] = None,
        kind: Optional[RuleKind] = None,
        discount_type: Optional[DiscountType] = None,
        search: Optional[str] = None,
        status: RuleListStatus = RuleListStatus.ALL,
        limit: int = 20,
        offset: int = 0,
        current_time: Optional[datetime] = None,
    ) -> Tuple[List[DiscountRuleDB], int]:
        """卖家端规则列表，返回 (当前页, 总数)"""
        if current_time is None:
            current_time = utc_now()

        conditions = []
        if shop_id:
            conditions.append(DiscountRuleDB.shop_id == shop_id)
        if kind:
            conditions.append(DiscountRuleDB.kind == kind.value)
        if discount_type:
            conditions.append(DiscountRuleDB.discount_type == discount_type.value)
        if search:
            pattern = f"%{search.strip()}%"
            conditions.append(or_(
                DiscountRuleDB.name.ilike(pattern),
                DiscountRuleDB.code.ilike(pattern),
                DiscountRuleDB.description.ilike(pattern),
            ))

        if status == RuleListStatus.ACTIVE:
            conditions.extend([
                DiscountRuleDB.is_active == True,
                DiscountRuleDB.valid_from <= current_time,
                or_(
                    DiscountRuleDB.valid_until.is_(None),
                    DiscountRuleDB.valid_until >= current_time,
                ),
            ])
        elif status == RuleListStatus.EXPIRED:
            conditions.append(DiscountRuleDB.valid_until < current_time)
        elif status == RuleListStatus.INACTIVE:
            conditions.append(DiscountRuleDB.is_active == False)

        where_clause = and_(*conditions) if conditions else true()

        count_result = await self.db.execute(
            select(func.count(DiscountRuleDB.rule_id)).where(where_clause)
        )
        total = count_result.scalar() or 0

        query = select(DiscountRuleDB).where(where_clause).order_by(
            desc(DiscountRuleDB.created_at), DiscountRuleDB.rule_id
        ).limit(limit).offset(offset)
        result = await self.db.execute(query)
        return result.scalars().all(), total

    async def create(self, rule: DiscountRule) -> DiscountRuleDB:
        """创建规则"""
        db_rule = DiscountRuleDB(**self.to_row(rule))
        self.db.add(db_rule)
        await self.db.flush()
        return db_rule

    async def update(self, rule: DiscountRule) -> Optional[DiscountRuleDB]:
        """以完整模型覆盖更新规则"""
        values = self.to_row(rule)
        values.pop("rule_id")
        values.pop("created_at", None)
        values["updated_at"] = utc_now()

        result = await self.db.execute(
            update(DiscountRuleDB)
            .where(DiscountRuleDB.rule_id == rule.rule_id)
            .values(**values)
        )
        if result.rowcount == 0:
            return None
        await self.db.flush()
        return await self.refresh(rule.rule_id)

    async def set_active(self, rule_id: str, is_active: bool) -> bool:
        """启用/停用规则"""
        result = await self.db.execute(
            update(DiscountRuleDB)
            .where(DiscountRuleDB.rule_id == rule_id)
            .values(is_active=is_active, updated_at=utc_now())
        )
        return result.rowcount > 0

    async def delete(self, rule_id: str) -> bool:
        """删除规则"""
        result = await self.db.execute(
            delete(DiscountRuleDB).where(DiscountRuleDB.rule_id == rule_id)
        )
        return result.rowcount > 0

    async def refresh(self, rule_id: str) -> Optional[DiscountRuleDB]:
        db_rule = await self.get_by_id(rule_id)
        if db_rule is not None:
            await self.db.refresh(db_rule)
        return db_rule

    def to_row(self, rule: DiscountRule) -> Dict[str, Any]:
        """转换为数据库行，JSON列使用可序列化的值"""
        return {
            "rule_id": rule.rule_id,
            "kind": rule.kind.value,
            "name": rule.name,
            "description": rule.description,
            "code": rule.code,
            "event_id": rule.event_id,
            "shop_id": rule.shop_id,
            "discount_type": rule.discount_type.value,
            "value": rule.value,
            "min_quantity": rule.min_quantity,
            "tiers": [tier.model_dump(mode="json") for tier in rule.tiers],
            "minimum_order_amount": rule.minimum_order_amount,
            "maximum_discount_amount": rule.maximum_discount_amount,
            "valid_from": rule.valid_from,
            "valid_until": rule.valid_until,
            "usage_limit_total": rule.usage_limit_total,
            "usage_limit_per_user": rule.usage_limit_per_user,
            "applicability": rule.applicability.model_dump(mode="json"),
            "customer_restriction": rule.customer_restriction.model_dump(mode="json"),
            "priority": rule.priority,
            "stackable": rule.stackable,
            "is_active": rule.is_active,
            "created_at": rule.created_at,
            "updated_at": rule.updated_at,
        }

    def to_model(self, db_rule: DiscountRuleDB) -> DiscountRule:
        """转换为Pydantic模型"""
        return DiscountRule(
            rule_id=db_rule.rule_id,
            kind=db_rule.kind,
            name=db_rule.name,
            description=db_rule.description,
            code=db_rule.code,
            event_id=db_rule.event_id,
            shop_id=db_rule.shop_id,
            discount_type=db_rule.discount_type,
            value=db_rule.value,
            min_quantity=db_rule.min_quantity,
            tiers=[DiscountTier(**tier) for tier in (db_rule.tiers or [])],
            minimum_order_amount=db_rule.minimum_order_amount,
            maximum_discount_amount=db_rule.maximum_discount_amount,
            valid_from=db_rule.valid_from,
            valid_until=db_rule.valid_until,
            usage_limit_total=db_rule.usage_limit_total,
            usage_limit_per_user=db_rule.usage_limit_per_user,
            applicability=Applicability(**(db_rule.applicability or {})),
            customer_restriction=CustomerRestriction(**(db_rule.customer_restriction or {})),
            priority=db_rule.priority or 0,
            stackable=bool(db_rule.stackable),
            is_active=bool(db_rule.is_active),
            created_at=db_rule.created_at or utc_now(),
            updated_at=db_rule.updated_at or utc_now(),
        )
