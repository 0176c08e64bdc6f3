"""
优惠规则业务服务层（卖家端）
创建/更新时完成全部定义校验，不合法的规则不会进入计算
"""

import logging
import uuid
from typing import Any, Dict, Optional

from pydantic import ValidationError

from promotions.core.exceptions import BusinessException, RuleValidationError
from promotions.models.discount import (
    DiscountRule,
    DiscountRuleCreate,
    DiscountRuleUpdate,
    DiscountType,
    RuleKind,
    RuleListStatus,
    normalize_code,
    utc_now,
)
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.repositories.usage_ledger import UsageLedger
from promotions.services.common_cache import rule_cache

logger = logging.getLogger(__name__)


def build_rule(data: Dict[str, Any]) -> DiscountRule:
    """构建规则模型，定义不合法时转换为业务异常"""
    try:
        return DiscountRule(**data)
    except ValidationError as e:
        messages = "; ".join(error["msg"] for error in e.errors())
        raise RuleValidationError(messages) from e


class DiscountRuleService:
    """优惠规则业务服务"""

    def __init__(
        self,
        rule_repo: DiscountRuleRepository,
        event_repo: EventRepository,
        ledger: UsageLedger,
    ):
        self.rule_repo = rule_repo
        self.event_repo = event_repo
        self.ledger = ledger
        self.cache = rule_cache
        self.cache_prefix = "rule"

    async def create_rule(self, data: DiscountRuleCreate) -> DiscountRule:
        """创建规则，默认立即启用"""
        payload = data.model_dump(exclude_none=True)
        if data.code:
            payload["code"] = normalize_code(data.code)
            if await self.rule_repo.code_exists(payload["code"]):
                raise BusinessException("CODE_EXISTS", f"优惠码 {payload['code']} 已存在", status_code=409)

        await self._ensure_event(data.kind, data.event_id)

        now = utc_now()
        payload.setdefault("valid_from", now)
        payload.update({
            "rule_id": f"rule_{uuid.uuid4().hex[:16]}",
            "created_at": now,
            "updated_at": now,
        })
        rule = build_rule(payload)

        db_rule = await self.rule_repo.create(rule)
        logger.info(f"创建优惠规则: {rule.rule_id} kind={rule.kind.value} type={rule.discount_type.value}")
        return self.rule_repo.to_model(db_rule)

    async def get_rule(self, rule_id: str, use_cache: bool = True) -> DiscountRule:
        """获取规则详情"""
        cache_key = f"{self.cache_prefix}:{rule_id}"
        if use_cache:
            cached = await self.cache.get(cache_key)
            if cached:
                return DiscountRule(**cached)

        db_rule = await self.rule_repo.get_by_id(rule_id)
        if not db_rule:
            raise BusinessException("RULE_NOT_FOUND", f"优惠规则 {rule_id} 不存在", status_code=404)
        rule = self.rule_repo.to_model(db_rule)

        if use_cache:
            await self.cache.set(cache_key, rule.model_dump(mode="json"))
        return rule

    async def list_rules(
        self,
        shop_id: Optional[str] = None,
        kind: Optional[RuleKind] = None,
        discount_type: Optional[DiscountType] = None,
        search: Optional[str] = None,
        status: RuleListStatus = RuleListStatus.ALL,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """卖家端规则列表"""
        db_rules, total = await self.rule_repo.list_rules(
            shop_id=shop_id,
            kind=kind,
            discount_type=discount_type,
            search=search,
            status=status,
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        return {
            "items": [self.rule_repo.to_model(db_rule) for db_rule in db_rules],
            "total": total,
            "page": page,
            "page_size": page_size,
        }

    async def update_rule(self, rule_id: str, data: DiscountRuleUpdate) -> DiscountRule:
        """更新规则，合并后重新做完整校验"""
        current = await self.get_rule(rule_id, use_cache=False)
        changes = data.model_dump(exclude_unset=True)

        if changes.get("code"):
            changes["code"] = normalize_code(changes["code"])
            if changes["code"] != current.code and await self.rule_repo.code_exists(
                changes["code"], exclude_rule_id=rule_id
            ):
                raise BusinessException("CODE_EXISTS", f"优惠码 {changes['code']} 已存在", status_code=409)

        merged = current.model_dump()
        merged.update(changes)
        merged["updated_at"] = utc_now()
        rule = build_rule(merged)

        db_rule = await self.rule_repo.update(rule)
        if db_rule is None:
            raise BusinessException("RULE_NOT_FOUND", f"优惠规则 {rule_id} 不存在", status_code=404)
        logger.info(f"更新优惠规则: {rule_id} fields={sorted(changes)}")
        await self._invalidate(rule_id)
        return self.rule_repo.to_model(db_rule)

    async def set_active(self, rule_id: str, is_active: bool) -> DiscountRule:
        """启用/停用规则"""
        if not await self.rule_repo.set_active(rule_id, is_active):
            raise BusinessException("RULE_NOT_FOUND", f"优惠规则 {rule_id} 不存在", status_code=404)
        logger.info(f"优惠规则启用状态变更: {rule_id} -> {is_active}")
        await self._invalidate(rule_id)
        return await self.get_rule(rule_id, use_cache=False)

    async def delete_rule(self, rule_id: str) -> None:
        """删除规则；已被订单使用的规则只能停用"""
        await self.get_rule(rule_id, use_cache=False)
        # 已冲正的记录仍引用该规则
        if await self.ledger.has_records(rule_id):
            raise BusinessException(
                "RULE_IN_USE",
                "该优惠已被订单使用，不能删除，请改为停用",
                status_code=409,
            )
        await self.rule_repo.delete(rule_id)
        logger.info(f"删除优惠规则: {rule_id}")
        await self._invalidate(rule_id)

    async def get_usage(self, rule_id: str) -> Dict[str, Any]:
        """规则使用次数统计"""
        rule = await self.get_rule(rule_id)
        used = await self.ledger.count(rule_id)
        remaining: Optional[int] = None
        if rule.usage_limit_total is not None:
            remaining = max(rule.usage_limit_total - used, 0)
        return {
            "rule_id": rule_id,
            "used": used,
            "usage_limit_total": rule.usage_limit_total,
            "remaining": remaining,
        }

    async def _ensure_event(self, kind: RuleKind, event_id: Optional[str]) -> None:
        if kind == RuleKind.EVENT and event_id:
            if not await self.event_repo.get_by_id(event_id):
                raise BusinessException("EVENT_NOT_FOUND", f"活动 {event_id} 不存在", status_code=404)

    async def _invalidate(self, rule_id: str) -> None:
        await self.cache.delete(f"{self.cache_prefix}:{rule_id}")
