"""
优惠规则Repository数据库操作测试 - 使用真实数据库
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from promotions.models.discount import (
    Applicability,
    CustomerRestriction,
    DiscountTier,
    DiscountType,
    RuleKind,
    RuleListStatus,
)
from promotions.repositories.discount_repository import DiscountRuleRepository

from factories import NOW, make_rule


@pytest.mark.asyncio
class TestDiscountRuleRepository:
    """优惠规则Repository数据库操作测试类"""

    async def test_create_and_get_rule(self, db_session):
        """测试创建和获取规则"""
        # 创建Repository实例
        rule_repo = DiscountRuleRepository(db_session)

        # 准备测试数据
        rule = make_rule(
            minimum_order_amount=Decimal("50.00"),
            usage_limit_per_user=1,
            applicability=Applicability(applies_to_all=False, include_categories=["C1"]),
            customer_restriction=CustomerRestriction(email_domains={"example.com"}),
        )
        await rule_repo.create(rule)
        await db_session.commit()

        # 通过code获取
        db_rule = await rule_repo.get_by_code("SAVE20")

        # 验证结果
        assert db_rule is not None
        restored = rule_repo.to_model(db_rule)
        assert restored.rule_id == "rule_001"
        assert restored.kind == RuleKind.CODE
        assert restored.value == Decimal("20")
        assert restored.minimum_order_amount == Decimal("50.00")
        assert restored.applicability.include_categories == ["C1"]
        assert restored.customer_restriction.email_domains == {"example.com"}
        assert restored.valid_from == rule.valid_from

    async def test_tiers_round_trip(self, db_session):
        rule_repo = DiscountRuleRepository(db_session)
        rule = make_rule(
            kind=RuleKind.PRODUCT,
            discount_type=DiscountType.TIERED,
            value=Decimal("0"),
            tiers=[DiscountTier(min_quantity=3, percent=Decimal("10"))],
        )
        db_rule = await rule_repo.create(rule)

        restored = rule_repo.to_model(db_rule)

        assert restored.tiers[0].min_quantity == 3
        assert restored.tiers[0].percent == Decimal("10")

    async def test_get_nonexistent_rule(self, db_session):
        """测试获取不存在的规则"""
        rule_repo = DiscountRuleRepository(db_session)
        assert await rule_repo.get_by_id("missing") is None
        assert await rule_repo.get_by_code("MISSING") is None

    async def test_code_exists(self, db_session):
        rule_repo = DiscountRuleRepository(db_session)
        await rule_repo.create(make_rule())

        assert await rule_repo.code_exists("SAVE20") is True
        assert await rule_repo.code_exists("SAVE20", exclude_rule_id="rule_001") is False
        assert await rule_repo.code_exists("OTHER") is False

    async def test_get_automatic_rules(self, db_session):
        """测试只返回启用的活动/商品规则，按优先级排序"""
        rule_repo = DiscountRuleRepository(db_session)
        await rule_repo.create(make_rule("rule_code"))
        await rule_repo.create(make_rule("rule_low", kind=RuleKind.PRODUCT, priority=1, shop_id="shop_1"))
        await rule_repo.create(make_rule("rule_high", kind=RuleKind.PRODUCT, priority=5, shop_id="shop_1"))
        await rule_repo.create(make_rule("rule_off", kind=RuleKind.PRODUCT, is_active=False, shop_id="shop_1"))
        await rule_repo.create(make_rule("rule_other", kind=RuleKind.PRODUCT, shop_id="shop_2"))

        rules = await rule_repo.get_automatic_rules("shop_1")

        assert [rule.rule_id for rule in rules] == ["rule_high", "rule_low"]

    async def test_get_by_codes(self, db_session):
        rule_repo = DiscountRuleRepository(db_session)
        await rule_repo.create(make_rule("rule_a", code="AAA111"))
        await rule_repo.create(make_rule("rule_b", code="BBB222"))

        rules = await rule_repo.get_by_codes(["AAA111", "CCC333"])

        assert [rule.rule_id for rule in rules] == ["rule_a"]
        assert await rule_repo.get_by_codes([]) == []

    async def test_list_rules_filters(self, db_session):
        """测试列表筛选"""
        rule_repo = DiscountRuleRepository(db_session)
        await rule_repo.create(make_rule("rule_live", code="LIVE10", name="周年庆"))
        await rule_repo.create(make_rule(
            "rule_expired",
            code="OLD10",
            valid_from=NOW - timedelta(days=30),
            valid_until=NOW - timedelta(days=1),
        ))
        await rule_repo.create(make_rule("rule_off", code="OFF10", is_active=False))

        active, active_total = await rule_repo.list_rules(status=RuleListStatus.ACTIVE, current_time=NOW)
        expired, _ = await rule_repo.list_rules(status=RuleListStatus.EXPIRED, current_time=NOW)
        inactive, _ = await rule_repo.list_rules(status=RuleListStatus.INACTIVE, current_time=NOW)
        searched, _ = await rule_repo.list_rules(search="周年", current_time=NOW)
        _, total = await rule_repo.list_rules(limit=1, current_time=NOW)

        assert [rule.rule_id for rule in active] == ["rule_live"]
        assert active_total == 1
        assert [rule.rule_id for rule in expired] == ["rule_expired"]
        assert [rule.rule_id for rule in inactive] == ["rule_off"]
        assert [rule.rule_id for rule in searched] == ["rule_live"]
        assert total == 3

    async def test_update_and_set_active(self, db_session):
        rule_repo = DiscountRuleRepository(db_session)
        rule = make_rule()
        await rule_repo.create(rule)

        updated = await rule_repo.update(rule.model_copy(update={"value": Decimal("35"), "priority": 4}))
        assert updated.value == Decimal("35")
        assert updated.priority == 4

        assert await rule_repo.set_active("rule_001", False) is True
        db_rule = await rule_repo.refresh("rule_001")
        assert db_rule.is_active is False

    async def test_update_missing_rule(self, db_session):
        rule_repo = DiscountRuleRepository(db_session)
        assert await rule_repo.update(make_rule("missing")) is None
        assert await rule_repo.set_active("missing", True) is False

    async def test_delete_and_event_rules(self, db_session):
        rule_repo = DiscountRuleRepository(db_session)
        await rule_repo.create(make_rule("rule_evt", kind=RuleKind.EVENT, event_id="evt_001"))

        assert len(await rule_repo.get_event_rules("evt_001")) == 1
        assert await rule_repo.delete("rule_evt") is True
        assert await rule_repo.get_event_rules("evt_001") == []
