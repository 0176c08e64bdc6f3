"""
CheckoutService结算优惠测试
"""

import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from promotions.core.exceptions import OrderReversedError, UsageLimitExceededError
from promotions.models.discount import RuleKind
from promotions.models.order import ReasonCode
from promotions.repositories.discount_repository import DiscountRuleRepository
from promotions.repositories.event_repository import EventRepository
from promotions.repositories.usage_ledger import EMPTY_SNAPSHOT, InMemoryUsageLedger
from promotions.services.checkout_service import CheckoutService

from factories import NOW, make_context, make_event, make_line, make_rule


@pytest.mark.asyncio
class TestCheckoutService:
    """结算优惠测试类"""

    @pytest.fixture
    def automatic_rules(self):
        return []

    @pytest.fixture
    def code_rules(self):
        return [make_rule("rule_code", usage_limit_per_user=1)]

    @pytest.fixture
    def mock_rule_repo(self, automatic_rules, code_rules):
        """模拟DiscountRuleRepository，规则模型直接作为数据库对象返回"""
        repo = AsyncMock(spec=DiscountRuleRepository)
        repo.to_model = MagicMock(side_effect=lambda db_rule: db_rule)
        repo.get_automatic_rules.return_value = automatic_rules
        repo.get_by_codes.side_effect = lambda codes: [rule for rule in code_rules if rule.code in codes]
        repo.get_by_id.side_effect = lambda rule_id: next(
            (rule for rule in automatic_rules + code_rules if rule.rule_id == rule_id), None
        )
        return repo

    @pytest.fixture
    def mock_event_repo(self):
        repo = AsyncMock(spec=EventRepository)
        repo.to_model = MagicMock(side_effect=lambda db_event: db_event)
        repo.get_by_ids.return_value = []
        return repo

    @pytest.fixture
    def ledger(self):
        return InMemoryUsageLedger()

    @pytest.fixture
    def service(self, mock_rule_repo, mock_event_repo, ledger):
        return CheckoutService(mock_rule_repo, mock_event_repo, ledger)

    @pytest.fixture
    def ctx(self):
        return make_context(
            make_line(unit_price="100.00"),
            customer_id="cust_001",
            candidate_codes=["SAVE20"],
        )

    async def test_preview(self, service, ctx, ledger):
        """测试预览计算且不写入使用记录"""
        # 调用方法
        preview = await service.preview(ctx, now=NOW)

        # 验证结果
        assert preview.resolution.applied_rule_ids == ["rule_code"]
        assert preview.resolution.total_discount == Decimal("20.00")
        assert preview.evaluated_at == NOW
        assert await ledger.count("rule_code") == 0

    async def test_preview_reports_unknown_code(self, service):
        ctx = make_context(candidate_codes=["MISSING"])

        preview = await service.preview(ctx, now=NOW)

        assert preview.resolution.applied_rules == []
        assert len(preview.ineligible) == 1
        assert preview.ineligible[0].code == "MISSING"
        assert preview.ineligible[0].rule_id is None
        assert preview.ineligible[0].reason_codes == [ReasonCode.CODE_NOT_FOUND]

    async def test_commit_records_usage(self, service, ctx, ledger):
        """测试提交写入使用记录"""
        result = await service.commit("order_001", ctx, now=NOW)

        assert result.committed_rule_ids == ["rule_code"]
        assert result.replayed is False
        assert await ledger.count("rule_code") == 1
        assert await ledger.count("rule_code", customer_id="cust_001") == 1

        records = await ledger.get_order_records("order_001")
        assert records[0].discount_amount == Decimal("20.00")

    async def test_second_order_no_longer_eligible(self, service, ctx):
        """测试用完个人次数后新订单不再享受优惠"""
        await service.commit("order_001", ctx, now=NOW)

        result = await service.commit("order_002", ctx, now=NOW)

        assert result.committed_rule_ids == []
        assert result.resolution.total_discount == Decimal("0.00")
        assert result.ineligible[0].code == "SAVE20"
        assert result.ineligible[0].reason_codes == [ReasonCode.USER_USAGE_LIMIT_REACHED]

    async def test_same_order_commit_is_replayed(self, service, ctx, ledger):
        """测试同一订单重复提交不重复计数"""
        first = await service.commit("order_001", ctx, now=NOW)
        second = await service.commit("order_001", ctx, now=NOW)

        assert second.replayed is True
        assert second.committed_rule_ids == first.committed_rule_ids
        assert second.resolution.total_discount == first.resolution.total_discount
        assert await ledger.count("rule_code") == 1

    async def test_concurrent_commits_only_one_succeeds(self, service, ctx, ledger):
        """测试两个订单基于同一快照并发提交，只有一个成功"""
        # 两次计算都读到提交前的快照
        ledger.snapshot = AsyncMock(return_value=EMPTY_SNAPSHOT)

        results = await asyncio.gather(
            service.commit("order_a", ctx, now=NOW),
            service.commit("order_b", ctx, now=NOW),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, UsageLimitExceededError)]
        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(errors) == 1
        assert len(successes) == 1
        assert errors[0].rule_id == "rule_code"
        assert await ledger.count("rule_code", customer_id="cust_001") == 1

    async def test_reverse_restores_usage(self, service, ctx, ledger):
        await service.commit("order_001", ctx, now=NOW)

        reversed_records = await service.reverse("order_001")

        assert len(reversed_records) == 1
        assert await ledger.count("rule_code", customer_id="cust_001") == 0
        result = await service.commit("order_002", ctx, now=NOW)
        assert result.committed_rule_ids == ["rule_code"]

    async def test_reversed_order_cannot_be_committed_again(self, service, ctx, ledger):
        await service.commit("order_001", ctx, now=NOW)
        await service.reverse("order_001")

        with pytest.raises(OrderReversedError):
            await service.commit("order_001", ctx, now=NOW)

        assert await ledger.count("rule_code") == 0

    @pytest.mark.parametrize("automatic_rules", [[
        make_rule("rule_event", kind=RuleKind.EVENT, event_id="evt_001", value="10", priority=1),
    ]])
    async def test_event_rule_requires_live_event(self, service, mock_event_repo, ctx):
        """测试活动折扣只在活动进行中生效"""
        preview = await service.preview(ctx, now=NOW)
        assert "rule_event" not in preview.resolution.applied_rule_ids
        assert preview.ineligible[0].reason_codes == [ReasonCode.EVENT_NOT_FOUND]

        mock_event_repo.get_by_ids.return_value = [make_event()]
        preview = await service.preview(ctx, now=NOW)
        assert preview.resolution.applied_rule_ids == ["rule_event"]
        assert preview.resolution.dropped_rules[0].rule_id == "rule_code"
        assert preview.resolution.dropped_rules[0].reason == ReasonCode.NON_STACKABLE_CONFLICT
