"""
API接口测试
使用临时SQLite数据库与进程内使用记录，不启动应用生命周期
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from promotions.api.deps import get_usage_ledger
from promotions.core.database import Base, get_db_session
from promotions.main import app
from promotions.models import database  # noqa: F401  注册表结构
from promotions.repositories.usage_ledger import InMemoryUsageLedger


@pytest.fixture
def client(tmp_path):
    """测试客户端，覆盖数据库会话与使用记录依赖"""
    db_path = tmp_path / "api_test.db"
    sync_engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()

    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db_session():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    ledger = InMemoryUsageLedger()
    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_usage_ledger] = lambda: ledger

    yield TestClient(app)

    app.dependency_overrides.clear()


def iso(delta: timedelta) -> str:
    return (datetime.now(timezone.utc) + delta).isoformat()


def create_code_rule(client, **overrides):
    payload = {
        "kind": "CODE",
        "name": "新人立减",
        "code": "save20",
        "discount_type": "PERCENTAGE",
        "value": "20",
        "usage_limit_per_user": 1,
    }
    payload.update(overrides)
    response = client.post("/discounts", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def checkout_payload(**overrides):
    payload = {
        "lines": [{"line_id": "L1", "product_id": "P1", "quantity": 1, "unit_price": "199.99"}],
        "customer_id": "cust_001",
        "candidate_codes": ["SAVE20"],
    }
    payload.update(overrides)
    return payload


class TestHealthApi:
    """健康检查接口"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/health"


class TestDiscountApi:
    """优惠规则接口测试类"""

    def test_create_and_get_rule(self, client):
        """测试创建并查询规则"""
        rule = create_code_rule(client)

        response = client.get(f"/discounts/{rule['rule_id']}")

        assert response.status_code == 200
        assert response.json()["code"] == "SAVE20"

    def test_duplicate_code_rejected(self, client):
        create_code_rule(client)

        response = client.post("/discounts", json={
            "kind": "CODE",
            "name": "重复",
            "code": "SAVE20",
            "discount_type": "FIXED_AMOUNT",
            "value": "5",
        })

        assert response.status_code == 409
        assert response.json()["code"] == "CODE_EXISTS"

    def test_invalid_rule_rejected(self, client):
        """测试不合法的规则在创建时被拒绝"""
        response = client.post("/discounts", json={
            "kind": "CODE",
            "name": "超额折扣",
            "code": "TOOMUCH",
            "discount_type": "PERCENTAGE",
            "value": "150",
        })

        assert response.status_code == 422
        assert response.json()["code"] == "RULE_VALIDATION_ERROR"

    def test_rule_not_found(self, client):
        response = client.get("/discounts/missing")

        assert response.status_code == 404
        assert response.json()["code"] == "RULE_NOT_FOUND"

    def test_validate_code(self, client):
        """测试优惠码校验 199.99 × 20%"""
        create_code_rule(client)

        response = client.post("/discounts/validate", json={"code": "save20", "cart_total": "199.99"})

        assert response.status_code == 200
        body = response.json()
        assert body["valid"] is True
        assert Decimal(body["discount_amount"]) == Decimal("40.00")
        assert Decimal(body["final_amount"]) == Decimal("159.99")

    def test_validate_unknown_code(self, client):
        response = client.post("/discounts/validate", json={"code": "NOPE", "cart_total": "10"})

        assert response.json()["valid"] is False
        assert response.json()["errors"] == ["CODE_NOT_FOUND"]

    def test_list_and_toggle(self, client):
        rule = create_code_rule(client)

        response = client.post(f"/discounts/{rule['rule_id']}/active", json={"is_active": False})
        assert response.status_code == 200
        assert response.json()["is_active"] is False

        inactive = client.get("/discounts", params={"status": "inactive"}).json()
        active = client.get("/discounts", params={"status": "active"}).json()
        assert inactive["total"] == 1
        assert active["total"] == 0

    def test_update_rule(self, client):
        rule = create_code_rule(client)

        response = client.patch(f"/discounts/{rule['rule_id']}", json={"value": "25", "priority": 3})

        assert response.status_code == 200
        assert Decimal(response.json()["value"]) == Decimal("25")
        assert response.json()["priority"] == 3


class TestCheckoutApi:
    """结算接口测试类"""

    def test_preview_and_commit(self, client):
        """测试预览、提交、重复提交与冲正"""
        rule = create_code_rule(client)

        preview = client.post("/checkout/preview", json=checkout_payload())
        assert preview.status_code == 200
        assert Decimal(preview.json()["resolution"]["total_discount"]) == Decimal("40.00")

        committed = client.post("/checkout/commit", json=checkout_payload(order_id="order_001"))
        assert committed.status_code == 200
        assert committed.json()["committed_rule_ids"] == [rule["rule_id"]]

        replayed = client.post("/checkout/commit", json=checkout_payload(order_id="order_001"))
        assert replayed.json()["replayed"] is True

        usage = client.get(f"/discounts/{rule['rule_id']}/usage").json()
        assert usage["used"] == 1

        second = client.post("/checkout/commit", json=checkout_payload(order_id="order_002")).json()
        assert second["committed_rule_ids"] == []
        assert second["ineligible"][0]["reason_codes"] == ["USER_USAGE_LIMIT_REACHED"]

        # 已使用的规则不能删除
        assert client.delete(f"/discounts/{rule['rule_id']}").status_code == 409

        reversed_order = client.post("/checkout/orders/order_001/reverse").json()
        assert reversed_order["reversed_count"] == 1
        assert client.get(f"/discounts/{rule['rule_id']}/usage").json()["used"] == 0
        # 冲正后的历史记录仍引用该规则
        assert client.delete(f"/discounts/{rule['rule_id']}").status_code == 409

        # 已冲正的订单不能再次提交
        recommit = client.post("/checkout/commit", json=checkout_payload(order_id="order_001"))
        assert recommit.status_code == 409
        assert recommit.json()["code"] == "ORDER_REVERSED"

    def test_empty_cart_rejected(self, client):
        response = client.post("/checkout/preview", json=checkout_payload(lines=[]))

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestEventApi:
    """活动接口测试类"""

    def test_event_discount_follows_event_state(self, client):
        """测试活动折扣随活动暂停失效"""
        response = client.post("/events", json={
            "title": "周末闪购",
            "schedule_mode": "now",
            "ending_date": iso(timedelta(days=2)),
        })
        assert response.status_code == 201, response.text
        event_id = response.json()["event_id"]

        status = client.get(f"/events/{event_id}/status").json()
        assert status["status"] == "ACTIVE"

        create_code_rule(
            client,
            kind="EVENT",
            code=None,
            event_id=event_id,
            name="闪购九折",
            value="10",
            usage_limit_per_user=None,
        )
        payload = checkout_payload(candidate_codes=[])

        preview = client.post("/checkout/preview", json=payload).json()
        assert Decimal(preview["resolution"]["total_discount"]) == Decimal("20.00")

        assert client.post(f"/events/{event_id}/pause").json()["is_active"] is False
        preview = client.post("/checkout/preview", json=payload).json()
        assert preview["resolution"]["applied_rules"] == []
        assert preview["ineligible"][0]["reason_codes"] == ["EVENT_NOT_ACTIVE"]

        # 仍有关联规则的活动不能删除
        assert client.delete(f"/events/{event_id}").status_code == 409

    def test_event_in_past_rejected(self, client):
        response = client.post("/events", json={
            "title": "过去的活动",
            "starting_date": iso(timedelta(days=-2)),
            "ending_date": iso(timedelta(days=1)),
        })

        assert response.status_code == 422
        assert response.json()["code"] == "RULE_VALIDATION_ERROR"

    def test_list_events(self, client):
        client.post("/events", json={
            "title": "下周活动",
            "starting_date": iso(timedelta(days=7)),
            "ending_date": iso(timedelta(days=8)),
        })

        body = client.get("/events", params={"status": "upcoming"}).json()

        assert body["total"] == 1
        assert body["items"][0]["status"]["status"] == "UPCOMING"
