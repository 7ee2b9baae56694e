import json, uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio

from app.agents.courier import CourierAgent
from app.config import HubSettings, settings
from app.errors import NotFoundError
from app.main import app, get_courier_agent, get_postgres_agent
from app.schemas.delivery_company import DeliveryCompany, DeliveryCompanyBase
from app.schemas.order import Order


def make_order(**overrides: Any) -> Order:
    data = {
        "id": str(uuid.uuid4()),
        "orderNumber": "ORD-1001",
        "status": "pending",
        "items": [{"product": "p-1", "name": "Widget", "quantity": 2, "price": 10}],
        "customerInfo": {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "mobile": "+1 (555) 123-4567",
        },
        "shippingAddress": {"street": "1 Main St", "city": "Springfield", "country": "US"},
        "totalAmount": 20,
        "shippingFee": 5,
    }
    data.update(overrides)
    return Order.model_validate(data)


def make_company(**overrides: Any) -> DeliveryCompany:
    data = {
        "id": str(uuid.uuid4()),
        "name": "Fast Courier",
        "code": "FAST",
        "apiConfiguration": {"baseUrl": "https://api.courier.test/orders", "format": "rest"},
    }
    data.update(overrides)
    return DeliveryCompany.model_validate(data)


class FakePostgresAgent:
    """In-memory stand-in for PostgresAgent with the same coroutine surface"""

    def __init__(self):
        self.companies: dict[uuid.UUID, DeliveryCompany] = {}
        self.orders: dict[uuid.UUID, Order] = {}
        self.commits = 0

    def add_company(self, company: DeliveryCompany) -> DeliveryCompany:
        self.companies[company.id] = company
        return company

    def add_order(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    async def list_companies(self, active_only: bool = False, ids: list[uuid.UUID] | None = None) -> list[DeliveryCompany]:
        companies = sorted(self.companies.values(), key=lambda c: c.name)
        if ids:
            return [c for c in companies if c.id in ids]
        if active_only:
            return [c for c in companies if c.is_active]
        return companies

    async def get_company(self, company_id: uuid.UUID) -> DeliveryCompany | None:
        return self.companies.get(company_id)

    async def get_company_by_code(self, code: str) -> DeliveryCompany | None:
        return next((c for c in self.companies.values() if c.code == code), None)

    async def get_fallback_company(self) -> DeliveryCompany | None:
        active = sorted((c for c in self.companies.values() if c.is_active), key=lambda c: (not c.is_default, c.name))
        return active[0] if active else None

    async def get_auto_dispatch_company(self) -> DeliveryCompany | None:
        candidates = [c for c in self.companies.values() if c.is_active and c.auto_dispatch_on_order_create]
        candidates.sort(key=lambda c: not c.is_default)
        return candidates[0] if candidates else None

    async def insert_company(self, company: DeliveryCompanyBase) -> DeliveryCompany:
        created = DeliveryCompany.model_validate({**company.model_dump(), "id": uuid.uuid4()})
        return self.add_company(created)

    async def update_company(self, company_id: uuid.UUID, data: dict[str, Any]) -> DeliveryCompany | None:
        current = self.companies.get(company_id)
        if current is None:
            return None
        updated = DeliveryCompany.model_validate({**current.model_dump(mode="json"), **data})
        return self.add_company(updated)

    async def delete_company(self, company_id: uuid.UUID) -> bool:
        return self.companies.pop(company_id, None) is not None

    async def insert_order(self, order: Order) -> Order:
        stored = order.model_copy(update={"id": order.id or uuid.uuid4(), "created_at": datetime.now()})
        return self.add_order(stored)

    async def get_order(self, order_id: uuid.UUID) -> Order | None:
        return self.orders.get(order_id)

    async def list_delivery_orders(self, order_id: uuid.UUID | None = None, limit: int = 50) -> list[Order]:
        orders = [o for o in self.orders.values() if order_id is None or o.id == order_id]
        orders.sort(key=lambda o: o.delivery_assigned_at or datetime.min, reverse=True)
        return orders[:limit]

    @asynccontextmanager
    async def transaction(self):
        pending: dict[uuid.UUID, dict[str, Any]] = {}
        yield pending
        for order_id, fields in pending.items():
            self._write(order_id, fields)
        self.commits += 1

    async def save_delivery(self, db: dict, order_id: uuid.UUID, fields: dict[str, Any]) -> None:
        if order_id not in self.orders:
            raise NotFoundError("Order not found")
        db[order_id] = fields

    async def assign_orders(self, order_ids: list[uuid.UUID], fields: dict[str, Any]) -> int:
        found = [order_id for order_id in order_ids if order_id in self.orders]
        for order_id in found:
            self._write(order_id, fields)
        return len(found)

    def _write(self, order_id: uuid.UUID, fields: dict[str, Any]):
        self.orders[order_id] = Order.model_validate({**self.orders[order_id].model_dump(), **fields})


class FakeProvider:
    """Records outbound requests and answers them with ``responder``"""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responder: Callable[[httpx.Request], httpx.Response] = lambda request: httpx.Response(200, json={})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def json_bodies(self) -> list[Any]:
        return [json.loads(r.content) for r in self.requests if r.content]


@pytest.fixture(params=[True, False], ids=["debug", "quiet"])
def delivery_debug(request, monkeypatch) -> bool:
    """Runs a test with debug logging switched on and then off"""
    monkeypatch.setattr(settings, "ENVIRONMENT", "development" if request.param else "production")
    monkeypatch.setattr(settings, "DELIVERY_DEBUG", "true" if request.param else "")
    return request.param


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest_asyncio.fixture
async def http_client(provider):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider)) as client:
        yield client


@pytest.fixture
def courier(http_client) -> CourierAgent:
    return CourierAgent(HubSettings(), http_client)


@pytest.fixture
def postgres() -> FakePostgresAgent:
    return FakePostgresAgent()


@pytest_asyncio.fixture
async def api(postgres, courier):
    app.dependency_overrides[get_postgres_agent] = lambda: postgres
    app.dependency_overrides[get_courier_agent] = lambda: courier
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
