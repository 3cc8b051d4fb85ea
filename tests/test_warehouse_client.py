"""
Tests for the warehouse order source client.
"""
import json
from urllib.parse import parse_qs

import httpx
import pytest

from conftest import FakeClock
from shipbridge.core.exceptions import WarehouseError
from shipbridge.core.token_cache import TokenCache
from shipbridge.services.warehouse_client import WarehouseClient, WarehouseOrder

BASE_URL = "https://warehouse.test"

ORDER_RECORD = {
    "id": "cc-1",
    "orderNumber": "SO-1001",
    "customer": {"name": "Aroha Ngata", "email": "aroha@example.test"},
    "deliveryAddress": {
        "street": "7 Kowhai Street",
        "suburb": "Mount Eden",
        "city": "Auckland",
        "postcode": "1024",
        "country": "NZ",
    },
    "items": [{"id": "i1", "description": "Electronics Box", "quantity": 1, "weight": 2.5}],
    "status": "open",
}


class FakeWarehouse:
    """Routes token and order requests; records what it saw."""

    def __init__(self, orders_status=200, reject_first_token=False):
        self.token_requests = []
        self.api_requests = []
        self.orders_status = orders_status
        self.reject_first_token = reject_first_token

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/token":
            self.token_requests.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={
                "access_token": f"tok-{len(self.token_requests)}",
                "expires_in": 3600,
            })

        self.api_requests.append(request)
        if self.reject_first_token and request.headers["Authorization"] == "Bearer tok-1":
            return httpx.Response(401, text="expired")

        if request.method == "PATCH":
            body = json.loads(request.content)
            return httpx.Response(200, json={"data": dict(ORDER_RECORD, **body)})

        if request.url.path == "/api/v1/orders":
            return httpx.Response(self.orders_status, json={
                "data": [ORDER_RECORD, {"id": "cc-2", "reference": "REF-2", "items": "not-a-list"}],
                "meta": {"total": 42, "current_page": 3, "per_page": 2},
            })

        if request.url.path == "/api/v1/orders/cc-1":
            return httpx.Response(200, json={"data": ORDER_RECORD})

        return httpx.Response(404, text="Not found")


def make_client(fake: FakeWarehouse) -> WarehouseClient:
    return WarehouseClient(
        base_url=BASE_URL,
        client_id="client",
        client_secret="secret",
        tenant_uuid="tenant-uuid",
        customer_uuid="customer-uuid",
        token_cache=TokenCache(clock=FakeClock()),
        transport=httpx.MockTransport(fake),
    )


class TestWarehouseClient:

    @pytest.mark.asyncio
    async def test_list_orders_sends_auth_and_filters(self):
        fake = FakeWarehouse()
        client = make_client(fake)
        try:
            page = await client.list_orders(page=3, per_page=2, status="open", search="Aroha")
        finally:
            await client.close()

        assert fake.token_requests[0]["grant_type"] == ["client_credentials"]
        assert fake.token_requests[0]["client_id"] == ["client"]

        request = fake.api_requests[0]
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["X-Tenant-UUID"] == "tenant-uuid"
        assert request.url.params["status"] == "open"
        assert request.url.params["search"] == "Aroha"
        assert request.url.params["customer_uuid"] == "customer-uuid"

        assert page.total == 42
        assert page.page == 3
        assert page.per_page == 2

    @pytest.mark.asyncio
    async def test_unparseable_record_degrades_to_minimal(self):
        client = make_client(FakeWarehouse())
        try:
            page = await client.list_orders()
        finally:
            await client.close()

        full, minimal = page.orders
        assert full.display_number == "SO-1001"
        assert full.items_list()[0]["weight"] == 2.5
        assert minimal.id == "cc-2"
        assert minimal.display_number == "REF-2"
        assert minimal.items is None

    @pytest.mark.asyncio
    async def test_token_cached_between_calls(self):
        fake = FakeWarehouse()
        client = make_client(fake)
        try:
            await client.get_order("cc-1")
            await client.get_order("cc-1")
        finally:
            await client.close()

        assert len(fake.token_requests) == 1

    @pytest.mark.asyncio
    async def test_unauthorized_refreshes_token_once(self):
        fake = FakeWarehouse(reject_first_token=True)
        client = make_client(fake)
        try:
            order = await client.get_order("cc-1")
        finally:
            await client.close()

        assert order.id == "cc-1"
        assert len(fake.token_requests) == 2
        assert fake.api_requests[-1].headers["Authorization"] == "Bearer tok-2"

    @pytest.mark.asyncio
    async def test_missing_order_raises_with_status(self):
        client = make_client(FakeWarehouse())
        try:
            with pytest.raises(WarehouseError) as exc_info:
                await client.get_order("nope")
        finally:
            await client.close()

        assert exc_info.value.details["status_code"] == 404

    @pytest.mark.asyncio
    async def test_update_order_patches_tracking(self):
        fake = FakeWarehouse()
        client = make_client(fake)
        try:
            order = await client.update_order("cc-1", tracking_number="TRK1", tracking_url="https://t/TRK1")
        finally:
            await client.close()

        request = fake.api_requests[-1]
        assert request.method == "PATCH"
        assert json.loads(request.content) == {"trackingNumber": "TRK1", "trackingUrl": "https://t/TRK1"}
        assert order.id == "cc-1"

    def test_is_configured(self):
        assert make_client(FakeWarehouse()).is_configured is True
        assert WarehouseClient(base_url="", client_id="", client_secret="").is_configured is False


class TestWarehouseOrder:

    def test_reference_used_when_no_order_number(self):
        order = WarehouseOrder.model_validate({"id": "x", "reference": "REF-9"})

        assert order.display_number == "REF-9"

    def test_non_finite_weight_dropped(self):
        record = dict(ORDER_RECORD, items=[{"description": "Box", "weight": float("nan"), "length": float("inf")}])

        order = WarehouseOrder.model_validate(record)

        assert order.items_list() == [{"description": "Box"}]
