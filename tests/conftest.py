"""
Pytest configuration and shared fixtures.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest
import pytest_asyncio

from shopsync.models import ShopConnection
from shopsync.shopify import ShopifyClient
from shopsync.store import SyncStore

SHOP = "test-shop.myshopify.com"
TOKEN = "shpat_test_token"

RESOURCE_PATHS = {
    "/orders.json": "orders",
    "/shopify_payments/payouts.json": "payouts",
    "/shopify_payments/balance/transactions.json": "transactions",
}


# ═══════════════════════════════════════════════════════════════════════════════
# SAMPLE PAYLOADS
# ═══════════════════════════════════════════════════════════════════════════════

def make_refund(
    amount: str = "5.00",
    txn_id: int = 9001,
    kind: str = "refund",
    status: str = "success",
    processed_at: Optional[str] = "2026-01-12T09:00:00Z",
) -> Dict[str, Any]:
    """Refund object as embedded in a Shopify order."""
    return {
        "id": txn_id + 100000,
        "created_at": "2026-01-12T08:59:00Z",
        "processed_at": processed_at,
        "transactions": [
            {"id": txn_id, "kind": kind, "status": status, "amount": amount},
        ],
    }


def make_order(
    order_id: int = 1001,
    total_price: str = "19.99",
    total_tax: str = "1.00",
    shipping: str = "4.50",
    financial_status: str = "paid",
    refunds: Optional[List[Dict[str, Any]]] = None,
    updated_at: str = "2026-01-10T12:00:00Z",
) -> Dict[str, Any]:
    """Order object from the Shopify orders endpoint."""
    return {
        "id": order_id,
        "name": f"#{order_id}",
        "created_at": "2026-01-10T10:00:00Z",
        "updated_at": updated_at,
        "financial_status": financial_status,
        "total_price": total_price,
        "total_tax": total_tax,
        "total_shipping_price_set": {
            "shop_money": {"amount": shipping, "currency_code": "USD"},
            "presentment_money": {"amount": shipping, "currency_code": "USD"},
        },
        "currency": "USD",
        "refunds": refunds or [],
    }


def make_payout(
    payout_id: int = 501,
    amount: str = "95.20",
    charges_fee: str = "2.90",
    adjustments_fee: str = "0.00",
    refunds_fee: str = "0.30",
) -> Dict[str, Any]:
    """Payout object from the Shopify Payments payouts endpoint."""
    return {
        "id": payout_id,
        "status": "paid",
        "date": "2026-01-15",
        "currency": "USD",
        "amount": amount,
        "summary": {
            "charges_fee_amount": charges_fee,
            "adjustments_fee_amount": adjustments_fee,
            "refunds_fee_amount": refunds_fee,
        },
    }


def make_transaction(
    txn_id: int = 801,
    source_order_id: Optional[int] = 1001,
    fee: str = "0.88",
    txn_type: str = "charge",
) -> Dict[str, Any]:
    """Balance transaction from the Shopify Payments balance endpoint."""
    return {
        "id": txn_id,
        "type": txn_type,
        "source_order_id": source_order_id,
        "amount": "19.99",
        "fee": fee,
        "net": "19.11",
        "currency": "USD",
        "processed_at": "2026-01-10T10:05:00Z",
    }


# ═══════════════════════════════════════════════════════════════════════════════
# FAKE SHOPIFY
# ═══════════════════════════════════════════════════════════════════════════════

class FakeShopify:
    """
    In-memory Shopify Admin API served through httpx.MockTransport.

    Lists are split into pages of ``page_size`` linked with Link headers.
    Resources named in ``unavailable`` answer 403, those in ``errors``
    answer with the given status. ``gate`` holds every request until set;
    ``gates`` holds only requests for the named resource.
    """

    def __init__(self, shop: str = SHOP, page_size: int = 250):
        self.shop = shop
        self.page_size = page_size
        self.data: Dict[str, List[Dict[str, Any]]] = {
            "orders": [],
            "payouts": [],
            "transactions": [],
        }
        self.unavailable: Set[str] = set()
        self.errors: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []
        self.gate: Optional[asyncio.Event] = None
        self.gates: Dict[str, asyncio.Event] = {}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()

        path = request.url.path
        key = next((k for suffix, k in RESOURCE_PATHS.items() if path.endswith(suffix)), None)
        if key is None:
            return httpx.Response(404, json={"errors": "Not Found"})
        if key in self.gates:
            await self.gates[key].wait()
        if key in self.unavailable:
            return httpx.Response(403, json={"errors": "Forbidden"})
        if key in self.errors:
            return httpx.Response(self.errors[key], text="Internal Server Error")

        page = int(request.url.params.get("page_info", "0"))
        start = page * self.page_size
        chunk = self.data[key][start:start + self.page_size]
        headers = {}
        if start + self.page_size < len(self.data[key]):
            next_url = f"https://{self.shop}{path}?limit={self.page_size}&page_info={page + 1}"
            headers["Link"] = f'<{next_url}>; rel="next"'
        return httpx.Response(200, json={key: chunk}, headers=headers)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def client_factory(self, connection: ShopConnection) -> ShopifyClient:
        return ShopifyClient(
            connection.shop,
            connection.access_token,
            http_client=self.http_client(),
            page_delay=0,
        )

    def requests_for(self, resource_key: str) -> List[httpx.Request]:
        suffix = next(s for s, k in RESOURCE_PATHS.items() if k == resource_key)
        return [r for r in self.requests if r.url.path.endswith(suffix)]


class FakeClock:
    """Aware UTC clock that advances one minute per reading."""

    def __init__(self, start: datetime = datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(minutes=1)
        return current


# ═══════════════════════════════════════════════════════════════════════════════
# FIXTURES
# ═══════════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path):
    """Empty store on a temporary DuckDB file."""
    sync_store = SyncStore(tmp_path / "shopsync_test.duckdb")
    await sync_store.connect()
    yield sync_store
    await sync_store.close()


@pytest_asyncio.fixture
async def connected_store(store):
    """Store with a shop connection saved."""
    await store.save_shop_connection(SHOP, TOKEN)
    return store
