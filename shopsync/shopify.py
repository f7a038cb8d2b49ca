"""
Async client for the Shopify Admin REST API.

Exposes the three resource streams the sync engine consumes (orders,
payouts, balance transactions), the OAuth token exchange, and webhook
signature verification.

Usage:
    async with ShopifyClient(shop, token) as client:
        stream = client.orders(since=watermark)
        async for page in stream:
            ...
"""
import base64
import binascii
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from shopsync.config import config
from shopsync.exceptions import ShopifyConnectionError, ShopifyOAuthError
from shopsync.models import BalanceTransaction, ShopifyOrder, ShopifyPayout
from shopsync.observability import get_logger
from shopsync.pagination import PageStream, ShopifyPaginator
from shopsync.resilience import RetryConfig, with_retry

logger = get_logger(__name__)

# Only the fields the profit math needs
ORDER_FIELDS = ",".join([
    "id",
    "name",
    "created_at",
    "updated_at",
    "financial_status",
    "total_price",
    "total_tax",
    "total_shipping_price_set",
    "currency",
    "refunds",
])


class ShopifyClient:
    """
    Async client for one connected Shopify shop.

    Usage:
        async with ShopifyClient("my-shop.myshopify.com", token) as client:
            async for page in client.payouts():
                ...

        # Or with manual lifecycle:
        client = ShopifyClient(shop, token)
        await client.connect()
        try:
            ...
        finally:
            await client.close()
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
        page_limit: Optional[int] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        **paginator_options: Any,
    ):
        """
        Initialize Shopify client.

        Args:
            shop: Shop domain (e.g. my-shop.myshopify.com)
            access_token: Admin API access token for the shop
            api_version: Admin API version (defaults to config)
            timeout: Per-request timeout in seconds (defaults to config)
            page_limit: Records per page (Shopify max is 250)
            http_client: Pre-built httpx client (tests inject a MockTransport)
            **paginator_options: Overrides for ShopifyPaginator (page_delay, sleep, ...)
        """
        if not shop or not access_token:
            raise ValueError("Shop domain and access token must be provided")

        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or config.shopify.api_version
        self.timeout = timeout or config.shopify.request_timeout
        self.page_limit = page_limit or config.shopify.page_limit
        self._client: Optional[httpx.AsyncClient] = http_client
        self._owns_client = http_client is None
        self._paginator_options = {
            "page_delay": config.shopify.page_delay,
            "default_retry_after": config.shopify.default_retry_after,
            "max_rate_limit_retries": config.shopify.max_rate_limit_retries,
            **paginator_options,
        }
        self._paginator: Optional[ShopifyPaginator] = None

    @property
    def base_url(self) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}"

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                ),
            )
            self._owns_client = True

    async def close(self) -> None:
        """Close HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        self._paginator = None

    async def __aenter__(self) -> "ShopifyClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def paginator(self) -> ShopifyPaginator:
        if self._client is None:
            raise RuntimeError("ShopifyClient is not connected")
        if self._paginator is None:
            self._paginator = ShopifyPaginator(
                self._client, self.access_token, **self._paginator_options
            )
        return self._paginator

    # ═══════════════════════════════════════════════════════════════════════════
    # RESOURCE STREAMS
    # ═══════════════════════════════════════════════════════════════════════════

    def orders(self, since: Optional[datetime] = None) -> PageStream[ShopifyOrder]:
        """
        Stream orders in any status, optionally only those updated since a watermark.

        Args:
            since: Lower bound on updated_at; None fetches the full history
        """
        params: Dict[str, Any] = {
            "limit": self.page_limit,
            "status": "any",
            "fields": ORDER_FIELDS,
        }
        if since is not None:
            if since.tzinfo is None:
                since = since.replace(tzinfo=timezone.utc)
            params["updated_at_min"] = since.isoformat()

        return self.paginator.paginate(
            f"{self.base_url}/orders.json", params, "orders", ShopifyOrder.from_api
        )

    def payouts(self) -> PageStream[ShopifyPayout]:
        """Stream every Shopify Payments payout."""
        return self.paginator.paginate(
            f"{self.base_url}/shopify_payments/payouts.json",
            {"limit": self.page_limit},
            "payouts",
            ShopifyPayout.from_api,
        )

    def balance_transactions(self) -> PageStream[BalanceTransaction]:
        """Stream every Shopify Payments balance transaction."""
        return self.paginator.paginate(
            f"{self.base_url}/shopify_payments/balance/transactions.json",
            {"limit": self.page_limit},
            "transactions",
            BalanceTransaction.from_api,
        )


# ═══════════════════════════════════════════════════════════════════════════════
# OAUTH
# ═══════════════════════════════════════════════════════════════════════════════

@with_retry(RetryConfig(max_attempts=3), (ShopifyConnectionError,))
async def _post_token_request(
    http_client: httpx.AsyncClient, url: str, payload: Dict[str, str]
) -> httpx.Response:
    try:
        return await http_client.post(url, json=payload, headers={"Accept": "application/json"})
    except httpx.RequestError as e:
        raise ShopifyConnectionError(f"Token exchange request failed: POST {url}", str(e)) from e


async def exchange_access_token(
    shop: str,
    code: str,
    client_id: Optional[str] = None,
    client_secret: Optional[str] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> str:
    """
    Exchange an OAuth authorization code for a permanent access token.

    Raises:
        ShopifyOAuthError: Shopify refused the code or returned no token
        ShopifyConnectionError: Network failure after retries
    """
    client_id = client_id or config.shopify.client_id
    client_secret = client_secret or config.shopify.client_secret
    url = f"https://{shop}/admin/oauth/access_token"
    payload = {"client_id": client_id, "client_secret": client_secret, "code": code}

    owns_client = http_client is None
    http_client = http_client or httpx.AsyncClient(timeout=config.shopify.request_timeout)
    try:
        response = await _post_token_request(http_client, url, payload)
    finally:
        if owns_client:
            await http_client.aclose()

    if response.status_code >= 400:
        raise ShopifyOAuthError(
            "Token exchange failed",
            details=response.text[:500],
            status_code=response.status_code,
        )

    try:
        token = response.json().get("access_token")
    except (ValueError, AttributeError):
        token = None
    if not token:
        raise ShopifyOAuthError("Token exchange response has no access_token")

    logger.info("Exchanged OAuth code for access token", extra={"shop": shop})
    return token


# ═══════════════════════════════════════════════════════════════════════════════
# WEBHOOKS
# ═══════════════════════════════════════════════════════════════════════════════

def compute_webhook_signature(body: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw body, as Shopify sends it."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str] = None) -> bool:
    """
    Check an inbound webhook body against its X-Shopify-Hmac-Sha256 header.

    Uses a constant-time comparison of the decoded digests. Never raises:
    a missing, malformed or non-ASCII signature simply does not match.
    """
    secret = secret if secret is not None else config.shopify.client_secret
    if not signature or not secret:
        return False
    if isinstance(body, str):
        body = body.encode("utf-8")

    try:
        provided = base64.b64decode(signature.strip(), validate=True)
    except (binascii.Error, ValueError):
        return False

    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, provided)
