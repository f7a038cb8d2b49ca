"""
Shopify sync engine.

Pulls orders, refunds, payouts and payment processing fees from the Shopify
Admin REST API into a local DuckDB store:
- pagination: Link-header pagination with rate-limit handling
- shopify: API client, OAuth token exchange, webhook verification
- store: DuckDB persistence and the sync run audit trail
- sync_service: one sync run
- scheduler: interval and manual triggering
"""

# Import in dependency order
from shopsync.exceptions import (
    ShopifyError,
    ShopifyConnectionError,
    ShopifyAPIError,
    ShopifyRateLimitError,
    ShopifyDataError,
    ShopifyOAuthError,
    StoreError,
)

from shopsync.config import config

from shopsync.models import (
    OrderStatus,
    Platform,
    SyncStatus,
    to_cents,
)

from shopsync.pagination import ShopifyPaginator, PageStream

from shopsync.shopify import (
    ShopifyClient,
    exchange_access_token,
    verify_webhook_signature,
)

__all__ = [
    # Exceptions
    "ShopifyError",
    "ShopifyConnectionError",
    "ShopifyAPIError",
    "ShopifyRateLimitError",
    "ShopifyDataError",
    "ShopifyOAuthError",
    "StoreError",
    # Config
    "config",
    # Models
    "OrderStatus",
    "Platform",
    "SyncStatus",
    "to_cents",
    # Pagination
    "ShopifyPaginator",
    "PageStream",
    # Client
    "ShopifyClient",
    "exchange_access_token",
    "verify_webhook_signature",
]
