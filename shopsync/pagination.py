"""
Cursor pagination for the Shopify Admin REST API.

Shopify paginates with a ``Link: <...page_info=...>; rel="next"`` header.
A PageStream follows those links one request at a time and yields one
decoded page per response:

    stream = paginator.paginate(url, {"limit": 250}, "orders", ShopifyOrder.from_api)
    async for page in stream:
        for order in page:
            ...
    if stream.unavailable:
        ...  # 403: the shop has not granted this sub-resource

Handles:
- 429 rate limits: sleep Retry-After, re-request the same page
- 403 feature gating: stop early and flag the stream as unavailable
- transport errors: exponential backoff, then propagate
- everything else >= 400: ShopifyAPIError
"""
import asyncio
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Generic, List, Optional, TypeVar

import httpx

from shopsync.exceptions import (
    ShopifyAPIError,
    ShopifyConnectionError,
    ShopifyDataError,
    ShopifyRateLimitError,
)
from shopsync.observability import get_logger, Timer
from shopsync.resilience import RetryConfig, retry_with_backoff

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PAGE_DELAY = 0.5
DEFAULT_RETRY_AFTER = 5.0
DEFAULT_MAX_RATE_LIMIT_RETRIES = 10

TRANSPORT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0, max_delay=10.0)


def parse_retry_after(value: Optional[str], default: float = DEFAULT_RETRY_AFTER) -> float:
    """Seconds to wait from a Retry-After header, or the default when absent/invalid."""
    if value is None:
        return default
    try:
        seconds = float(value.strip())
    except (ValueError, AttributeError):
        return default
    if seconds < 0 or seconds != seconds:  # negative or NaN
        return default
    return seconds


def next_page_url(response: httpx.Response) -> Optional[str]:
    """URL of the next page from the Link header, if any."""
    link = response.links.get("next")
    if not link:
        return None
    return link.get("url")


class ShopifyPaginator:
    """
    Sequential page fetcher shared by every Shopify resource stream.

    Only one request is in flight per stream; the next page URL comes from
    the previous response, so pages cannot be fetched ahead.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        access_token: str,
        page_delay: float = DEFAULT_PAGE_DELAY,
        default_retry_after: float = DEFAULT_RETRY_AFTER,
        max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            http_client: Pooled httpx client (owned by the caller)
            access_token: Shop access token sent as X-Shopify-Access-Token
            page_delay: Politeness pause before following a next link
            default_retry_after: Wait used when a 429 has no usable Retry-After
            max_rate_limit_retries: Consecutive 429s tolerated for one page
            retry_config: Backoff for transport errors
            sleep: Awaitable sleep (injectable for tests)
        """
        self._client = http_client
        self.access_token = access_token
        self.page_delay = page_delay
        self.default_retry_after = default_retry_after
        self.max_rate_limit_retries = max_rate_limit_retries
        self.retry_config = retry_config or TRANSPORT_RETRY
        self.sleep = sleep

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "X-Shopify-Access-Token": self.access_token,
            "Accept": "application/json",
        }

    def paginate(
        self,
        url: str,
        params: Optional[Dict[str, Any]],
        resource_key: str,
        decode: Optional[Callable[[Dict[str, Any]], T]] = None,
    ) -> "PageStream[T]":
        """Lazy page stream; nothing is requested until iteration starts."""
        return PageStream(self, url, params, resource_key, decode)

    async def _send(self, url: str, params: Optional[Dict[str, Any]]) -> httpx.Response:
        """Execute a single GET (called by the retry wrapper)."""
        try:
            with Timer("shopify_get", logger):
                return await self._client.get(url, params=params, headers=self.headers)
        except httpx.TimeoutException as e:
            raise ShopifyConnectionError(f"Request timeout: GET {url}", str(e)) from e
        except httpx.RequestError as e:
            raise ShopifyConnectionError(f"Request failed: GET {url}", str(e)) from e

    async def fetch_page(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        Fetch one page, absorbing rate limits.

        Returns the response for 2xx and 403. A 403 is left for the stream
        to interpret as feature-unavailable.

        Raises:
            ShopifyConnectionError: Network failure after retries
            ShopifyRateLimitError: Too many consecutive 429s for this page
            ShopifyAPIError: Any other error status
        """
        rate_limited = 0
        while True:
            response = await retry_with_backoff(
                self._send, url, params,
                config=self.retry_config,
                retryable_exceptions=(ShopifyConnectionError,),
            )
            if response.status_code != 429:
                break

            rate_limited += 1
            if rate_limited > self.max_rate_limit_retries:
                raise ShopifyRateLimitError(url, rate_limited)

            delay = parse_retry_after(response.headers.get("Retry-After"), self.default_retry_after)
            logger.warning(
                f"Shopify rate limited, retrying after {delay}s",
                extra={"url": url, "attempt": rate_limited, "retry_after": delay}
            )
            await self.sleep(delay)

        if response.status_code == 403 or response.status_code < 400:
            return response

        error_text = response.text[:500]
        logger.error(
            f"Shopify API error {response.status_code}",
            extra={"url": url, "status_code": response.status_code}
        )
        raise ShopifyAPIError(
            f"Shopify API returned {response.status_code}",
            details=error_text,
            status_code=response.status_code,
        )

    @staticmethod
    def extract_items(response: httpx.Response, resource_key: str) -> List[Dict[str, Any]]:
        """Pull the resource list out of a page body."""
        try:
            body = response.json()
        except ValueError as e:
            raise ShopifyDataError("Response is not JSON", details=response.text[:200]) from e

        if not isinstance(body, dict):
            raise ShopifyDataError("Invalid response type", expected="object", got=type(body).__name__)

        items = body.get(resource_key)
        if not isinstance(items, list):
            raise ShopifyDataError(
                f"Response '{resource_key}' field is not a list",
                expected="list",
                got=type(items).__name__,
            )
        return items


class PageStream(Generic[T]):
    """
    Lazy, single-use sequence of pages from one Shopify endpoint.

    After iteration ends, ``unavailable`` tells whether the endpoint
    answered 403 (the sub-resource is gated for this shop) as opposed to
    simply running out of pages.
    """

    def __init__(
        self,
        paginator: ShopifyPaginator,
        url: str,
        params: Optional[Dict[str, Any]],
        resource_key: str,
        decode: Optional[Callable[[Dict[str, Any]], T]] = None,
    ):
        self._paginator = paginator
        self.url = url
        self.params = dict(params or {})
        self.resource_key = resource_key
        self._decode = decode
        self._started = False
        self.unavailable = False
        self.pages_fetched = 0

    def __aiter__(self) -> AsyncIterator[List[T]]:
        if self._started:
            raise RuntimeError(f"{self.resource_key} page stream can only be consumed once")
        self._started = True
        return self._pages()

    async def _pages(self) -> AsyncIterator[List[T]]:
        url: Optional[str] = self.url
        params: Optional[Dict[str, Any]] = self.params

        while url:
            response = await self._paginator.fetch_page(url, params)

            if response.status_code == 403:
                logger.warning(
                    f"Shopify {self.resource_key} not available for this shop (403), skipping",
                    extra={"resource": self.resource_key}
                )
                self.unavailable = True
                return

            items = self._paginator.extract_items(response, self.resource_key)
            url = next_page_url(response)
            # Cursor URLs already carry every query parameter
            params = None

            if items:
                self.pages_fetched += 1
                if self._decode is not None:
                    yield [self._decode(item) for item in items]
                else:
                    yield items

            if url and self._paginator.page_delay > 0:
                await self._paginator.sleep(self._paginator.page_delay)
