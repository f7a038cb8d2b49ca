"""
Custom exception hierarchy for Shopify sync operations.

Exception Hierarchy:
    ShopifyError (base)
    ├── ShopifyConnectionError  - Network/timeout issues (retried, then fatal)
    ├── ShopifyAPIError         - API returned an error response
    │   └── ShopifyRateLimitError - Rate limit never cleared for a page
    ├── ShopifyDataError        - Invalid response structure or money value
    └── ShopifyOAuthError       - Access token exchange failed

    StoreError                  - Local store misuse or corrupt state

A 403 on a sub-resource is not an exception: the paginator reports it
through PageStream.unavailable.
"""
from typing import Optional


class ShopifyError(Exception):
    """Base exception for all Shopify-related errors."""

    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ShopifyConnectionError(ShopifyError):
    """
    Network-related errors (timeout, connection refused, etc.).

    Retried with backoff inside the paginator before propagating.
    """
    pass


class ShopifyAPIError(ShopifyError):
    """
    API returned an error response.

    Check status_code for specifics.
    """

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class ShopifyRateLimitError(ShopifyAPIError):
    """The same page kept answering 429 past the retry allowance."""

    def __init__(self, url: str, attempts: int):
        super().__init__(
            f"Rate limited {attempts} times in a row",
            details=url,
            status_code=429,
        )
        self.url = url
        self.attempts = attempts


class ShopifyDataError(ShopifyError):
    """
    API response has unexpected structure.

    This indicates a contract violation - the API returned
    data in a format we don't understand.
    """

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        expected: Optional[str] = None,
        got: Optional[str] = None,
    ):
        super().__init__(message, details)
        self.expected = expected
        self.got = got

    def __str__(self) -> str:
        base = super().__str__()
        if self.expected or self.got:
            return f"{base} (expected {self.expected}, got {self.got})"
        return base


class ShopifyOAuthError(ShopifyError):
    """OAuth authorization code could not be exchanged for a token."""

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, details)
        self.status_code = status_code


class StoreError(Exception):
    """Local store was used incorrectly or holds inconsistent state."""
    pass
