"""
Domain models for Shopify data.

Provides dataclasses decoded from Shopify Admin REST payloads, the closed
enums persisted by the store, and the single money conversion used by
every decoder.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import Enum
from typing import Optional, List, Dict, Any

from shopsync.exceptions import ShopifyDataError


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class Platform(str, Enum):
    """Commerce platforms that orders can come from."""
    SHOPIFY = "shopify"


class OrderStatus(str, Enum):
    """Local order status derived from Shopify's financial_status."""
    CLOSED = "CLOSED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"

    @classmethod
    def from_financial_status(cls, financial_status: Optional[str]) -> "OrderStatus":
        """Map Shopify's financial_status onto the closed local enum."""
        if financial_status == "refunded":
            return cls.REFUNDED
        if financial_status == "voided":
            return cls.CANCELLED
        return cls.CLOSED


class SyncStatus(str, Enum):
    """Sync run lifecycle."""
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncStatus.RUNNING


class FeeType(str, Enum):
    """Kinds of per-order fee lines."""
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"


# Balance transaction types that carry the processing fee of one order
PROCESSING_FEE_TRANSACTION_TYPES = frozenset({"charge", "payment"})


# ═══════════════════════════════════════════════════════════════════════════════
# PARSING HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

_CENTS = Decimal(100)


def to_cents(amount: Any) -> int:
    """
    Convert a Shopify decimal money string to integer minor units.

    Rounds half away from zero on the scaled value, so "0.005" becomes 1
    and "-0.005" becomes -1. Missing amounts count as zero.

    Raises:
        ShopifyDataError: If the amount is not a decimal number
    """
    if amount is None or amount == "":
        return 0
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ShopifyDataError("Invalid money amount", expected="decimal string", got=repr(amount))
    if not value.is_finite():
        raise ShopifyDataError("Invalid money amount", expected="finite decimal", got=repr(amount))
    return int((value * _CENTS).to_integral_value(rounding=ROUND_HALF_UP))


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp or date into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _require(data: Dict[str, Any], key: str, resource: str) -> Any:
    if not isinstance(data, dict):
        raise ShopifyDataError(f"Invalid {resource} record", expected="object", got=type(data).__name__)
    value = data.get(key)
    if value is None:
        raise ShopifyDataError(f"{resource} record missing '{key}'", details=str(data.get("id", "?")))
    return value


def _require_timestamp(data: Dict[str, Any], key: str, resource: str) -> datetime:
    raw = _require(data, key, resource)
    parsed = parse_timestamp(raw)
    if parsed is None:
        raise ShopifyDataError(f"{resource} '{key}' is not a timestamp", expected="ISO-8601", got=repr(raw))
    return parsed


# ═══════════════════════════════════════════════════════════════════════════════
# DATACLASSES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class RefundTransaction:
    """One successful refund transaction of an order."""
    amount_cents: int
    processed_at: datetime
    transaction_id: Optional[str] = None


@dataclass
class ShopifyOrder:
    """Order from the Shopify orders endpoint."""
    id: str
    order_date: datetime
    gross_revenue_cents: int
    shipping_charged_cents: int
    taxes_cents: int
    currency: str
    status: OrderStatus
    financial_status: Optional[str] = None
    order_number: Optional[str] = None
    updated_at: Optional[datetime] = None
    refunds: List[RefundTransaction] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ShopifyOrder":
        """Create ShopifyOrder from a Shopify API order object."""
        order_id = str(_require(data, "id", "order"))
        order_date = _require_timestamp(data, "created_at", "order")

        shipping_set = data.get("total_shipping_price_set") or {}
        shipping_amount = (shipping_set.get("shop_money") or {}).get("amount")

        refunds = []
        for refund in data.get("refunds") or []:
            processed_at = (
                parse_timestamp(refund.get("processed_at"))
                or parse_timestamp(refund.get("created_at"))
                or order_date
            )
            for txn in refund.get("transactions") or []:
                if txn.get("kind") != "refund" or txn.get("status") != "success":
                    continue
                refunds.append(RefundTransaction(
                    amount_cents=to_cents(txn.get("amount")),
                    processed_at=processed_at,
                    transaction_id=str(txn["id"]) if txn.get("id") is not None else None,
                ))

        financial_status = data.get("financial_status")
        return cls(
            id=order_id,
            order_date=order_date,
            gross_revenue_cents=to_cents(data.get("total_price")),
            shipping_charged_cents=to_cents(shipping_amount),
            taxes_cents=to_cents(data.get("total_tax")),
            currency=data.get("currency") or "",
            status=OrderStatus.from_financial_status(financial_status),
            financial_status=financial_status,
            order_number=data.get("name"),
            updated_at=parse_timestamp(data.get("updated_at")),
            refunds=refunds,
        )

    @property
    def total_refunded_cents(self) -> int:
        return sum(r.amount_cents for r in self.refunds)


@dataclass
class ShopifyPayout:
    """Settlement batch from the Shopify Payments payouts endpoint."""
    id: str
    amount_cents: int
    charges_fee_cents: int
    adjustments_fee_cents: int
    refunds_fee_cents: int
    date: datetime
    status: Optional[str] = None
    currency: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ShopifyPayout":
        """Create ShopifyPayout from a Shopify API payout object."""
        payout_id = str(_require(data, "id", "payout"))
        summary = data.get("summary") or {}
        return cls(
            id=payout_id,
            amount_cents=to_cents(data.get("amount")),
            charges_fee_cents=to_cents(summary.get("charges_fee_amount")),
            adjustments_fee_cents=to_cents(summary.get("adjustments_fee_amount")),
            refunds_fee_cents=to_cents(summary.get("refunds_fee_amount")),
            date=_require_timestamp(data, "date", "payout"),
            status=data.get("status"),
            currency=data.get("currency"),
        )

    @property
    def fee_cents(self) -> int:
        """All three fee components together."""
        return self.charges_fee_cents + self.adjustments_fee_cents + self.refunds_fee_cents


@dataclass
class BalanceTransaction:
    """Ledger entry from the Shopify Payments balance transactions endpoint."""
    id: str
    type: str
    source_order_id: Optional[str]
    amount_cents: int
    fee_cents: int
    currency: Optional[str] = None
    processed_at: Optional[datetime] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "BalanceTransaction":
        """Create BalanceTransaction from a Shopify API transaction object."""
        txn_id = str(_require(data, "id", "balance transaction"))
        source_order_id = data.get("source_order_id")
        return cls(
            id=txn_id,
            type=data.get("type") or "",
            source_order_id=str(source_order_id) if source_order_id is not None else None,
            amount_cents=to_cents(data.get("amount")),
            fee_cents=to_cents(data.get("fee")),
            currency=data.get("currency"),
            processed_at=parse_timestamp(data.get("processed_at") or data.get("created_at")),
        )

    @property
    def is_order_processing_fee(self) -> bool:
        """True for a per-order charge that actually cost a fee."""
        return (
            self.type in PROCESSING_FEE_TRANSACTION_TYPES
            and self.source_order_id is not None
            and self.fee_cents != 0
        )

    def fee_line_id(self, platform: Platform = Platform.SHOPIFY) -> str:
        """Deterministic fee line key for this transaction."""
        return f"{platform.value}_txn_{self.id}"


@dataclass
class ShopConnection:
    """Access credential stored by the OAuth callback."""
    shop: str
    access_token: str
    created_at: Optional[datetime] = None


@dataclass
class SyncRun:
    """One row of the sync audit trail."""
    id: int
    platform: Platform
    started_at: datetime
    status: SyncStatus
    finished_at: Optional[datetime] = None
    orders_upserted: int = 0
    payouts_synced: int = 0
    fee_lines_upserted: int = 0
    error_summary: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "status": self.status.value,
            "orders_upserted": self.orders_upserted,
            "payouts_synced": self.payouts_synced,
            "fee_lines_upserted": self.fee_lines_upserted,
            "error_summary": self.error_summary,
        }


@dataclass
class PendingShippingCost:
    """Order still waiting for its shipping cost."""
    order_id: int
    platform_order_id: str
    order_date: datetime
