"""
Tests for shopsync.models module.
"""
from datetime import datetime, timezone

import pytest

from conftest import make_order, make_payout, make_refund, make_transaction
from shopsync.exceptions import ShopifyDataError
from shopsync.models import (
    BalanceTransaction,
    OrderStatus,
    Platform,
    ShopifyOrder,
    ShopifyPayout,
    SyncRun,
    SyncStatus,
    parse_timestamp,
    to_cents,
)


class TestToCents:
    """Tests for money string conversion."""

    @pytest.mark.parametrize("amount,expected", [
        ("19.99", 1999),
        ("1.00", 100),
        ("0", 0),
        ("1234.5", 123450),
        ("-5.25", -525),
        (12, 1200),
    ])
    def test_decimal_strings(self, amount, expected):
        assert to_cents(amount) == expected

    def test_rounds_half_away_from_zero(self):
        """Sub-cent halves round away from zero in both directions."""
        assert to_cents("0.005") == 1
        assert to_cents("-0.005") == -1
        assert to_cents("1.015") == 102
        assert to_cents("0.004") == 0

    def test_no_float_drift(self):
        """Values that are inexact as floats still convert exactly."""
        assert to_cents("0.29") == 29
        assert to_cents("4.35") == 435

    def test_missing_amounts_are_zero(self):
        assert to_cents(None) == 0
        assert to_cents("") == 0

    @pytest.mark.parametrize("amount", ["abc", "12,50", "NaN", "Infinity"])
    def test_invalid_amount_raises(self, amount):
        with pytest.raises(ShopifyDataError):
            to_cents(amount)


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    def test_zulu_suffix(self):
        parsed = parse_timestamp("2026-01-10T10:00:00Z")
        assert parsed == datetime(2026, 1, 10, 10, 0, tzinfo=timezone.utc)

    def test_offset_converted_to_utc(self):
        parsed = parse_timestamp("2026-01-10T12:00:00+02:00")
        assert parsed == datetime(2026, 1, 10, 10, 0, tzinfo=timezone.utc)
        assert parsed.tzinfo == timezone.utc

    def test_date_only(self):
        assert parse_timestamp("2026-01-15") == datetime(2026, 1, 15, tzinfo=timezone.utc)

    def test_empty_and_invalid(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("yesterday") is None


class TestOrderStatus:
    """Tests for financial_status mapping."""

    @pytest.mark.parametrize("financial_status,expected", [
        ("refunded", OrderStatus.REFUNDED),
        ("voided", OrderStatus.CANCELLED),
        ("paid", OrderStatus.CLOSED),
        ("partially_refunded", OrderStatus.CLOSED),
        ("pending", OrderStatus.CLOSED),
        (None, OrderStatus.CLOSED),
    ])
    def test_mapping(self, financial_status, expected):
        assert OrderStatus.from_financial_status(financial_status) == expected


class TestShopifyOrder:
    """Tests for ShopifyOrder decoding."""

    def test_from_api(self):
        order = ShopifyOrder.from_api(make_order(refunds=[make_refund("5.00")]))

        assert order.id == "1001"
        assert order.order_number == "#1001"
        assert order.gross_revenue_cents == 1999
        assert order.taxes_cents == 100
        assert order.shipping_charged_cents == 450
        assert order.currency == "USD"
        assert order.status == OrderStatus.CLOSED
        assert order.order_date == datetime(2026, 1, 10, 10, 0, tzinfo=timezone.utc)
        assert order.updated_at == datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
        assert len(order.refunds) == 1
        assert order.refunds[0].amount_cents == 500
        assert order.refunds[0].transaction_id == "9001"
        assert order.total_refunded_cents == 500

    def test_only_successful_refund_transactions(self):
        """Failed and non-refund transactions are not refunds."""
        refunds = [
            make_refund("5.00", txn_id=1),
            make_refund("3.00", txn_id=2, status="failure"),
            make_refund("2.00", txn_id=3, kind="sale"),
            make_refund("1.50", txn_id=4, status="pending"),
        ]
        order = ShopifyOrder.from_api(make_order(refunds=refunds))

        assert [r.amount_cents for r in order.refunds] == [500]

    def test_refund_date_falls_back_to_created_at(self):
        order = ShopifyOrder.from_api(make_order(refunds=[make_refund(processed_at=None)]))
        assert order.refunds[0].processed_at == datetime(2026, 1, 12, 8, 59, tzinfo=timezone.utc)

    def test_missing_shipping_is_zero(self):
        data = make_order()
        data["total_shipping_price_set"] = None
        assert ShopifyOrder.from_api(data).shipping_charged_cents == 0

    def test_refunded_status(self):
        order = ShopifyOrder.from_api(make_order(financial_status="refunded"))
        assert order.status == OrderStatus.REFUNDED

    def test_missing_id_raises(self):
        data = make_order()
        del data["id"]
        with pytest.raises(ShopifyDataError):
            ShopifyOrder.from_api(data)

    def test_invalid_created_at_raises(self):
        data = make_order()
        data["created_at"] = "not a date"
        with pytest.raises(ShopifyDataError):
            ShopifyOrder.from_api(data)


class TestShopifyPayout:
    """Tests for ShopifyPayout decoding."""

    def test_from_api(self):
        payout = ShopifyPayout.from_api(make_payout())

        assert payout.id == "501"
        assert payout.amount_cents == 9520
        assert payout.charges_fee_cents == 290
        assert payout.adjustments_fee_cents == 0
        assert payout.refunds_fee_cents == 30
        assert payout.fee_cents == 320
        assert payout.date == datetime(2026, 1, 15, tzinfo=timezone.utc)
        assert payout.status == "paid"

    def test_missing_summary(self):
        data = make_payout()
        del data["summary"]
        payout = ShopifyPayout.from_api(data)
        assert payout.fee_cents == 0


class TestBalanceTransaction:
    """Tests for BalanceTransaction decoding and fee detection."""

    def test_from_api(self):
        txn = BalanceTransaction.from_api(make_transaction())

        assert txn.id == "801"
        assert txn.source_order_id == "1001"
        assert txn.fee_cents == 88
        assert txn.is_order_processing_fee

    def test_fee_line_id_is_deterministic(self):
        txn = BalanceTransaction.from_api(make_transaction(txn_id=42))
        assert txn.fee_line_id() == "shopify_txn_42"
        assert txn.fee_line_id(Platform.SHOPIFY) == "shopify_txn_42"

    @pytest.mark.parametrize("overrides", [
        {"fee": "0.00"},
        {"source_order_id": None},
        {"txn_type": "payout"},
        {"txn_type": "refund"},
    ])
    def test_not_a_processing_fee(self, overrides):
        txn = BalanceTransaction.from_api(make_transaction(**overrides))
        assert not txn.is_order_processing_fee

    def test_payment_type_counts(self):
        txn = BalanceTransaction.from_api(make_transaction(txn_type="payment"))
        assert txn.is_order_processing_fee


class TestSyncRun:
    """Tests for SyncRun serialization."""

    def test_to_dict(self):
        run = SyncRun(
            id=7,
            platform=Platform.SHOPIFY,
            started_at=datetime(2026, 1, 20, 12, 0, tzinfo=timezone.utc),
            status=SyncStatus.SUCCESS,
            finished_at=datetime(2026, 1, 20, 12, 5, tzinfo=timezone.utc),
            orders_upserted=3,
        )
        data = run.to_dict()

        assert data["id"] == 7
        assert data["platform"] == "shopify"
        assert data["status"] == "SUCCESS"
        assert data["started_at"] == "2026-01-20T12:00:00+00:00"
        assert data["orders_upserted"] == 3
        assert data["error_summary"] is None

    def test_terminal_statuses(self):
        assert not SyncStatus.RUNNING.is_terminal
        assert SyncStatus.SUCCESS.is_terminal
        assert SyncStatus.FAILED.is_terminal
