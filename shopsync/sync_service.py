"""
Sync service for pulling Shopify data into the local DuckDB store.

One run:
1. Orders since the watermark (refunds replaced per order)   ┐ concurrent
2. Every Shopify Payments payout                             ┘
3. Per-order processing fee lines from balance transactions (after 1 and 2)
4. Optional shipping-cost backfill (best effort)

Each run is recorded as a sync_runs row that ends in SUCCESS or FAILED.
The start time of the last SUCCESS run is the watermark for the next
automatic run; manual runs always fetch the full order history.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Tuple

from shopsync.config import config
from shopsync.exceptions import ShopifyAPIError
from shopsync.models import PendingShippingCost, Platform, ShopConnection, SyncStatus
from shopsync.observability import Timer, correlation_context, get_logger, log_context
from shopsync.shopify import ShopifyClient
from shopsync.store import SyncStore, get_store

logger = get_logger(__name__)

PLATFORM = Platform.SHOPIFY
ABANDONED_RUN_MESSAGE = "abandoned: process exited before the run finished"
SHIPPING_BACKFILL_BATCH = 100

ClientFactory = Callable[[ShopConnection], ShopifyClient]
ShippingCostLookup = Callable[[PendingShippingCost], Awaitable[Optional[int]]]


def default_client_factory(connection: ShopConnection) -> ShopifyClient:
    return ShopifyClient(connection.shop, connection.access_token)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def summarize_error(error: BaseException, limit: Optional[int] = None) -> str:
    """Error text for the run row, cut to the configured bound."""
    limit = limit if limit is not None else config.sync.error_summary_limit
    message = str(error) or type(error).__name__
    return message[:limit]


@dataclass
class SyncRunResult:
    """Outcome of one orchestrator run."""
    run_id: int
    status: SyncStatus
    manual: bool
    watermark: Optional[datetime] = None
    orders_upserted: int = 0
    refunds_written: int = 0
    payouts_synced: int = 0
    payouts_unavailable: bool = False
    fee_lines_upserted: int = 0
    fee_lines_unavailable: bool = False
    shipping_costs_filled: int = 0
    error_summary: Optional[str] = None
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None


class SyncService:
    """
    Orchestrates one Shopify sync run against the store.

    Usage:
        service = SyncService(store)
        result = await service.run(manual=True)
    """

    def __init__(
        self,
        store: SyncStore,
        client_factory: ClientFactory = default_client_factory,
        shipping_cost_lookup: Optional[ShippingCostLookup] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            store: Connected store
            client_factory: Builds an (unconnected) ShopifyClient for the shop
            shipping_cost_lookup: Async per-order shipping cost source; None
                disables the backfill step
            clock: Returns the current aware UTC time
        """
        self.store = store
        self._client_factory = client_factory
        self.shipping_cost_lookup = shipping_cost_lookup
        self._clock = clock

    async def run(self, manual: bool = False) -> Optional[SyncRunResult]:
        """
        Execute one sync run.

        Never raises for run failures: they are recorded on the run row and
        returned as a FAILED result.

        Returns:
            The run outcome, or None when no shop is connected yet
        """
        connection = await self.store.get_shop_connection()
        if connection is None:
            logger.warning("Shopify sync skipped: no shop connection configured")
            return None

        with correlation_context():
            started_at = self._clock()
            watermark = None
            if not manual:
                last_success = await self.store.get_last_successful_run(PLATFORM)
                watermark = last_success.started_at if last_success else None

            run = await self.store.create_sync_run(PLATFORM, started_at)
            result = SyncRunResult(
                run_id=run.id,
                status=SyncStatus.RUNNING,
                manual=manual,
                watermark=watermark,
                started_at=started_at,
            )
            with log_context(run_id=run.id, shop=connection.shop):
                return await self._record_run(connection, result)

    async def _record_run(self, connection: ShopConnection, result: SyncRunResult) -> SyncRunResult:
        """Execute the sub-tasks and move the run row to its terminal status."""
        run_id = result.run_id
        logger.info(
            f"Shopify sync #{run_id} started ({'manual' if result.manual else 'scheduled'}, "
            f"since={result.watermark.isoformat() if result.watermark else 'beginning'})"
        )

        try:
            with Timer(f"shopify_sync_{run_id}", logger, warn_threshold_ms=600_000):
                await self._execute(connection, result)
        except asyncio.CancelledError:
            await self._finish(result, SyncStatus.FAILED, "cancelled")
            raise
        except Exception as e:
            logger.error(f"Shopify sync #{run_id} failed: {e}", exc_info=True)
            await self._finish(result, SyncStatus.FAILED, summarize_error(e))
            return result

        await self._finish(result, SyncStatus.SUCCESS)
        logger.info(
            f"Shopify sync #{run_id} complete: {result.orders_upserted} orders, "
            f"{result.payouts_synced} payouts, {result.fee_lines_upserted} fee lines"
        )
        return result

    async def _execute(self, connection: ShopConnection, result: SyncRunResult) -> None:
        async with self._client_factory(connection) as client:
            orders_task = asyncio.create_task(self.sync_orders(client, result.watermark))
            payouts_task = asyncio.create_task(self.sync_payouts(client))
            try:
                (orders, refunds), (payouts, payouts_unavailable) = await asyncio.gather(
                    orders_task, payouts_task
                )
            except BaseException:
                # Either stream failing aborts the run; stop the sibling first
                for task in (orders_task, payouts_task):
                    task.cancel()
                await asyncio.gather(orders_task, payouts_task, return_exceptions=True)
                raise

            result.orders_upserted = orders
            result.refunds_written = refunds
            result.payouts_synced = payouts
            result.payouts_unavailable = payouts_unavailable

            result.fee_lines_upserted, result.fee_lines_unavailable = await self.sync_fee_lines(client)

        if self.shipping_cost_lookup is not None:
            result.shipping_costs_filled = await self.backfill_shipping_costs()

    async def _finish(self, result: SyncRunResult, status: SyncStatus, error: Optional[str] = None) -> None:
        result.status = status
        result.error_summary = error
        result.finished_at = self._clock()
        await self.store.finish_sync_run(
            result.run_id,
            status,
            result.finished_at,
            orders_upserted=result.orders_upserted,
            payouts_synced=result.payouts_synced,
            fee_lines_upserted=result.fee_lines_upserted,
            error_summary=error,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # SUB-TASKS
    # ═══════════════════════════════════════════════════════════════════════════

    async def sync_orders(self, client: ShopifyClient, since: Optional[datetime]) -> Tuple[int, int]:
        """
        Upsert every order updated since the watermark and replace its refunds.

        Returns:
            Tuple of (orders upserted, refund rows written)

        Raises:
            ShopifyAPIError: Orders answered 403; unlike payouts they never degrade
        """
        orders_count = 0
        refunds_count = 0
        stream = client.orders(since=since)
        async for page in stream:
            for order in page:
                order_id = await self.store.upsert_order(PLATFORM, order)
                refunds_count += await self.store.replace_refunds(order_id, order.refunds)
                orders_count += 1
            logger.debug(f"Orders page {stream.pages_fetched}: {len(page)} orders")

        # Orders have no degraded mode; a 403 fails the run and keeps the watermark
        if stream.unavailable:
            raise ShopifyAPIError("Shopify orders unavailable (403)", status_code=403)
        logger.info(f"Synced {orders_count} orders ({refunds_count} refunds)")
        return orders_count, refunds_count

    async def sync_payouts(self, client: ShopifyClient) -> Tuple[int, bool]:
        """
        Upsert the full payout list.

        Returns:
            Tuple of (payouts upserted, whether payouts are unavailable)
        """
        count = 0
        stream = client.payouts()
        async for page in stream:
            for payout in page:
                await self.store.upsert_payout(PLATFORM, payout)
                count += 1

        if stream.unavailable:
            logger.warning("Shopify Payments payouts unavailable (403), payouts skipped")
        else:
            logger.info(f"Synced {count} payouts")
        return count, stream.unavailable

    async def sync_fee_lines(self, client: ShopifyClient) -> Tuple[int, bool]:
        """
        Derive processing fee lines from balance transactions.

        Transactions whose order is not stored locally are skipped.

        Returns:
            Tuple of (fee lines upserted, whether transactions are unavailable)
        """
        count = 0
        skipped = 0
        stream = client.balance_transactions()
        async for page in stream:
            for txn in page:
                if not txn.is_order_processing_fee:
                    continue
                order_id = await self.store.find_order_id(PLATFORM, txn.source_order_id)
                if order_id is None:
                    skipped += 1
                    continue
                await self.store.upsert_fee_line(txn.fee_line_id(PLATFORM), order_id, txn.fee_cents)
                count += 1

        if stream.unavailable:
            logger.warning("Shopify Payments balance transactions unavailable (403), fee lines skipped")
        else:
            logger.info(f"Synced {count} fee lines ({skipped} without a local order)")
        return count, stream.unavailable

    async def backfill_shipping_costs(self, limit: int = SHIPPING_BACKFILL_BATCH) -> int:
        """
        Fill shipping_cost_cents for orders that have none.

        Best effort: a failing lookup is logged and the order is retried on
        the next run.

        Returns:
            Number of orders that received a shipping cost
        """
        if self.shipping_cost_lookup is None:
            return 0

        try:
            pending = await self.store.get_orders_missing_shipping_cost(limit)
        except Exception as e:
            logger.warning(f"Shipping cost backfill skipped: {e}")
            return 0

        filled = 0
        for item in pending:
            try:
                cost = await self.shipping_cost_lookup(item)
                if cost is None:
                    continue
                await self.store.set_shipping_cost(item.order_id, cost)
                filled += 1
            except Exception as e:
                logger.warning(
                    f"Shipping cost lookup failed for order {item.platform_order_id}: {e}",
                    extra={"order_id": item.order_id}
                )

        if pending:
            logger.info(f"Shipping cost backfill: {filled}/{len(pending)} orders filled")
        return filled

    # ═══════════════════════════════════════════════════════════════════════════
    # RECOVERY
    # ═══════════════════════════════════════════════════════════════════════════

    async def recover_abandoned_runs(self) -> int:
        """
        Mark RUNNING rows left behind by a previous process as FAILED.

        Call once at startup, before any run can be in flight.
        """
        count = await self.store.fail_running_runs(ABANDONED_RUN_MESSAGE, self._clock())
        if count:
            logger.warning(f"Marked {count} abandoned sync run(s) as FAILED")
        return count


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_sync_service: Optional[SyncService] = None


async def get_sync_service() -> SyncService:
    """Get singleton sync service instance."""
    global _sync_service
    if _sync_service is None:
        store = await get_store()
        _sync_service = SyncService(store)
    return _sync_service
