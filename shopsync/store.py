"""
DuckDB store for synced Shopify data.

Holds orders, refunds, payouts, fee lines, the shop connection and the
sync run audit trail. Every write is an independent auto-committed
statement (refund replacement for one order is the only multi-statement
transaction), so an interrupted sync leaves whatever it already wrote.

Timestamps are stored as naive UTC TIMESTAMP values and returned as
aware UTC datetimes.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import duckdb

from shopsync.config import config
from shopsync.exceptions import StoreError
from shopsync.models import (
    FeeType,
    PendingShippingCost,
    Platform,
    RefundTransaction,
    ShopConnection,
    ShopifyOrder,
    ShopifyPayout,
    SyncRun,
    SyncStatus,
)
from shopsync.observability import get_logger

logger = get_logger(__name__)

IN_MEMORY = ":memory:"

SCHEMA_SQL = """
CREATE SEQUENCE IF NOT EXISTS orders_id_seq START 1;
CREATE SEQUENCE IF NOT EXISTS refunds_id_seq START 1;
CREATE SEQUENCE IF NOT EXISTS payouts_id_seq START 1;
CREATE SEQUENCE IF NOT EXISTS sync_runs_id_seq START 1;

-- Access credential written by the OAuth callback
CREATE TABLE IF NOT EXISTS shop_connections (
    shop VARCHAR PRIMARY KEY,
    access_token VARCHAR NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id BIGINT PRIMARY KEY DEFAULT nextval('orders_id_seq'),
    platform VARCHAR NOT NULL,
    platform_order_id VARCHAR NOT NULL,
    order_number VARCHAR,
    order_date TIMESTAMP NOT NULL,
    gross_revenue_cents BIGINT NOT NULL,
    shipping_charged_cents BIGINT NOT NULL,
    taxes_cents BIGINT NOT NULL,
    shipping_cost_cents BIGINT,
    currency VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    updated_at TIMESTAMP,
    synced_at TIMESTAMP NOT NULL,
    UNIQUE (platform, platform_order_id)
);

-- Re-derived per order on every sync (no stable refund key upstream)
CREATE TABLE IF NOT EXISTS refunds (
    id BIGINT PRIMARY KEY DEFAULT nextval('refunds_id_seq'),
    order_id BIGINT NOT NULL,
    amount_cents BIGINT NOT NULL,
    refund_date TIMESTAMP NOT NULL,
    platform_transaction_id VARCHAR
);

CREATE TABLE IF NOT EXISTS payouts (
    id BIGINT PRIMARY KEY DEFAULT nextval('payouts_id_seq'),
    platform VARCHAR NOT NULL,
    platform_payout_id VARCHAR NOT NULL,
    amount_cents BIGINT NOT NULL,
    charges_fee_cents BIGINT NOT NULL,
    adjustments_fee_cents BIGINT NOT NULL,
    refunds_fee_cents BIGINT NOT NULL,
    fee_cents BIGINT NOT NULL,
    payout_date TIMESTAMP NOT NULL,
    status VARCHAR,
    currency VARCHAR,
    synced_at TIMESTAMP NOT NULL,
    UNIQUE (platform, platform_payout_id)
);

-- Keyed by '<platform>_txn_<balance transaction id>'
CREATE TABLE IF NOT EXISTS fee_lines (
    id VARCHAR PRIMARY KEY,
    order_id BIGINT NOT NULL,
    fee_type VARCHAR NOT NULL,
    amount_cents BIGINT NOT NULL,
    synced_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_runs (
    id BIGINT PRIMARY KEY,
    platform VARCHAR NOT NULL,
    started_at TIMESTAMP NOT NULL,
    finished_at TIMESTAMP,
    status VARCHAR NOT NULL,
    orders_upserted INTEGER NOT NULL DEFAULT 0,
    payouts_synced INTEGER NOT NULL DEFAULT 0,
    fee_lines_upserted INTEGER NOT NULL DEFAULT 0,
    error_summary VARCHAR
);
"""

STAT_TABLES = ("orders", "refunds", "payouts", "fee_lines", "sync_runs")


def _to_db(value: Optional[datetime]) -> Optional[datetime]:
    """Aware (or assumed-UTC naive) datetime -> naive UTC for storage."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _rows_to_dicts(cursor: duckdb.DuckDBPyConnection) -> List[Dict[str, Any]]:
    columns = [d[0] for d in cursor.description]
    rows = []
    for row in cursor.fetchall():
        item = dict(zip(columns, row))
        for key, value in item.items():
            if isinstance(value, datetime):
                item[key] = _from_db(value)
        rows.append(item)
    return rows


_RUN_COLUMNS = (
    "id, platform, started_at, finished_at, status, "
    "orders_upserted, payouts_synced, fee_lines_upserted, error_summary"
)


def _row_to_run(row: tuple) -> SyncRun:
    return SyncRun(
        id=row[0],
        platform=Platform(row[1]),
        started_at=_from_db(row[2]),
        finished_at=_from_db(row[3]),
        status=SyncStatus(row[4]),
        orders_upserted=row[5],
        payouts_synced=row[6],
        fee_lines_upserted=row[7],
        error_summary=row[8],
    )


class SyncStore:
    """
    Async-compatible DuckDB store for sync data.

    All access is serialized through one asyncio.Lock because a DuckDB
    connection must not be used by two callers at once. Concurrent sync
    sub-tasks interleave at statement granularity.

    Usage:
        store = SyncStore(":memory:")
        await store.connect()
        order_id = await store.upsert_order(Platform.SHOPIFY, order)
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        self.db_path = str(db_path or config.store.db_path)
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()
        self._closed = False

    async def connect(self) -> None:
        """Open the database and create the schema if needed."""
        async with self._lock:
            self._closed = False
            if self._connection is not None:
                return
            if self.db_path != IN_MEMORY:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._connection = duckdb.connect(self.db_path)
            self._connection.execute(SCHEMA_SQL)
            logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        async with self._lock:
            self._closed = True
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @asynccontextmanager
    async def connection(self):
        """
        Get the connection, holding the store lock for the block.

        Connects lazily on first use. After close() only an explicit
        connect() reopens the database.

        Raises:
            StoreError: If the store was closed
        """
        if self._closed:
            raise StoreError(f"Store is closed: {self.db_path}")
        if self._connection is None:
            await self.connect()
        async with self._lock:
            if self._connection is None:
                raise StoreError(f"Store is closed: {self.db_path}")
            yield self._connection

    # ═══════════════════════════════════════════════════════════════════════════
    # SHOP CONNECTION
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_shop_connection(self) -> Optional[ShopConnection]:
        """The connected shop, if the OAuth callback has stored one."""
        async with self.connection() as conn:
            row = conn.execute(
                "SELECT shop, access_token, created_at FROM shop_connections "
                "ORDER BY created_at LIMIT 1"
            ).fetchone()
        if not row:
            return None
        return ShopConnection(shop=row[0], access_token=row[1], created_at=_from_db(row[2]))

    async def save_shop_connection(self, shop: str, access_token: str) -> None:
        """Create or refresh the credential for a shop."""
        now = _utcnow()
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO shop_connections (shop, access_token, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (shop) DO UPDATE SET
                    access_token = excluded.access_token,
                    updated_at = excluded.updated_at
            """, [shop, access_token, now, now])
        logger.info("Saved shop connection", extra={"shop": shop})

    # ═══════════════════════════════════════════════════════════════════════════
    # ORDERS & REFUNDS
    # ═══════════════════════════════════════════════════════════════════════════

    async def upsert_order(self, platform: Platform, order: ShopifyOrder) -> int:
        """
        Create or overwrite one order and return its local id.

        Every financial field is replaced on conflict. shipping_cost_cents is
        left alone because it is filled in by the enrichment pass.
        """
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO orders (
                    platform, platform_order_id, order_number, order_date,
                    gross_revenue_cents, shipping_charged_cents, taxes_cents,
                    currency, status, updated_at, synced_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (platform, platform_order_id) DO UPDATE SET
                    order_number = excluded.order_number,
                    order_date = excluded.order_date,
                    gross_revenue_cents = excluded.gross_revenue_cents,
                    shipping_charged_cents = excluded.shipping_charged_cents,
                    taxes_cents = excluded.taxes_cents,
                    currency = excluded.currency,
                    status = excluded.status,
                    updated_at = excluded.updated_at,
                    synced_at = excluded.synced_at
            """, [
                platform.value,
                order.id,
                order.order_number,
                _to_db(order.order_date),
                order.gross_revenue_cents,
                order.shipping_charged_cents,
                order.taxes_cents,
                order.currency,
                order.status.value,
                _to_db(order.updated_at),
                _utcnow(),
            ])
            row = conn.execute(
                "SELECT id FROM orders WHERE platform = ? AND platform_order_id = ?",
                [platform.value, order.id],
            ).fetchone()

        if not row:
            raise StoreError(f"Order {platform.value}/{order.id} missing after upsert")
        return row[0]

    async def replace_refunds(self, order_id: int, refunds: List[RefundTransaction]) -> int:
        """
        Replace the full refund set of one order.

        Delete and insert run in one transaction so readers never see an
        order with half its refunds.
        """
        async with self.connection() as conn:
            conn.execute("BEGIN TRANSACTION")
            try:
                conn.execute("DELETE FROM refunds WHERE order_id = ?", [order_id])
                if refunds:
                    conn.executemany(
                        "INSERT INTO refunds (order_id, amount_cents, refund_date, platform_transaction_id) "
                        "VALUES (?, ?, ?, ?)",
                        [
                            [order_id, r.amount_cents, _to_db(r.processed_at), r.transaction_id]
                            for r in refunds
                        ],
                    )
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
        return len(refunds)

    async def find_order_id(self, platform: Platform, platform_order_id: str) -> Optional[int]:
        """Local id of an order by its external id, or None."""
        async with self.connection() as conn:
            row = conn.execute(
                "SELECT id FROM orders WHERE platform = ? AND platform_order_id = ?",
                [platform.value, platform_order_id],
            ).fetchone()
        return row[0] if row else None

    async def get_order(self, platform: Platform, platform_order_id: str) -> Optional[Dict[str, Any]]:
        async with self.connection() as conn:
            rows = _rows_to_dicts(conn.execute(
                "SELECT * FROM orders WHERE platform = ? AND platform_order_id = ?",
                [platform.value, platform_order_id],
            ))
        return rows[0] if rows else None

    async def list_refunds(self, order_id: int) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            return _rows_to_dicts(conn.execute(
                "SELECT * FROM refunds WHERE order_id = ? ORDER BY refund_date, id", [order_id]
            ))

    async def get_orders_missing_shipping_cost(self, limit: int = 100) -> List[PendingShippingCost]:
        """Orders the enrichment pass has not priced yet, oldest first."""
        async with self.connection() as conn:
            rows = conn.execute("""
                SELECT id, platform_order_id, order_date
                FROM orders
                WHERE shipping_cost_cents IS NULL
                ORDER BY order_date
                LIMIT ?
            """, [limit]).fetchall()
        return [
            PendingShippingCost(order_id=r[0], platform_order_id=r[1], order_date=_from_db(r[2]))
            for r in rows
        ]

    async def set_shipping_cost(self, order_id: int, shipping_cost_cents: int) -> None:
        async with self.connection() as conn:
            conn.execute(
                "UPDATE orders SET shipping_cost_cents = ? WHERE id = ?",
                [shipping_cost_cents, order_id],
            )

    # ═══════════════════════════════════════════════════════════════════════════
    # PAYOUTS & FEE LINES
    # ═══════════════════════════════════════════════════════════════════════════

    async def upsert_payout(self, platform: Platform, payout: ShopifyPayout) -> None:
        """Create or overwrite a payout; all fee components are replaced together."""
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO payouts (
                    platform, platform_payout_id, amount_cents,
                    charges_fee_cents, adjustments_fee_cents, refunds_fee_cents, fee_cents,
                    payout_date, status, currency, synced_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (platform, platform_payout_id) DO UPDATE SET
                    amount_cents = excluded.amount_cents,
                    charges_fee_cents = excluded.charges_fee_cents,
                    adjustments_fee_cents = excluded.adjustments_fee_cents,
                    refunds_fee_cents = excluded.refunds_fee_cents,
                    fee_cents = excluded.fee_cents,
                    payout_date = excluded.payout_date,
                    status = excluded.status,
                    currency = excluded.currency,
                    synced_at = excluded.synced_at
            """, [
                platform.value,
                payout.id,
                payout.amount_cents,
                payout.charges_fee_cents,
                payout.adjustments_fee_cents,
                payout.refunds_fee_cents,
                payout.fee_cents,
                _to_db(payout.date),
                payout.status,
                payout.currency,
                _utcnow(),
            ])

    async def list_payouts(self) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            return _rows_to_dicts(conn.execute("SELECT * FROM payouts ORDER BY payout_date, id"))

    async def upsert_fee_line(
        self,
        fee_line_id: str,
        order_id: int,
        amount_cents: int,
        fee_type: FeeType = FeeType.PAYMENT_PROCESSING,
    ) -> None:
        async with self.connection() as conn:
            conn.execute("""
                INSERT INTO fee_lines (id, order_id, fee_type, amount_cents, synced_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET
                    order_id = excluded.order_id,
                    fee_type = excluded.fee_type,
                    amount_cents = excluded.amount_cents,
                    synced_at = excluded.synced_at
            """, [fee_line_id, order_id, fee_type.value, amount_cents, _utcnow()])

    async def list_fee_lines(self) -> List[Dict[str, Any]]:
        async with self.connection() as conn:
            return _rows_to_dicts(conn.execute("SELECT * FROM fee_lines ORDER BY id"))

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNC RUNS
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_sync_run(self, platform: Platform, started_at: datetime) -> SyncRun:
        """Insert a RUNNING audit row."""
        async with self.connection() as conn:
            run_id = conn.execute("SELECT nextval('sync_runs_id_seq')").fetchone()[0]
            conn.execute(
                "INSERT INTO sync_runs (id, platform, started_at, status) VALUES (?, ?, ?, ?)",
                [run_id, platform.value, _to_db(started_at), SyncStatus.RUNNING.value],
            )
        return SyncRun(
            id=run_id,
            platform=platform,
            started_at=_from_db(_to_db(started_at)),
            status=SyncStatus.RUNNING,
        )

    async def finish_sync_run(
        self,
        run_id: int,
        status: SyncStatus,
        finished_at: datetime,
        orders_upserted: int = 0,
        payouts_synced: int = 0,
        fee_lines_upserted: int = 0,
        error_summary: Optional[str] = None,
    ) -> None:
        """
        Move a RUNNING row to its terminal status.

        Raises:
            StoreError: The run does not exist, is already finished, or
                status is not terminal
        """
        if not status.is_terminal:
            raise StoreError(f"Cannot finish sync run {run_id} with status {status.value}")

        async with self.connection() as conn:
            row = conn.execute("SELECT status FROM sync_runs WHERE id = ?", [run_id]).fetchone()
            if row is None:
                raise StoreError(f"Sync run {run_id} does not exist")
            if row[0] != SyncStatus.RUNNING.value:
                raise StoreError(f"Sync run {run_id} already finished with {row[0]}")

            conn.execute("""
                UPDATE sync_runs SET
                    finished_at = ?,
                    status = ?,
                    orders_upserted = ?,
                    payouts_synced = ?,
                    fee_lines_upserted = ?,
                    error_summary = ?
                WHERE id = ?
            """, [
                _to_db(finished_at), status.value, orders_upserted,
                payouts_synced, fee_lines_upserted, error_summary, run_id,
            ])

    async def get_sync_run(self, run_id: int) -> Optional[SyncRun]:
        async with self.connection() as conn:
            row = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM sync_runs WHERE id = ?", [run_id]
            ).fetchone()
        return _row_to_run(row) if row else None

    async def get_last_successful_run(self, platform: Platform) -> Optional[SyncRun]:
        """Most recent SUCCESS run; its started_at is the next watermark."""
        async with self.connection() as conn:
            row = conn.execute(f"""
                SELECT {_RUN_COLUMNS} FROM sync_runs
                WHERE platform = ? AND status = ?
                ORDER BY started_at DESC, id DESC
                LIMIT 1
            """, [platform.value, SyncStatus.SUCCESS.value]).fetchone()
        return _row_to_run(row) if row else None

    async def get_running_runs(self, platform: Optional[Platform] = None) -> List[SyncRun]:
        query = f"SELECT {_RUN_COLUMNS} FROM sync_runs WHERE status = ?"
        params: List[Any] = [SyncStatus.RUNNING.value]
        if platform is not None:
            query += " AND platform = ?"
            params.append(platform.value)
        async with self.connection() as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [_row_to_run(r) for r in rows]

    async def fail_running_runs(self, error_summary: str, finished_at: datetime) -> int:
        """Close every RUNNING row as FAILED. Returns how many were closed."""
        async with self.connection() as conn:
            ids = [r[0] for r in conn.execute(
                "SELECT id FROM sync_runs WHERE status = ?", [SyncStatus.RUNNING.value]
            ).fetchall()]
            if ids:
                placeholders = ",".join("?" for _ in ids)
                conn.execute(
                    f"UPDATE sync_runs SET status = ?, finished_at = ?, error_summary = ? "
                    f"WHERE id IN ({placeholders})",
                    [SyncStatus.FAILED.value, _to_db(finished_at), error_summary, *ids],
                )
        return len(ids)

    async def list_sync_runs(self, limit: int = 20) -> List[SyncRun]:
        """Newest runs first."""
        async with self.connection() as conn:
            rows = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM sync_runs ORDER BY id DESC LIMIT ?", [limit]
            ).fetchall()
        return [_row_to_run(r) for r in rows]

    # ═══════════════════════════════════════════════════════════════════════════
    # MONITORING
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_stats(self) -> Dict[str, Any]:
        """Row counts per table."""
        stats: Dict[str, Any] = {}
        async with self.connection() as conn:
            for table in STAT_TABLES:
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
        stats["db_path"] = self.db_path
        return stats


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[SyncStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> SyncStore:
    """Get singleton store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = SyncStore()
            await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
