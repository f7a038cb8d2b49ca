"""
Command line entry point.

Usage:
    shopsync connect --shop my-shop.myshopify.com --token shpat_...
    shopsync connect --shop my-shop.myshopify.com --code <oauth code>
    shopsync sync             # scheduled-style run (since last success)
    shopsync sync --full      # full catch-up, like a manual trigger
    shopsync runs --limit 10
    shopsync serve
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from shopsync.config import config
from shopsync.exceptions import ShopifyError
from shopsync.models import SyncStatus
from shopsync.observability import setup_logging, get_logger
from shopsync.shopify import exchange_access_token
from shopsync.store import SyncStore
from shopsync.sync_service import SyncService

logger = get_logger(__name__)


async def connect(db_path: Optional[str], shop: str, token: Optional[str], code: Optional[str]) -> int:
    """Store the shop credential, exchanging an OAuth code first if given."""
    if code:
        try:
            token = await exchange_access_token(shop, code)
        except ShopifyError as e:
            logger.error(f"Could not exchange OAuth code: {e}")
            return 1

    store = SyncStore(db_path)
    await store.connect()
    try:
        await store.save_shop_connection(shop, token)
    finally:
        await store.close()
    logger.info(f"Connected {shop}")
    return 0


async def sync(db_path: Optional[str], full: bool) -> int:
    """Run one sync in the foreground."""
    store = SyncStore(db_path)
    await store.connect()
    try:
        service = SyncService(store)
        await service.recover_abandoned_runs()
        result = await service.run(manual=full)
    finally:
        await store.close()

    if result is None:
        logger.error("No shop connected. Run 'shopsync connect' first.")
        return 1
    if result.status is SyncStatus.FAILED:
        logger.error(f"Sync #{result.run_id} failed: {result.error_summary}")
        return 1
    return 0


async def show_runs(db_path: Optional[str], limit: int) -> int:
    store = SyncStore(db_path)
    await store.connect()
    try:
        runs = await store.list_sync_runs(limit=limit)
    finally:
        await store.close()

    for run in runs:
        finished = run.finished_at.isoformat() if run.finished_at else "-"
        line = (
            f"#{run.id:<5} {run.status.value:<8} {run.started_at.isoformat()}  {finished}  "
            f"orders={run.orders_upserted} payouts={run.payouts_synced} fees={run.fee_lines_upserted}"
        )
        if run.error_summary:
            line += f"  error={run.error_summary}"
        print(line)
    return 0


def serve() -> int:
    import uvicorn

    uvicorn.run("web.main:app", host=config.web.host, port=config.web.port, log_config=None)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="shopsync", description="Sync Shopify data into DuckDB")
    parser.add_argument("--db", default=None, help=f"DuckDB path (default: {config.store.db_path})")
    sub = parser.add_subparsers(dest="command", required=True)

    p_connect = sub.add_parser("connect", help="Store the shop access credential")
    p_connect.add_argument("--shop", required=True, help="Shop domain, e.g. my-shop.myshopify.com")
    credential = p_connect.add_mutually_exclusive_group(required=True)
    credential.add_argument("--token", help="Admin API access token")
    credential.add_argument("--code", help="OAuth authorization code to exchange")

    p_sync = sub.add_parser("sync", help="Run one sync now")
    p_sync.add_argument("--full", action="store_true", help="Ignore the watermark and fetch all orders")

    p_runs = sub.add_parser("runs", help="Show recent sync runs")
    p_runs.add_argument("--limit", type=int, default=20)

    sub.add_parser("serve", help="Run the web service with the background scheduler")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=config.logging.level, json_format=config.logging.json_format)

    if args.command == "connect":
        return asyncio.run(connect(args.db, args.shop, args.token, args.code))
    if args.command == "sync":
        return asyncio.run(sync(args.db, args.full))
    if args.command == "runs":
        return asyncio.run(show_runs(args.db, args.limit))
    return serve()


if __name__ == "__main__":
    sys.exit(main())
