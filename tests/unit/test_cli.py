"""
Tests for shopsync.cli module.
"""
import asyncio

import pytest

from shopsync import cli
from shopsync.store import SyncStore


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep main() from replacing pytest's log handlers."""
    monkeypatch.setattr(cli, "setup_logging", lambda **kwargs: None)


async def read_connection(path):
    store = SyncStore(path)
    await store.connect()
    try:
        return await store.get_shop_connection()
    finally:
        await store.close()


class TestParser:
    """Tests for argument parsing."""

    def test_connect_requires_credential(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["connect", "--shop", "s.myshopify.com"])

    def test_token_and_code_are_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(
                ["connect", "--shop", "s.myshopify.com", "--token", "t", "--code", "c"]
            )

    def test_sync_full_flag(self):
        args = cli.build_parser().parse_args(["sync", "--full"])
        assert args.command == "sync"
        assert args.full


class TestCommands:
    """Tests for the commands against a temporary store."""

    def test_connect_with_token(self, tmp_path):
        db = str(tmp_path / "cli.duckdb")

        exit_code = cli.main(["--db", db, "connect", "--shop", "s.myshopify.com", "--token", "shpat_x"])

        assert exit_code == 0
        connection = asyncio.run(read_connection(db))
        assert connection.shop == "s.myshopify.com"
        assert connection.access_token == "shpat_x"

    def test_sync_without_connection_fails(self, tmp_path):
        db = str(tmp_path / "cli.duckdb")
        assert cli.main(["--db", db, "sync"]) == 1

    def test_runs_on_empty_store(self, tmp_path, capsys):
        db = str(tmp_path / "cli.duckdb")

        assert cli.main(["--db", db, "runs"]) == 0
        assert capsys.readouterr().out == ""
