"""
Shared pytest fixtures for iss-ingest tests.

This module provides:
- An in-memory recording sink
- Settings isolated from the environment and .env files
- Record builders
- A fake ISS server for httpx.MockTransport
"""
from datetime import date, datetime
from typing import Any, Callable, Optional, Sequence

import httpx
import pytest

from iss_ingest.config import Settings
from iss_ingest.models import Board, Candle, Record, Security, Table, Trade, TradeSide
from iss_ingest.sinks.base import Sink


# =============================================================================
# Sink
# =============================================================================


class RecordingSink(Sink):
    """Keeps every write in memory; optionally fails selected chunk writes."""

    def __init__(self, fail_on: Optional[Callable[[Table, str, int], bool]] = None):
        self.fail_on = fail_on
        self.writes: list[tuple[Table, list[Record], str, int]] = []
        self.conditional_writes: list[tuple[Table, list[Record]]] = []
        self.keys: set[tuple[Table, tuple]] = set()
        self.exists_calls = 0
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.closed = True

    def preload(self, records: Sequence[Record]) -> None:
        self.keys.update((r.TABLE, r.natural_key()) for r in records)

    async def write_batch(self, table: Table, records: Sequence[Record], label: str, part: int = 0) -> int:
        if self.fail_on and self.fail_on(table, label, part):
            raise RuntimeError(f"write refused for {label} part {part}")
        self.writes.append((table, list(records), label, part))
        self.keys.update((table, r.natural_key()) for r in records)
        return len(records)

    async def exists(self, record: Record) -> bool:
        self.exists_calls += 1
        return (record.TABLE, record.natural_key()) in self.keys

    async def write_if_absent(self, table: Table, records: Sequence[Record]) -> int:
        fresh = []
        for record in records:
            key = (table, record.natural_key())
            if key not in self.keys:
                self.keys.add(key)
                fresh.append(record)
        self.conditional_writes.append((table, fresh))
        return len(fresh)

    def rows(self, table: Table) -> list[Record]:
        stored = [r for t, records, _, _ in self.writes if t is table for r in records]
        stored += [r for t, records in self.conditional_writes if t is table for r in records]
        return stored

    def labels(self, table: Table) -> list[tuple[str, int]]:
        return [(label, part) for t, _, label, part in self.writes if t is table]


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings that ignore the developer's environment."""
    return Settings(
        _env_file=None,
        date_start=date(2024, 3, 1),
        days=3,
        chunk_size=2,
        md_path=tmp_path / "md",
        retry_max_attempts=1,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
    )


# =============================================================================
# Record builders
# =============================================================================


def make_board(boardid: str = "TQBR", is_traded: bool = True, venue: str = "stock", market: str = "shares") -> Board:
    return Board(
        venue=venue,
        market=market,
        id=57,
        board_group_id=57,
        boardid=boardid,
        title=f"{boardid} board",
        is_traded=is_traded,
    )


def make_security(secid: str = "SBER", boardid: str = "TQBR") -> Security:
    return Security(
        secid=secid,
        boardid=boardid,
        shortname=secid.title(),
        status="A",
        venue="stock",
        market="shares",
    )


def make_trade(tradeno: int, boardid: str = "TQBR") -> Trade:
    return Trade(
        venue="stock",
        market="shares",
        boardid=boardid,
        secid="SBER",
        tradeno=tradeno,
        side=TradeSide.BUY,
        quantity=10,
        price=270.5,
        value=2705.0,
        event_time=datetime(2024, 3, 1, 10, 0, tradeno % 60),
    )


def make_candle(secid: str, day: date, minute: int = 0) -> Candle:
    begin = datetime(day.year, day.month, day.day, 10, minute, 0)
    return Candle(
        venue="stock",
        market="shares",
        secid=secid,
        timeframe=1,
        open=100.0,
        close=101.0,
        high=102.0,
        low=99.0,
        value=1000.0,
        volume=10.0,
        begin=begin,
        end=begin.replace(second=59),
    )


# =============================================================================
# Fake ISS server
# =============================================================================


def iss_table(resource: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]) -> dict:
    """An ISS response body as returned with iss.meta=off."""
    return {resource: {"columns": list(columns), "data": [list(r) for r in rows]}}


class FakeISS:
    """
    Serves a small stock/shares taxonomy with one traded and one untraded
    board. Trades are paged by the ``start`` parameter.
    """

    def __init__(self, trades: Optional[dict[str, list[list[Any]]]] = None, page_size: int = 3):
        self.page_size = page_size
        self.trades = trades or {}
        self.candles: dict[tuple[str, str], list[list[Any]]] = {}
        self.requests: list[httpx.Request] = []

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/iss")
        params = request.url.params

        if path == "/engines.json":
            body = iss_table("engines", ["id", "name", "title"], [
                [1, "stock", "Stock market"],
                [2, "currency", "Currency market"],
            ])
        elif path == "/engines/stock/markets.json":
            body = iss_table("markets", ["id", "NAME", "title"], [
                [1, "shares", "Shares"],
                [2, "bonds", "Bonds"],
            ])
        elif path == "/engines/stock/markets/shares/boards.json":
            body = iss_table("boards", ["id", "board_group_id", "boardid", "title", "is_traded"], [
                [129, 57, "TQBR", "T+ shares", 1],
                [7, 45, "EQBR", "Main board", 0],
            ])
        elif path == "/engines/stock/markets/shares/securities.json":
            body = iss_table("securities", ["SECID", "BOARDID", "SHORTNAME", "STATUS", "MARKETCODE"], [
                ["SBER", "TQBR", "Sberbank", "A", "FNDT"],
                ["GAZP", "TQBR", "Gazprom", "A", None],
                ["OLD", "EQBR", "Delisted", "N", None],
            ])
        elif path.endswith("/trades.json"):
            boardid = path.split("/")[-2]
            start = int(params.get("start", 0))
            rows = self.trades.get(boardid, [])[start:start + self.page_size]
            body = iss_table("trades", ["TRADENO", "SECID", "BUYSELL", "QUANTITY", "PRICE", "VALUE", "SYSTIME"], rows)
        elif path.endswith("/candles.json"):
            secid = path.split("/")[-2]
            rows = self.candles.get((secid, params["from"]), [])
            body = iss_table("candles", ["open", "close", "high", "low", "value", "volume", "begin", "end"], rows)
        else:
            return httpx.Response(404, json={"error": path})

        return httpx.Response(200, json=body)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def trade_row(tradeno: int, secid: str = "SBER", side: str = "B") -> list[Any]:
    return [tradeno, secid, side, 10, 270.5, 2705.0, f"2024-03-01 10:00:{tradeno % 60:02d}"]


@pytest.fixture
def fake_iss() -> FakeISS:
    return FakeISS(trades={"TQBR": [trade_row(n) for n in range(1, 8)]})
