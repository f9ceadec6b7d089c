"""Tests for the JSON file sink."""
import json
from datetime import date

import pytest
import pytest_asyncio

from conftest import make_board, make_candle, make_security, make_trade
from iss_ingest.ingestion.batch import BatchIngestor
from iss_ingest.models import Table
from iss_ingest.sinks import FileSink, get_sink
from iss_ingest.sinks.database import DatabaseSink


@pytest_asyncio.fixture
async def file_sink(tmp_path):
    async with FileSink(root=tmp_path / "md") as sink:
        yield sink


class TestWriteBatch:
    """One file per chunk, named by label and part."""

    @pytest.mark.asyncio
    async def test_chunks_become_numbered_files(self, file_sink):
        trades = [make_trade(n) for n in range(1, 6)]
        await BatchIngestor(file_sink, chunk_size=2).ingest(Table.TRADES, trades, "stock-shares-TQBR-000000")

        names = sorted(p.name for p in (file_sink.root / "trades").iterdir())
        assert names == [
            "stock-shares-TQBR-000000.1.json",
            "stock-shares-TQBR-000000.2.json",
            "stock-shares-TQBR-000000.json",
        ]
        first = json.loads((file_sink.root / "trades" / "stock-shares-TQBR-000000.json").read_text())
        assert [row["tradeno"] for row in first] == [1, 2]
        assert first[0]["side"] == "buy"
        assert first[0]["event_time"] == "2024-03-01T10:00:01"

    @pytest.mark.asyncio
    async def test_rewrite_replaces_file(self, file_sink):
        await file_sink.write_batch(Table.TRADES, [make_trade(1), make_trade(2)], "unit")
        await file_sink.write_batch(Table.TRADES, [make_trade(3)], "unit")

        rows = json.loads(file_sink.path_for(Table.TRADES, "unit").read_text())
        assert [row["tradeno"] for row in rows] == [3]

    @pytest.mark.asyncio
    async def test_empty_batch_writes_no_file(self, file_sink):
        assert await file_sink.write_batch(Table.CANDLES, [], "empty") == 0
        assert not (file_sink.root / "candles").exists()

    @pytest.mark.asyncio
    async def test_candle_nulls_survive(self, file_sink):
        candle = make_candle("SBER", date(2024, 3, 1)).model_copy(update={"open": None})
        await file_sink.write_batch(Table.CANDLES, [candle], "SBER-2024-03-01")

        rows = json.loads(file_sink.path_for(Table.CANDLES, "SBER-2024-03-01").read_text())
        assert rows[0]["open"] is None
        assert rows[0]["end"] == "2024-03-01T10:00:59"


class TestConditionalWrites:
    """Reference records live in one file per natural key."""

    @pytest.mark.asyncio
    async def test_write_if_absent_creates_each_key_once(self, file_sink):
        boards = [make_board("TQBR"), make_board("SMAL", is_traded=False)]

        assert await file_sink.write_if_absent(Table.BOARDS, boards) == 2
        assert await file_sink.write_if_absent(Table.BOARDS, boards + [make_board("TQTF")]) == 1
        assert (file_sink.root / "boards" / "stock-shares-TQBR.json").exists()

    @pytest.mark.asyncio
    async def test_exists_follows_write_if_absent(self, file_sink):
        security = make_security("SBER")
        assert not await file_sink.exists(security)

        await file_sink.write_if_absent(Table.SECURITIES, [security])

        assert await file_sink.exists(security)
        assert not await file_sink.exists(make_security("GAZP"))

    @pytest.mark.asyncio
    async def test_existing_file_is_not_overwritten(self, file_sink):
        path = file_sink.path_for(Table.SECURITIES, "SBER")
        path.parent.mkdir(parents=True)
        path.write_text("[]")

        assert await file_sink.write_if_absent(Table.SECURITIES, [make_security("SBER")]) == 0
        assert path.read_text() == "[]"


class TestGetSink:
    def test_files(self, settings):
        sink = get_sink(settings.model_copy(update={"sink": "files"}))
        assert isinstance(sink, FileSink)
        assert sink.root == settings.md_path

    def test_database_is_default(self, settings):
        assert isinstance(get_sink(settings), DatabaseSink)
