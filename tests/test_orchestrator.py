"""End-to-end runs through the orchestrator with a fake ISS server."""
from datetime import date

import httpx
import pytest

from conftest import FakeISS, RecordingSink, trade_row
from iss_ingest.clients.iss import ISSClient
from iss_ingest.errors import PageError, TaxonomyError, UnitFailures
from iss_ingest.ingestion.orchestrator import IngestionOrchestrator, RunKind
from iss_ingest.models import Table


async def run(kind, settings, iss, sink):
    async with ISSClient(settings=settings, transport=iss.transport()) as client:
        orchestrator = IngestionOrchestrator(client, sink, settings=settings)
        try:
            await getattr(orchestrator, f"run_{kind}")()
        finally:
            last = orchestrator.last_result
    return last


def trade_requests(iss: FakeISS) -> list[str]:
    return [p for p in iss.paths() if p.endswith("/trades.json")]


class TestTradesRun:
    """stock/shares with a traded TQBR board and an untraded EQBR board."""

    @pytest.mark.asyncio
    async def test_only_traded_board_is_streamed_but_both_are_persisted(self, settings, fake_iss, sink):
        result = await run("trades", settings, fake_iss, sink)

        assert result.success
        assert result.kind is RunKind.TRADES
        assert [b.boardid for b in sink.rows(Table.BOARDS)] == ["TQBR", "EQBR"]
        assert set(trade_requests(fake_iss)) == {"/iss/engines/stock/markets/shares/boards/TQBR/trades.json"}
        assert [t.tradeno for t in sink.rows(Table.TRADES)] == list(range(1, 8))
        assert result.pages == 3
        assert result.trades_written == 7
        assert result.boards == 1

    @pytest.mark.asyncio
    async def test_pages_are_labelled_by_board_and_index(self, settings, fake_iss, sink):
        await run("trades", settings, fake_iss, sink)

        # chunk_size=2 splits each 3-row page into two parts
        assert sink.labels(Table.TRADES) == [
            ("stock-shares-TQBR-000000", 0),
            ("stock-shares-TQBR-000000", 1),
            ("stock-shares-TQBR-000001", 0),
            ("stock-shares-TQBR-000001", 1),
            ("stock-shares-TQBR-000002", 0),
        ]

    @pytest.mark.asyncio
    async def test_taxonomy_failure_aborts_before_any_board(self, settings, sink):
        iss = FakeISS()
        serve = iss.handler

        def handler(request):
            if request.url.path.endswith("/boards.json"):
                iss.requests.append(request)
                return httpx.Response(503)
            return serve(request)

        iss.handler = handler
        with pytest.raises(TaxonomyError):
            await run("trades", settings, iss, sink)

        assert trade_requests(iss) == []
        assert sink.rows(Table.TRADES) == []


class TestUnitFailures:
    """A failing board aborts only itself; failures are raised together at the end."""

    @pytest.fixture
    def iss(self):
        return FakeISS(trades={
            "TQBR": [trade_row(n) for n in range(1, 8)],
            "EQBR": [trade_row(100), trade_row(101, side="?")],
        })

    @pytest.fixture
    def all_boards(self, settings):
        return settings.model_copy(update={"boards": [], "traded_only": False})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency", [1, 4])
    async def test_other_boards_complete(self, all_boards, iss, sink, concurrency):
        settings = all_boards.model_copy(update={"max_concurrency": concurrency})

        with pytest.raises(UnitFailures) as exc_info:
            await run("trades", settings, iss, sink)

        failures = exc_info.value.failures
        assert list(failures) == ["stock/shares/EQBR"]
        assert isinstance(failures["stock/shares/EQBR"], PageError)
        assert failures["stock/shares/EQBR"].context["cursor"] == 0
        assert sorted(t.tradeno for t in sink.rows(Table.TRADES)) == list(range(1, 8))

    @pytest.mark.asyncio
    async def test_result_records_failed_units(self, all_boards, iss, sink):
        async with ISSClient(settings=all_boards, transport=iss.transport()) as client:
            orchestrator = IngestionOrchestrator(client, sink, settings=all_boards)
            with pytest.raises(UnitFailures):
                await orchestrator.run_trades()

        result = orchestrator.last_result
        assert not result.success
        assert result.failed_units == ["stock/shares/EQBR"]
        assert "1 unit(s) failed" in result.error
        assert result.to_dict()["metrics"]["trades_written"] == 7

    @pytest.mark.asyncio
    async def test_write_failure_is_a_page_error(self, settings, fake_iss):
        sink = RecordingSink(fail_on=lambda table, label, part: table is Table.TRADES and label.endswith("000001"))

        with pytest.raises(UnitFailures) as exc_info:
            await run("trades", settings, fake_iss, sink)

        err = exc_info.value.failures["stock/shares/TQBR"]
        assert isinstance(err, PageError)
        assert err.context["page"] == 1
        assert err.context["cursor"] == 3


class TestCandlesRun:
    @pytest.mark.asyncio
    async def test_walks_admitted_securities(self, settings, fake_iss, sink):
        for day in ("2024-03-01", "2024-03-02", "2024-03-03"):
            fake_iss.candles[("SBER", day)] = [
                [100, 101, 102, 99, 1000, 10, f"{day} 10:00:00", f"{day} 10:00:59"],
            ]

        result = await run("candles", settings, fake_iss, sink)

        assert result.securities == 2
        assert result.days_fetched == 6
        assert result.empty_days == 3
        assert result.candles_written == 3
        assert result.securities_aborted == 0
        assert {c.secid for c in sink.rows(Table.CANDLES)} == {"SBER"}
        # OLD is listed on the untraded board and is never walked
        assert not any("/OLD/" in p for p in fake_iss.paths())

    @pytest.mark.asyncio
    async def test_threshold_aborts_a_quiet_security(self, settings, fake_iss, sink):
        settings = settings.model_copy(update={"days": 10, "empty_day_threshold": 1})
        fake_iss.candles[("SBER", "2024-03-01")] = [
            [100, 101, 102, 99, 1000, 10, "2024-03-01 10:00:00", "2024-03-01 10:00:59"],
        ]

        result = await run("candles", settings, fake_iss, sink)

        # SBER: day 1 has data, days 2-3 are empty. GAZP: days 1-2 are empty.
        assert result.securities_aborted == 2
        assert result.days_fetched == 5

    @pytest.mark.asyncio
    async def test_reverse_run(self, settings, fake_iss, sink):
        settings = settings.model_copy(update={"date_start": date(2024, 3, 10), "reverse": True, "days": 1})

        await run("candles", settings, fake_iss, sink)

        froms = [r.url.params["from"] for r in fake_iss.requests if r.url.path.endswith("/candles.json")]
        assert froms == ["2024-03-09", "2024-03-09"]


class TestTaxonomyRun:
    @pytest.mark.asyncio
    async def test_persists_the_whole_taxonomy(self, settings, fake_iss, sink):
        result = await run("taxonomy", settings, fake_iss, sink)

        assert result.success
        assert result.references_inserted == 9
        assert [s.secid for s in sink.rows(Table.SECURITIES)] == ["SBER", "GAZP", "OLD"]
        assert trade_requests(fake_iss) == []

    @pytest.mark.asyncio
    async def test_rerun_skips_existing_references(self, settings, fake_iss, sink):
        await run("taxonomy", settings, fake_iss, sink)
        result = await run("taxonomy", settings, fake_iss, sink)

        assert result.references_inserted == 0
        assert result.references_skipped == 9
