"""
Ingestion orchestrator.

Pipeline:
==========
1. TaxonomyWalker enumerates venues -> markets -> boards (-> securities),
   persisting every level through the ReferenceSynchronizer.
2. Per admitted board: PaginatedFactStream -> BatchIngestor (trades).
   Per admitted security: CalendarWindowWalker -> BatchIngestor (candles).

Units of work (boards or securities) run one at a time in taxonomy order,
or up to MAX_CONCURRENCY at once. A failing unit aborts only itself; once
every unit has finished, all failures are raised together as UnitFailures.
A taxonomy failure aborts the run before any unit starts.

Configuration (via environment variables or .env file):
=======================================================
DATE_START=2024-01-01        # First calendar day for candles
DAYS=30                      # Number of days to walk
INTERVAL=1                   # Candle interval in minutes
REVERSE=false                # Walk backwards from DATE_START
EMPTY_DAY_THRESHOLD=5        # Empty days tolerated per security
EMPTY_DAY_POLICY=cumulative  # cumulative | consecutive
CHUNK_SIZE=1000              # Rows per sink write
MAX_CONCURRENCY=1            # Boards/securities processed at once
SYNC_MODE=insert-if-absent   # bulk | check-then-insert | insert-if-absent
SINK=database                # database | files
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog

from iss_ingest.clients.iss import ISSClient
from iss_ingest.config import Settings, get_settings
from iss_ingest.errors import IngestError, PageError, UnitFailures
from iss_ingest.ingestion.batch import BatchIngestor
from iss_ingest.ingestion.calendar import CalendarWindowWalker
from iss_ingest.ingestion.pagination import PaginatedFactStream
from iss_ingest.ingestion.reference import ReferenceSynchronizer
from iss_ingest.ingestion.taxonomy import TaxonomyFilter, TaxonomyResult, TaxonomyWalker
from iss_ingest.models import Board, Candle, Security, Table
from iss_ingest.sinks.base import Sink
from iss_ingest.utils.logging import LogContext

logger = structlog.get_logger()

U = TypeVar("U")


class RunKind(str, Enum):
    TAXONOMY = "taxonomy"
    TRADES = "trades"
    CANDLES = "candles"


@dataclass
class IngestionResult:
    """Result of an ingestion run."""
    kind: RunKind
    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    success: bool = False
    error: Optional[str] = None

    # Taxonomy
    boards: int = 0
    securities: int = 0
    references_inserted: int = 0
    references_skipped: int = 0

    # Trades
    pages: int = 0
    trades_written: int = 0

    # Candles
    days_fetched: int = 0
    empty_days: int = 0
    securities_aborted: int = 0
    candles_written: int = 0

    failed_units: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "run_id": self.run_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "success": self.success,
            "error": self.error,
            "metrics": {
                "boards": self.boards,
                "securities": self.securities,
                "references_inserted": self.references_inserted,
                "references_skipped": self.references_skipped,
                "pages": self.pages,
                "trades_written": self.trades_written,
                "days_fetched": self.days_fetched,
                "empty_days": self.empty_days,
                "securities_aborted": self.securities_aborted,
                "candles_written": self.candles_written,
            },
            "failed_units": self.failed_units,
            "duration_seconds": self.duration_seconds,
        }


class IngestionOrchestrator:
    """Wires the taxonomy walk to the trade and candle ingestion paths."""

    def __init__(
        self,
        client: ISSClient,
        sink: Sink,
        settings: Optional[Settings] = None,
        taxonomy_filter: Optional[TaxonomyFilter] = None,
    ):
        self.settings = settings or get_settings()
        self.client = client
        self.sink = sink
        self.last_result: Optional[IngestionResult] = None

        self.ingestor = BatchIngestor(sink, chunk_size=self.settings.chunk_size)
        self.synchronizer = ReferenceSynchronizer(self.ingestor, mode=self.settings.sync_mode)
        self.taxonomy = TaxonomyWalker(
            client,
            self.synchronizer,
            taxonomy_filter or TaxonomyFilter.from_settings(self.settings),
        )
        self.trade_stream = PaginatedFactStream(client.fetch_trades_page)
        self.calendar = CalendarWindowWalker(
            self._fetch_candles,
            self.ingestor,
            policy=self.settings.empty_day_policy,
        )

    async def _fetch_candles(self, security: Security, date_start: date, date_end: date) -> list[Candle]:
        return await self.client.fetch_candles(security, self.settings.interval, date_start, date_end)

    # =========================================================================
    # RUNS
    # =========================================================================

    async def run_taxonomy(self) -> IngestionResult:
        """Persist the reference taxonomy only."""
        result = self._new_result(RunKind.TAXONOMY)
        try:
            self._apply_taxonomy(result, await self.taxonomy.enumerate(with_securities=True))
            result.success = True
            return result
        except IngestError as e:
            result.error = str(e)
            raise
        finally:
            self._finish(result)

    async def run_trades(self) -> IngestionResult:
        """Taxonomy walk, then every admitted board's trades."""
        result = self._new_result(RunKind.TRADES)
        try:
            taxonomy = await self.taxonomy.enumerate()
            self._apply_taxonomy(result, taxonomy)
            await self._run_units(
                taxonomy.boards,
                lambda board: self.ingest_board(board, result),
                lambda board: board.path,
                result,
            )
            result.success = True
            return result
        except IngestError as e:
            result.error = str(e)
            raise
        finally:
            self._finish(result)

    async def run_candles(self) -> IngestionResult:
        """Taxonomy walk including securities, then a calendar walk per security."""
        result = self._new_result(RunKind.CANDLES)
        try:
            taxonomy = await self.taxonomy.enumerate(with_securities=True)
            self._apply_taxonomy(result, taxonomy)
            await self._run_units(
                taxonomy.securities,
                lambda security: self.ingest_security(security, result),
                lambda security: security.secid,
                result,
            )
            result.success = True
            return result
        except IngestError as e:
            result.error = str(e)
            raise
        finally:
            self._finish(result)

    # =========================================================================
    # UNITS OF WORK
    # =========================================================================

    async def ingest_board(self, board: Board, result: IngestionResult) -> int:
        """Stream one board's trades from cursor 0 to exhaustion."""
        written = 0
        with LogContext(venue=board.venue, market=board.market, board=board.boardid):
            async for page in self.trade_stream.stream(board):
                label = f"{board.venue}-{board.market}-{board.boardid}-{page.index:06d}"
                try:
                    count = await self.ingestor.ingest(Table.TRADES, page.rows, label)
                except IngestError as e:
                    raise PageError.wrap(
                        "Page write failed",
                        e,
                        venue=board.venue,
                        market=board.market,
                        board=board.boardid,
                        cursor=page.cursor,
                        page=page.index,
                    ) from e
                written += count
                result.pages += 1
                result.trades_written += count

            logger.info("Board ingested", trades=written)
        return written

    async def ingest_security(self, security: Security, result: IngestionResult) -> int:
        """Walk one security's calendar windows."""
        with LogContext(venue=security.venue, market=security.market, secid=security.secid):
            walk = await self.calendar.walk(
                security,
                start_date=self.settings.date_start,
                num_days=self.settings.days,
                reverse=self.settings.reverse,
                empty_day_threshold=self.settings.empty_day_threshold,
            )
            result.days_fetched += walk.days_fetched
            result.empty_days += walk.empty_days
            result.candles_written += walk.rows_written
            if walk.aborted:
                result.securities_aborted += 1

            logger.info(
                "Security ingested",
                candles=walk.rows_written,
                days=walk.days_fetched,
                empty_days=walk.empty_days,
                aborted_at=walk.aborted_at.isoformat() if walk.aborted_at else None,
            )
        return walk.rows_written

    async def _run_units(
        self,
        units: Sequence[U],
        worker: Callable[[U], Awaitable[Any]],
        name_of: Callable[[U], str],
        result: IngestionResult,
    ) -> None:
        """
        Run ``worker`` for every unit, sequentially or bounded-parallel.

        Raises:
            UnitFailures: after all units finished, if any of them failed
        """
        failures: dict[str, BaseException] = {}
        concurrency = self.settings.max_concurrency

        async def guarded(unit: U) -> None:
            try:
                await worker(unit)
            except Exception as e:
                logger.error("Unit failed", unit=name_of(unit), error=str(e))
                failures[name_of(unit)] = e

        if concurrency <= 1:
            for unit in units:
                await guarded(unit)
        else:
            semaphore = asyncio.Semaphore(concurrency)

            async def bounded(unit: U) -> None:
                async with semaphore:
                    await guarded(unit)

            await asyncio.gather(*(bounded(unit) for unit in units))

        if failures:
            result.failed_units = list(failures)
            raise UnitFailures(failures, kind=result.kind.value)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _new_result(self, kind: RunKind) -> IngestionResult:
        result = IngestionResult(
            kind=kind,
            run_id=str(uuid.uuid4()),
            started_at=datetime.now(timezone.utc),
        )
        self.last_result = result
        logger.info("Starting ingestion run", kind=kind.value, run_id=result.run_id)
        return result

    @staticmethod
    def _apply_taxonomy(result: IngestionResult, taxonomy: TaxonomyResult) -> None:
        result.boards = len(taxonomy.boards)
        result.securities = len(taxonomy.securities)
        result.references_inserted = taxonomy.synced.inserted
        result.references_skipped = taxonomy.synced.skipped

    @staticmethod
    def _finish(result: IngestionResult) -> None:
        result.finished_at = datetime.now(timezone.utc)
        result.duration_seconds = round(
            (result.finished_at - result.started_at).total_seconds(), 3
        )
        logger.info(
            "Ingestion run finished",
            kind=result.kind.value,
            run_id=result.run_id,
            success=result.success,
            duration_seconds=result.duration_seconds,
        )
