"""
Calendar-windowed walks over time-bounded series (candles).

One fetch per calendar day. Empty days are counted per security; once the
count exceeds the configured threshold the remaining days of that security
are skipped.

Counter policy:
- CUMULATIVE (default): the counter never resets during one security's
  walk, so scattered empty days (weekends, holidays) add up.
- CONSECUTIVE: a non-empty day resets the counter, so only an unbroken run
  of empty days aborts the walk.
"""
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Awaitable, Callable, Iterator, Optional, Sequence

import structlog

from iss_ingest.errors import DecodeError, IngestError, UpstreamError, WindowError
from iss_ingest.ingestion.batch import BatchIngestor
from iss_ingest.models import Candle, EmptyDayPolicy, Security, Table
from iss_ingest.utils.logging import LogContext

logger = structlog.get_logger()

WindowFetch = Callable[[Security, date, date], Awaitable[Sequence[Candle]]]


def calendar_windows(start_date: date, num_days: int, reverse: bool = False) -> Iterator[tuple[date, date]]:
    """
    Yield half-open day windows ``[date_start, date_end)``.

    Forward:  [start + n, start + n + 1)
    Reverse:  [start - n - 1, start - n), strictly backwards from start_date
    """
    one_day = timedelta(days=1)
    for n in range(num_days):
        if reverse:
            yield start_date - (n + 1) * one_day, start_date - n * one_day
        else:
            yield start_date + n * one_day, start_date + (n + 1) * one_day


@dataclass
class WalkResult:
    secid: str
    days_fetched: int = 0
    empty_days: int = 0
    rows_written: int = 0
    aborted_at: Optional[date] = None
    windows: list[tuple[date, date]] = field(default_factory=list)

    @property
    def aborted(self) -> bool:
        return self.aborted_at is not None


class CalendarWindowWalker:
    """Walks one security day by day and ingests every non-empty window."""

    def __init__(
        self,
        fetch_window: WindowFetch,
        ingestor: BatchIngestor,
        policy: EmptyDayPolicy = EmptyDayPolicy.CUMULATIVE,
    ):
        self._fetch_window = fetch_window
        self.ingestor = ingestor
        self.policy = EmptyDayPolicy(policy)

    async def walk(
        self,
        security: Security,
        start_date: date,
        num_days: int,
        reverse: bool = False,
        empty_day_threshold: int = 0,
    ) -> WalkResult:
        """
        Fetch and ingest ``num_days`` daily windows for ``security``.

        Raises:
            WindowError: a window could not be fetched, decoded or written
        """
        result = WalkResult(secid=security.secid)
        empty_days = 0

        for date_start, date_end in calendar_windows(start_date, num_days, reverse):
            result.windows.append((date_start, date_end))
            with LogContext(secid=security.secid, date_start=date_start.isoformat()):
                try:
                    candles = await self._fetch_window(security, date_start, date_end)
                except (DecodeError, UpstreamError) as e:
                    raise WindowError.wrap(
                        "Window fetch failed",
                        e,
                        secid=security.secid,
                        date_start=date_start,
                        date_end=date_end,
                    ) from e
                result.days_fetched += 1

                if not candles:
                    empty_days += 1
                    result.empty_days += 1
                    logger.debug("Empty day", empty_days=empty_days, threshold=empty_day_threshold)
                    if empty_days > empty_day_threshold:
                        result.aborted_at = date_start
                        logger.info(
                            "Empty day threshold exceeded, skipping remaining days",
                            empty_days=empty_days,
                            threshold=empty_day_threshold,
                        )
                        break
                    continue

                if self.policy is EmptyDayPolicy.CONSECUTIVE:
                    empty_days = 0

                label = f"{security.secid}-{date_start.isoformat()}"
                try:
                    result.rows_written += await self.ingestor.ingest(Table.CANDLES, candles, label)
                except IngestError as e:
                    raise WindowError.wrap(
                        "Window write failed",
                        e,
                        secid=security.secid,
                        date_start=date_start,
                        date_end=date_end,
                    ) from e

        return result
