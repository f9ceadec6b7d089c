"""
Cursor-driven pagination over unbounded fact streams (board trades).

The upstream source paginates to exhaustion: a page with zero rows is the
only termination signal. There is no count or end-time limit, and the
cursor is never persisted; every call starts from the cursor it is given.
"""
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Generic, Optional, Sequence, TypeVar

import structlog

from iss_ingest.errors import DecodeError, PageError, ProtocolError, UpstreamError
from iss_ingest.models import Board, Record

logger = structlog.get_logger()

R = TypeVar("R", bound=Record)

PageFetch = Callable[[Board, int], Awaitable[Sequence[R]]]


@dataclass(frozen=True)
class FactPage(Generic[R]):
    """One non-empty page of a fact stream."""
    board: Board
    index: int
    cursor: int
    rows: Sequence[R]

    @property
    def next_cursor(self) -> int:
        return self.cursor + len(self.rows)


class PaginatedFactStream(Generic[R]):
    """
    Drives a page fetcher for one board until an empty page is returned.

    Usage:
        stream = PaginatedFactStream(client.fetch_trades_page)
        async for page in stream.stream(board):
            ...
    """

    def __init__(self, fetch_page: PageFetch):
        self._fetch_page = fetch_page

    async def stream(self, board: Board, start_cursor: int = 0) -> AsyncIterator[FactPage[R]]:
        """
        Yield pages of ``board`` starting at ``start_cursor``.

        Raises:
            PageError: a page could not be fetched or decoded
            ProtocolError: the upstream returned the same page twice
        """
        cursor = start_cursor
        index = 0
        previous_keys: Optional[list[tuple]] = None

        while True:
            try:
                rows = await self._fetch_page(board, cursor)
            except (DecodeError, UpstreamError) as e:
                raise PageError.wrap(
                    "Page fetch failed",
                    e,
                    venue=board.venue,
                    market=board.market,
                    board=board.boardid,
                    cursor=cursor,
                    page=index,
                ) from e

            if not rows:
                logger.info(
                    "Fact stream exhausted",
                    board=board.path,
                    pages=index,
                    cursor=cursor,
                )
                return

            keys = [row.natural_key() for row in rows]
            if keys == previous_keys:
                raise ProtocolError(
                    "Upstream returned the previous page again",
                    venue=board.venue,
                    market=board.market,
                    board=board.boardid,
                    cursor=cursor,
                    page=index,
                )

            page = FactPage(board=board, index=index, cursor=cursor, rows=rows)

            logger.debug("Fetched page", board=board.path, page=index, cursor=cursor, rows=len(rows))
            yield page

            previous_keys = keys
            cursor = page.next_cursor
            index += 1
