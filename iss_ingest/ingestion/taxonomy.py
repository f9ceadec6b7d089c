"""
Taxonomy walk: venues -> markets -> boards -> securities.

Each level's full, unfiltered batch is handed to the ReferenceSynchronizer
before filtering, so the reference tables hold the whole taxonomy while the
fact walk narrows to the admitted subset. Order follows upstream response
order at every level. Any failure is fatal to the run.
"""
from dataclasses import dataclass, field
from typing import Optional, Protocol, Sequence

import structlog

from iss_ingest.config import Settings
from iss_ingest.errors import TaxonomyError
from iss_ingest.ingestion.reference import ReferenceSynchronizer, SyncResult
from iss_ingest.models import Board, Market, Security, Venue

logger = structlog.get_logger()


class TaxonomySource(Protocol):
    async def fetch_venues(self) -> list[Venue]: ...
    async def fetch_markets(self, venue: str) -> list[Market]: ...
    async def fetch_boards(self, venue: str, market: str) -> list[Board]: ...
    async def fetch_securities(self, venue: str, market: str) -> list[Security]: ...


@dataclass(frozen=True)
class TaxonomyFilter:
    """
    Allow-lists over (venue, market, board, security).
    An empty allow-list admits everything at that level.
    """
    venues: frozenset[str] = frozenset({"stock"})
    markets: frozenset[str] = frozenset({"shares"})
    boards: frozenset[str] = frozenset({"TQBR"})
    securities: frozenset[str] = frozenset()
    traded_only: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "TaxonomyFilter":
        return cls(
            venues=frozenset(settings.venues),
            markets=frozenset(settings.markets),
            boards=frozenset(settings.boards),
            securities=frozenset(settings.securities),
            traded_only=settings.traded_only,
        )

    def admit_venue(self, venue: Venue) -> bool:
        return not self.venues or venue.name in self.venues

    def admit_market(self, market: Market) -> bool:
        return not self.markets or market.name in self.markets

    def admit_board(self, board: Board) -> bool:
        if self.traded_only and not board.is_traded:
            return False
        return not self.boards or board.boardid in self.boards

    def admit_security(self, security: Security) -> bool:
        return not self.securities or security.secid in self.securities


@dataclass
class TaxonomyResult:
    boards: list[Board] = field(default_factory=list)
    securities: list[Security] = field(default_factory=list)
    synced: SyncResult = field(default_factory=SyncResult)


class TaxonomyWalker:
    """Enumerates the admitted boards and securities, persisting every level."""

    def __init__(
        self,
        source: TaxonomySource,
        synchronizer: ReferenceSynchronizer,
        taxonomy_filter: Optional[TaxonomyFilter] = None,
    ):
        self.source = source
        self.synchronizer = synchronizer
        self.filter = taxonomy_filter or TaxonomyFilter()

    async def enumerate_boards(self, result: Optional[TaxonomyResult] = None) -> TaxonomyResult:
        """
        Walk venue -> market -> board and return the admitted boards.

        Raises:
            TaxonomyError: any enumeration request or reference write failed
        """
        result = result or TaxonomyResult()
        venue_name = market_name = None
        try:
            venues = await self.source.fetch_venues()
            result.synced += await self.synchronizer.sync(venues, label="all")

            for venue in venues:
                if not self.filter.admit_venue(venue):
                    continue
                venue_name, market_name = venue.name, None

                markets = await self.source.fetch_markets(venue.name)
                result.synced += await self.synchronizer.sync(markets, label=venue.name)

                for market in markets:
                    if not self.filter.admit_market(market):
                        continue
                    market_name = market.name

                    boards = await self.source.fetch_boards(venue.name, market.name)
                    result.synced += await self.synchronizer.sync(
                        boards, label=f"{venue.name}-{market.name}"
                    )
                    result.boards.extend(b for b in boards if self.filter.admit_board(b))

        except Exception as e:
            raise TaxonomyError.wrap(
                "Taxonomy enumeration failed",
                e,
                venue=venue_name,
                market=market_name,
            ) from e

        logger.info(
            "Enumerated boards",
            admitted=[b.path for b in result.boards],
        )
        return result

    async def enumerate_securities(self, boards: Sequence[Board], result: Optional[TaxonomyResult] = None) -> TaxonomyResult:
        """
        Fetch securities for every market holding an admitted board.
        All fetched securities are persisted; those listed on an admitted
        board and passing the security allow-list are returned.

        Raises:
            TaxonomyError: any enumeration request or reference write failed
        """
        result = result or TaxonomyResult(boards=list(boards))
        admitted_boards = {(b.venue, b.market, b.boardid) for b in boards}

        markets: list[tuple[str, str]] = []
        for b in boards:
            if (b.venue, b.market) not in markets:
                markets.append((b.venue, b.market))

        for venue, market in markets:
            try:
                securities = await self.source.fetch_securities(venue, market)
                result.synced += await self.synchronizer.sync(
                    securities, label=f"{venue}-{market}"
                )
            except Exception as e:
                raise TaxonomyError.wrap(
                    "Security enumeration failed",
                    e,
                    venue=venue,
                    market=market,
                ) from e

            # A secid is walked once even when listed on several admitted boards
            seen = {s.secid for s in result.securities}
            for s in securities:
                if s.secid in seen:
                    continue
                if (s.venue, s.market, s.boardid) in admitted_boards and self.filter.admit_security(s):
                    result.securities.append(s)
                    seen.add(s.secid)

        logger.info("Enumerated securities", admitted=len(result.securities))
        return result

    async def enumerate(self, with_securities: bool = False) -> TaxonomyResult:
        result = await self.enumerate_boards()
        if with_securities:
            await self.enumerate_securities(result.boards, result)
        return result
