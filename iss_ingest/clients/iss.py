"""
MOEX ISS (Informational & Statistical Server) API client.

Every fetch_* method issues exactly one request for one page of one table
and returns decoded domain records. An empty list is the terminal signal
for paginated tables.
"""
from datetime import date, timedelta
from typing import Any, Optional

import httpx
import structlog

from iss_ingest.clients.base import BaseAPIClient
from iss_ingest.config import Settings
from iss_ingest.decoding import (
    BOARDS,
    CANDLES,
    ENGINES,
    MARKETS,
    SECURITIES,
    TRADES,
    RowSchema,
    decode_rows,
    extract_rows,
)
from iss_ingest.errors import DecodeError
from iss_ingest.models import Board, Candle, Market, Security, Trade, TradeSide, Venue

logger = structlog.get_logger()

_SIDES = {"B": TradeSide.BUY, "S": TradeSide.SELL}


class ISSClient(BaseAPIClient):
    """
    Client for the MOEX ISS API.

    API Docs: https://iss.moex.com/iss/reference/
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings=settings, transport=transport)
        self.BASE_URL = self._settings.iss_api_base_url

    def _get_headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "ISSIngest/1.0",
        }

    async def fetch_table(
        self,
        path: str,
        schema: RowSchema,
        params: Optional[dict[str, Any]] = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch one page of one ISS table and decode its rows by position.

        Raises:
            UpstreamError: the request failed.
            DecodeError: the payload or a row does not match ``schema``.
        """
        query = {"iss.meta": "off", **schema.columns_param(), **(params or {})}
        payload = await self.get(path, params=query)
        rows = extract_rows(payload, schema.resource)
        logger.debug("Fetched table", path=path, resource=schema.resource, rows=len(rows))
        return decode_rows(schema, rows)

    # =========================================================================
    # TAXONOMY
    # =========================================================================

    async def fetch_venues(self) -> list[Venue]:
        rows = await self.fetch_table("/engines.json", ENGINES)
        return [Venue(id=r["id"], name=r["name"], title=r["title"]) for r in rows]

    async def fetch_markets(self, venue: str) -> list[Market]:
        rows = await self.fetch_table(f"/engines/{venue}/markets.json", MARKETS)
        return [
            Market(venue=venue, id=r["id"], name=r["NAME"], title=r["title"])
            for r in rows
        ]

    async def fetch_boards(self, venue: str, market: str) -> list[Board]:
        rows = await self.fetch_table(
            f"/engines/{venue}/markets/{market}/boards.json", BOARDS
        )
        return [Board(venue=venue, market=market, **r) for r in rows]

    async def fetch_securities(self, venue: str, market: str) -> list[Security]:
        rows = await self.fetch_table(
            f"/engines/{venue}/markets/{market}/securities.json", SECURITIES
        )
        return [
            Security(
                secid=r["SECID"],
                boardid=r["BOARDID"],
                shortname=r["SHORTNAME"],
                status=r["STATUS"],
                marketcode=r["MARKETCODE"],
                venue=venue,
                market=market,
            )
            for r in rows
        ]

    # =========================================================================
    # FACTS
    # =========================================================================

    async def fetch_trades_page(self, board: Board, start: int) -> list[Trade]:
        """Fetch the page of trades beginning at offset ``start``."""
        rows = await self.fetch_table(
            f"/engines/{board.venue}/markets/{board.market}/boards/{board.boardid}/trades.json",
            TRADES,
            params={"start": start},
        )
        trades = []
        for i, r in enumerate(rows):
            side = _SIDES.get(r["BUYSELL"])
            if side is None:
                raise DecodeError(
                    "Column BUYSELL is not B or S",
                    resource=TRADES.resource,
                    row=i,
                    value=repr(r["BUYSELL"]),
                )
            trades.append(Trade(
                venue=board.venue,
                market=board.market,
                boardid=board.boardid,
                secid=r["SECID"],
                tradeno=r["TRADENO"],
                side=side,
                quantity=r["QUANTITY"],
                price=r["PRICE"],
                value=r["VALUE"],
                event_time=r["SYSTIME"],
            ))
        return trades

    async def fetch_candles(
        self,
        security: Security,
        interval: int,
        date_from: date,
        date_till: date,
    ) -> list[Candle]:
        """Fetch candles of ``interval`` minutes for ``security`` in [date_from, date_till)."""
        # ISS treats both bounds as inclusive calendar days.
        last_day = date_till - timedelta(days=1)
        rows = await self.fetch_table(
            f"/engines/{security.venue}/markets/{security.market}/securities/{security.secid}/candles.json",
            CANDLES,
            params={
                "interval": interval,
                "from": date_from.isoformat(),
                "till": max(last_day, date_from).isoformat(),
            },
        )
        return [
            Candle(
                venue=security.venue,
                market=security.market,
                secid=security.secid,
                timeframe=interval,
                **r,
            )
            for r in rows
        ]
