"""
Pydantic models for ISS taxonomy and market data.
Provides type-safe schemas for reference entities and fact records.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field


class Table(str, Enum):
    """Sink tables."""
    VENUES = "venues"
    MARKETS = "markets"
    BOARDS = "boards"
    SECURITIES = "securities"
    TRADES = "trades"
    CANDLES = "candles"


class SyncMode(str, Enum):
    """Reference entity synchronization modes."""
    BULK = "bulk"                            # Unconditional chunked insert
    CHECK_THEN_INSERT = "check-then-insert"  # Existence query per record (not atomic)
    INSERT_IF_ABSENT = "insert-if-absent"    # Storage-level conditional write


class SinkKind(str, Enum):
    """Run-wide sink selection."""
    DATABASE = "database"
    FILES = "files"


class EmptyDayPolicy(str, Enum):
    """How the per-security empty-day counter behaves after a non-empty day."""
    CUMULATIVE = "cumulative"    # Never reset during one security's walk
    CONSECUTIVE = "consecutive"  # Reset to zero after every non-empty day


class TradeSide(str, Enum):
    """Trade side values."""
    BUY = "buy"
    SELL = "sell"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# BASE MODELS
# =============================================================================

class Record(BaseModel):
    """Base model for everything written to a sink."""

    model_config = ConfigDict(
        frozen=True,
        use_enum_values=True,
        str_strip_whitespace=True,
    )

    TABLE: ClassVar[Table]
    KEY_FIELDS: ClassVar[tuple[str, ...]]

    @classmethod
    def columns(cls) -> list[str]:
        """Column names in declaration order."""
        return list(cls.model_fields)

    def natural_key(self) -> tuple[Any, ...]:
        return tuple(getattr(self, name) for name in self.KEY_FIELDS)

    def key_label(self) -> str:
        """Natural key rendered as a file-name-safe label."""
        parts = []
        for value in self.natural_key():
            if isinstance(value, datetime):
                value = value.strftime("%Y%m%dT%H%M%S")
            parts.append(str(value).replace("/", "_"))
        return "-".join(parts)

    def as_row(self) -> tuple[Any, ...]:
        dumped = self.model_dump()
        return tuple(dumped[name] for name in self.columns())


# =============================================================================
# REFERENCE ENTITIES
# =============================================================================

class Venue(Record):
    """Trading engine (ISS "engine")."""
    TABLE: ClassVar[Table] = Table.VENUES
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("name",)

    id: int
    name: str
    title: str


class Market(Record):
    TABLE: ClassVar[Table] = Table.MARKETS
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("venue", "name")

    venue: str
    id: int
    name: str
    title: str


class Board(Record):
    """Execution-rules group inside a market."""
    TABLE: ClassVar[Table] = Table.BOARDS
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("venue", "market", "boardid")

    venue: str
    market: str
    id: int
    board_group_id: int
    boardid: str
    title: str
    is_traded: bool

    @property
    def path(self) -> str:
        return f"{self.venue}/{self.market}/{self.boardid}"


class Security(Record):
    TABLE: ClassVar[Table] = Table.SECURITIES
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("secid",)

    secid: str
    boardid: str
    shortname: str
    status: str
    marketcode: Optional[str] = None
    venue: str
    market: str


# =============================================================================
# FACT RECORDS
# =============================================================================

class Trade(Record):
    """Single trade on a board."""
    TABLE: ClassVar[Table] = Table.TRADES
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("venue", "market", "boardid", "tradeno")

    venue: str
    market: str
    boardid: str
    secid: str
    tradeno: int
    side: TradeSide
    quantity: int
    price: float
    value: float
    event_time: datetime
    ingested_at: datetime = Field(default_factory=utcnow)


class Candle(Record):
    """OHLCV aggregate for one security and timeframe. Prices are null for windows without trading."""
    TABLE: ClassVar[Table] = Table.CANDLES
    KEY_FIELDS: ClassVar[tuple[str, ...]] = ("secid", "timeframe", "begin", "end")

    venue: str
    market: str
    secid: str
    timeframe: int
    open: Optional[float] = None
    close: Optional[float] = None
    high: Optional[float] = None
    low: Optional[float] = None
    value: Optional[float] = None
    volume: Optional[float] = None
    begin: datetime
    end: datetime
    ingested_at: datetime = Field(default_factory=utcnow)
