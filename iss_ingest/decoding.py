"""
Positional row decoding.

ISS returns table rows as positional JSON arrays. Column order is a fixed
contract per endpoint (the client requests the columns explicitly), so rows
are decoded strictly by position. Every row is checked for length and every
cell for type before a domain record is built.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from iss_ingest.errors import DecodeError

ISS_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class Kind(str, Enum):
    INT = "int"
    FLOAT = "float"
    STR = "str"
    BOOL = "bool"
    DATETIME = "datetime"


@dataclass(frozen=True)
class ColumnSpec:
    name: str
    kind: Kind
    nullable: bool = False


@dataclass(frozen=True)
class RowSchema:
    """Expected layout of one ISS table."""
    resource: str
    columns: tuple[ColumnSpec, ...]

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]

    def columns_param(self) -> dict[str, str]:
        """Query parameter asking ISS for exactly these columns, in this order."""
        return {f"{self.resource}.columns": ",".join(self.column_names)}


def _cell(schema: RowSchema, spec: ColumnSpec, value: Any, row_index: int) -> Any:
    def fail(reason: str) -> DecodeError:
        return DecodeError(
            f"Column {spec.name} {reason}",
            resource=schema.resource,
            row=row_index,
            value=repr(value),
        )

    if value is None:
        if spec.nullable:
            return None
        raise fail("is null")

    if spec.kind is Kind.INT:
        if isinstance(value, bool) or not isinstance(value, int):
            raise fail("is not an integer")
        return value
    if spec.kind is Kind.FLOAT:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise fail("is not a number")
        return float(value)
    if spec.kind is Kind.STR:
        if not isinstance(value, str):
            raise fail("is not a string")
        return value
    if spec.kind is Kind.BOOL:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        raise fail("is not a 0/1 flag")
    if spec.kind is Kind.DATETIME:
        if not isinstance(value, str):
            raise fail("is not a timestamp string")
        try:
            return datetime.strptime(value, ISS_DATETIME_FORMAT)
        except ValueError:
            raise fail("is not a YYYY-MM-DD HH:MM:SS timestamp") from None

    raise fail(f"has unsupported kind {spec.kind}")


def decode_row(schema: RowSchema, row: Any, row_index: int = 0) -> dict[str, Any]:
    """
    Decode one positional row into a dict keyed by column name.

    Raises:
        DecodeError: if the row is not an array of the expected length or
            a cell has the wrong type.
    """
    if not isinstance(row, list):
        raise DecodeError(
            "Row is not an array",
            resource=schema.resource,
            row=row_index,
            value=repr(row),
        )
    if len(row) != len(schema.columns):
        raise DecodeError(
            f"Row has {len(row)} columns, expected {len(schema.columns)}",
            resource=schema.resource,
            row=row_index,
        )
    return {
        spec.name: _cell(schema, spec, value, row_index)
        for spec, value in zip(schema.columns, row)
    }


def decode_rows(schema: RowSchema, rows: list[Any]) -> list[dict[str, Any]]:
    return [decode_row(schema, row, i) for i, row in enumerate(rows)]


def extract_rows(payload: Any, resource: str) -> list[Any]:
    """Pull ``payload[resource]["data"]`` out of an ISS response."""
    if not isinstance(payload, dict):
        raise DecodeError("Response is not a JSON object", resource=resource)
    block: Optional[Any] = payload.get(resource)
    if not isinstance(block, dict):
        raise DecodeError("Response has no table block", resource=resource)
    data = block.get("data")
    if not isinstance(data, list):
        raise DecodeError("Table block has no data array", resource=resource)
    return data


# =============================================================================
# ENDPOINT LAYOUTS
# =============================================================================

ENGINES = RowSchema("engines", (
    ColumnSpec("id", Kind.INT),
    ColumnSpec("name", Kind.STR),
    ColumnSpec("title", Kind.STR),
))

MARKETS = RowSchema("markets", (
    ColumnSpec("id", Kind.INT),
    ColumnSpec("NAME", Kind.STR),
    ColumnSpec("title", Kind.STR),
))

BOARDS = RowSchema("boards", (
    ColumnSpec("id", Kind.INT),
    ColumnSpec("board_group_id", Kind.INT),
    ColumnSpec("boardid", Kind.STR),
    ColumnSpec("title", Kind.STR),
    ColumnSpec("is_traded", Kind.BOOL),
))

SECURITIES = RowSchema("securities", (
    ColumnSpec("SECID", Kind.STR),
    ColumnSpec("BOARDID", Kind.STR),
    ColumnSpec("SHORTNAME", Kind.STR),
    ColumnSpec("STATUS", Kind.STR),
    ColumnSpec("MARKETCODE", Kind.STR, nullable=True),
))

TRADES = RowSchema("trades", (
    ColumnSpec("TRADENO", Kind.INT),
    ColumnSpec("SECID", Kind.STR),
    ColumnSpec("BUYSELL", Kind.STR),
    ColumnSpec("QUANTITY", Kind.INT),
    ColumnSpec("PRICE", Kind.FLOAT),
    ColumnSpec("VALUE", Kind.FLOAT),
    ColumnSpec("SYSTIME", Kind.DATETIME),
))

CANDLES = RowSchema("candles", (
    ColumnSpec("open", Kind.FLOAT, nullable=True),
    ColumnSpec("close", Kind.FLOAT, nullable=True),
    ColumnSpec("high", Kind.FLOAT, nullable=True),
    ColumnSpec("low", Kind.FLOAT, nullable=True),
    ColumnSpec("value", Kind.FLOAT, nullable=True),
    ColumnSpec("volume", Kind.FLOAT, nullable=True),
    ColumnSpec("begin", Kind.DATETIME),
    ColumnSpec("end", Kind.DATETIME),
))
