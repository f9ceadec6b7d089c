"""
Chunked batch writes.
"""
from typing import Iterator, Sequence, TypeVar

import structlog

from iss_ingest.errors import SinkWriteError
from iss_ingest.models import Record, Table
from iss_ingest.sinks.base import Sink

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_CHUNK_SIZE = 1000


def chunked(rows: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` rows. Sizes below 1 mean one row per slice."""
    size = max(size, 1)
    for i in range(0, len(rows), size):
        yield rows[i:i + size]


class BatchIngestor:
    """
    Partitions a row sequence into fixed-size chunks and flushes each chunk
    to the sink, in order, one write at a time.

    No retry is attempted. A failed chunk aborts the call; chunks written
    before it stay written.
    """

    def __init__(self, sink: Sink, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.sink = sink
        self.chunk_size = chunk_size

    async def ingest(self, table: Table, rows: Sequence[Record], label: str) -> int:
        """
        Write ``rows`` to ``table`` in chunks.

        Returns:
            Number of rows written

        Raises:
            SinkWriteError: a chunk write failed (wraps the sink's exception)
        """
        written = 0
        for part, chunk in enumerate(chunked(rows, self.chunk_size)):
            try:
                written += await self.sink.write_batch(table, chunk, label, part)
            except Exception as e:
                raise SinkWriteError(
                    f"Chunk write failed: {e}",
                    table=table.value,
                    label=label,
                    part=part,
                    written=written,
                ) from e

        logger.debug("Ingested rows", table=table.value, label=label, rows=written)
        return written
