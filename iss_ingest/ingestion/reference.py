"""
Reference entity synchronization (venues, markets, boards, securities).

Modes:
- bulk: unconditional chunked insert. Use on an empty target or when
  duplicate reference rows are tolerable.
- check-then-insert: existence query per record, insert when absent.
  Not atomic: two concurrent runs, or a crash between the check and the
  insert, can still produce a duplicate. That race is tolerated.
- insert-if-absent: the sink's atomic conditional write.
"""
from dataclasses import dataclass
from typing import Sequence

import structlog

from iss_ingest.errors import SinkWriteError
from iss_ingest.ingestion.batch import BatchIngestor
from iss_ingest.models import Record, SyncMode

logger = structlog.get_logger()


@dataclass
class SyncResult:
    attempted: int = 0
    inserted: int = 0
    skipped: int = 0

    def __iadd__(self, other: "SyncResult") -> "SyncResult":
        self.attempted += other.attempted
        self.inserted += other.inserted
        self.skipped += other.skipped
        return self


class ReferenceSynchronizer:
    """Persists reference entity batches according to a sync mode."""

    def __init__(self, ingestor: BatchIngestor, mode: SyncMode = SyncMode.INSERT_IF_ABSENT):
        self.ingestor = ingestor
        self.sink = ingestor.sink
        self.mode = SyncMode(mode)

    async def sync(self, records: Sequence[Record], label: str = "all") -> SyncResult:
        """
        Persist ``records``. After a normal return every record is either
        already present or has been written.

        Args:
            records: Entities of a single type
            label: Unit label used by backends that name their writes
        """
        if not records:
            return SyncResult()

        table = records[0].TABLE

        if self.mode is SyncMode.BULK:
            written = await self.ingestor.ingest(table, records, label)
            result = SyncResult(attempted=len(records), inserted=written)

        elif self.mode is SyncMode.CHECK_THEN_INSERT:
            result = SyncResult()
            for record in records:
                result.attempted += 1
                if await self.sink.exists(record):
                    logger.debug("Reference exists", table=table.value, key=record.key_label())
                    result.skipped += 1
                    continue
                result.inserted += await self.ingestor.ingest(table, [record], record.key_label())

        else:
            try:
                inserted = await self.sink.write_if_absent(table, records)
            except Exception as e:
                raise SinkWriteError(
                    f"Conditional write failed: {e}",
                    table=table.value,
                    label=label,
                ) from e
            result = SyncResult(
                attempted=len(records),
                inserted=inserted,
                skipped=len(records) - inserted,
            )

        logger.info(
            "Synchronized references",
            table=table.value,
            mode=self.mode.value,
            attempted=result.attempted,
            inserted=result.inserted,
            skipped=result.skipped,
        )
        return result
