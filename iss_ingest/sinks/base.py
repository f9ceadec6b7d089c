"""
Sink interface shared by the database and file backends.
"""
from abc import ABC, abstractmethod
from typing import Sequence

from iss_ingest.models import Record, SinkKind, Table


class Sink(ABC):
    """
    Destination for reference entities and fact records.

    Implementations must tolerate concurrent calls from independent
    units of work (one board or security per task).
    """

    KIND: SinkKind

    async def open(self) -> None:
        """Acquire resources. Called once before the first write."""

    async def close(self) -> None:
        """Release resources."""

    async def __aenter__(self) -> "Sink":
        await self.open()
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    @abstractmethod
    async def write_batch(
        self,
        table: Table,
        records: Sequence[Record],
        label: str,
        part: int = 0,
    ) -> int:
        """
        Append ``records`` to ``table`` unconditionally.

        ``label`` and ``part`` identify the unit of work and chunk; backends
        that store one object per write (files) use them for naming.

        Returns:
            Number of records written
        """

    @abstractmethod
    async def exists(self, record: Record) -> bool:
        """Check whether a record with the same natural key is already stored."""

    @abstractmethod
    async def write_if_absent(self, table: Table, records: Sequence[Record]) -> int:
        """
        Atomically insert records whose natural key is not yet stored.

        Returns:
            Number of records inserted
        """
