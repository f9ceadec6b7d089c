"""
Flat file sink: one JSON document per unit of work.

Layout::

    <root>/<table>/<label>.json          first chunk of a unit
    <root>/<table>/<label>.<part>.json   further chunks of the same unit
    <root>/<table>/<natural key>.json    reference records written one by one

Files are created fresh and fully written once; nothing is appended.
"""
import asyncio
import json
from pathlib import Path
from typing import Optional, Sequence

import structlog

from iss_ingest.config import Settings, get_settings
from iss_ingest.models import Record, SinkKind, Table
from iss_ingest.sinks.base import Sink

logger = structlog.get_logger()


def _serialize(records: Sequence[Record]) -> str:
    return json.dumps([r.model_dump(mode="json") for r in records], ensure_ascii=False)


class FileSink(Sink):
    """Writes JSON files under a root directory."""

    KIND = SinkKind.FILES

    def __init__(self, root: Optional[Path] = None, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.root = Path(root if root is not None else settings.md_path)

    async def open(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, table: Table, label: str, part: int = 0) -> Path:
        name = f"{label}.json" if part == 0 else f"{label}.{part}.json"
        return self.root / table.value / name

    @staticmethod
    def _write(path: Path, content: str, mode: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, mode, encoding="utf-8") as fh:
            fh.write(content)

    async def write_batch(
        self,
        table: Table,
        records: Sequence[Record],
        label: str,
        part: int = 0,
    ) -> int:
        if not records:
            return 0
        path = self.path_for(table, label, part)
        await asyncio.to_thread(self._write, path, _serialize(records), "w")
        logger.debug("Wrote file", path=str(path), records=len(records))
        return len(records)

    async def exists(self, record: Record) -> bool:
        path = self.path_for(record.TABLE, record.key_label())
        return await asyncio.to_thread(path.exists)

    async def write_if_absent(self, table: Table, records: Sequence[Record]) -> int:
        inserted = 0
        for record in records:
            path = self.path_for(table, record.key_label())
            try:
                # "x" fails if the file exists: an atomic create-if-absent
                await asyncio.to_thread(self._write, path, _serialize([record]), "x")
            except FileExistsError:
                continue
            inserted += 1
        return inserted
