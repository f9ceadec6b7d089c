"""
PostgreSQL / TimescaleDB sink.

Appends use the COPY protocol. Conditional writes go through a temp table
and INSERT ... WHERE NOT EXISTS under a per-table advisory lock; reference
tables carry no unique constraint, so plain appends may duplicate keys.
Every call acquires its own pool connection, so concurrent units of work
never share a connection.
"""
import ssl
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Sequence

import asyncpg
import structlog

from iss_ingest.config import Settings, get_settings
from iss_ingest.models import Record, SinkKind, Table
from iss_ingest.sinks.base import Sink

logger = structlog.get_logger()

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


class DatabaseSink(Sink):
    """Writes records into the ``iss`` schema through an asyncpg pool."""

    KIND = SinkKind.DATABASE

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.schema = self.settings.postgres_schema
        self._pool: Optional[asyncpg.Pool] = None

    # =========================================================================
    # CONNECTION POOL
    # =========================================================================

    async def open(self) -> None:
        await self.get_pool()

    async def get_pool(self) -> asyncpg.Pool:
        """Get or create the asyncpg connection pool."""
        if self._pool is None:
            ssl_context = None
            if self.settings.postgres_sslmode == "require":
                ssl_context = ssl.create_default_context()
                ssl_context.check_hostname = False
                ssl_context.verify_mode = ssl.CERT_NONE

            self._pool = await asyncpg.create_pool(
                host=self.settings.postgres_host,
                port=self.settings.postgres_port,
                database=self.settings.postgres_db,
                user=self.settings.postgres_user,
                password=self.settings.postgres_password,
                ssl=ssl_context,
                min_size=self.settings.db_pool_min_size,
                max_size=self.settings.db_pool_max_size,
                command_timeout=self.settings.db_command_timeout,
            )
            logger.info("Created asyncpg connection pool", database=self.settings.postgres_db)

        return self._pool

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[asyncpg.Connection]:
        pool = await self.get_pool()
        async with pool.acquire() as conn:
            yield conn

    async def close(self) -> None:
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Closed asyncpg pool")

    # =========================================================================
    # WRITES
    # =========================================================================

    async def write_batch(
        self,
        table: Table,
        records: Sequence[Record],
        label: str,
        part: int = 0,
    ) -> int:
        if not records:
            return 0

        columns = type(records[0]).columns()
        async with self.connection() as conn:
            await conn.copy_records_to_table(
                table.value,
                records=[r.as_row() for r in records],
                columns=columns,
                schema_name=self.schema,
            )
        return len(records)

    async def exists(self, record: Record) -> bool:
        where = " AND ".join(
            f'"{name}" = ${i}' for i, name in enumerate(record.KEY_FIELDS, start=1)
        )
        query = f'SELECT 1 FROM "{self.schema}"."{record.TABLE.value}" WHERE {where} LIMIT 1'
        async with self.connection() as conn:
            found = await conn.fetchval(query, *record.natural_key())
        return found is not None

    async def write_if_absent(self, table: Table, records: Sequence[Record]) -> int:
        if not records:
            return 0

        model = type(records[0])
        columns = model.columns()
        col_list = ", ".join(f'"{c}"' for c in columns)
        key_list = ", ".join(f't."{c}"' for c in model.KEY_FIELDS)
        select_list = ", ".join(f't."{c}"' for c in columns)
        key_match = " AND ".join(f'x."{c}" = t."{c}"' for c in model.KEY_FIELDS)
        target = f'"{self.schema}"."{table.value}"'
        temp_table = f"_temp_{table.value}"

        async with self.connection() as conn:
            # Explicit transaction keeps the ON COMMIT DROP temp table alive
            # and holds the advisory lock until commit
            async with conn.transaction():
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", target)
                await conn.execute(f"""
                    CREATE TEMP TABLE {temp_table} (LIKE {target} INCLUDING DEFAULTS)
                    ON COMMIT DROP
                """)
                await conn.copy_records_to_table(
                    temp_table,
                    records=[r.as_row() for r in records],
                    columns=columns,
                )
                result = await conn.execute(f"""
                    INSERT INTO {target} ({col_list})
                    SELECT DISTINCT ON ({key_list}) {select_list}
                    FROM {temp_table} t
                    WHERE NOT EXISTS (SELECT 1 FROM {target} x WHERE {key_match})
                """)

        # Status string is "INSERT 0 <n>"
        return int(result.split()[-1])

    # =========================================================================
    # SCHEMA & HEALTH
    # =========================================================================

    async def run_migrations(self, migrations_dir: Path = MIGRATIONS_DIR) -> list[str]:
        """Apply every SQL file in ``migrations_dir`` in name order. Files are idempotent."""
        if not migrations_dir.exists():
            raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

        applied = []
        async with self.connection() as conn:
            for sql_file in sorted(migrations_dir.glob("*.sql")):
                logger.info("Applying migration", filename=sql_file.name)
                await conn.execute(sql_file.read_text())
                applied.append(sql_file.name)
        return applied

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.connection() as conn:
                return await conn.fetchval("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Database health check failed", error=str(e))
            return False
