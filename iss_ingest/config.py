"""
Configuration settings for the ISS ingestion system.
Uses Pydantic Settings for type-safe environment variable loading.
"""
from datetime import date
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from iss_ingest.models import EmptyDayPolicy, SinkKind, SyncMode


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # DATABASE CONFIGURATION
    # ==========================================================================
    postgres_host: str = Field(default="localhost")
    postgres_port: int = Field(default=5432)
    postgres_db: str = Field(default="md_moex")
    postgres_user: str = Field(default="postgres")
    postgres_password: str = Field(default="")
    postgres_sslmode: str = Field(default="prefer")
    postgres_schema: str = Field(default="iss")

    db_pool_min_size: int = Field(default=1, ge=1, le=100)
    db_pool_max_size: int = Field(default=10, ge=1, le=100)
    db_command_timeout: int = Field(default=300, ge=1)

    @property
    def database_url(self) -> str:
        """Database URL for asyncpg."""
        password = f":{self.postgres_password}" if self.postgres_password else ""
        return (
            f"postgresql://{self.postgres_user}{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # ==========================================================================
    # ISS API CONFIGURATION
    # ==========================================================================
    iss_api_base_url: str = Field(
        default="https://iss.moex.com/iss",
        description="MOEX ISS base URL",
    )
    api_timeout_seconds: int = Field(default=30, ge=1, le=300)

    # 1 = no retry. Raise to enable exponential backoff on transport/5xx errors.
    retry_max_attempts: int = Field(default=1, ge=1, le=20)
    backoff_base_seconds: float = Field(default=1.0, ge=0.0, le=10.0)
    backoff_max_seconds: float = Field(default=60.0, ge=0.0, le=300.0)

    # ==========================================================================
    # RUN CONFIGURATION
    # ==========================================================================
    date_start: date = Field(default=date(2024, 1, 1), description="First calendar day to fetch")
    days: int = Field(default=30, ge=0, description="Number of calendar days from date_start")
    interval: int = Field(default=1, ge=1, description="Candle interval in minutes")
    reverse: bool = Field(default=False, description="Walk backwards in time from date_start")
    empty_day_threshold: int = Field(default=5, ge=0)
    empty_day_policy: EmptyDayPolicy = Field(default=EmptyDayPolicy.CUMULATIVE)

    chunk_size: int = Field(default=1000, ge=0, description="Rows per sink write (0/1 = row by row)")
    max_concurrency: int = Field(default=1, ge=1, le=64, description="Boards/securities processed at once")
    sync_mode: SyncMode = Field(default=SyncMode.INSERT_IF_ABSENT)

    sink: SinkKind = Field(default=SinkKind.DATABASE)
    md_path: Path = Field(default=Path("./"), description="Root directory for the file sink")

    # ==========================================================================
    # TAXONOMY FILTERS
    # ==========================================================================
    venues: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["stock"])
    markets: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["shares"])
    boards: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["TQBR"])
    securities: Annotated[list[str], NoDecode] = Field(default_factory=list, description="Empty = every security")
    traded_only: bool = Field(default=True)

    # ==========================================================================
    # LOGGING
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    @field_validator("venues", "markets", "boards", "securities", mode="before")
    @classmethod
    def split_csv(cls, value):
        """Accept comma separated strings (env vars, CLI) as well as lists."""
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
