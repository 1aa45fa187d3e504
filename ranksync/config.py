"""
Configuration settings for BGG Rank Sync.

Uses Pydantic Settings to load environment variables for the Postgres store,
logging, batch sizing, and the run lease. Collection names default to the
ones the downstream readers expect.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

LOCAL_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})


class Settings(BaseSettings):
    # Database
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("bg_market", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(0, alias="DB_STATEMENT_TIMEOUT_MS")
    db_pool_min_size: int = Field(1, alias="DB_POOL_MIN_SIZE")
    db_pool_max_size: int = Field(4, alias="DB_POOL_MAX_SIZE")

    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Sync engine
    data_file: Optional[str] = Field(None, alias="SYNC_DATA_FILE")
    batch_size: Optional[int] = Field(None, alias="SYNC_BATCH_SIZE")
    batch_size_local: int = Field(500, alias="SYNC_BATCH_SIZE_LOCAL")
    batch_size_remote: int = Field(1000, alias="SYNC_BATCH_SIZE_REMOTE")
    reindex_batch_size: int = Field(1000, alias="REINDEX_BATCH_SIZE")
    write_workers: int = Field(1, alias="WRITE_WORKERS")
    write_retry_wait_seconds: float = Field(1.0, alias="WRITE_RETRY_WAIT_SECONDS")

    # Run lease
    lease_enabled: bool = Field(True, alias="LEASE_ENABLED")
    lease_ttl_seconds: int = Field(3600, alias="LEASE_TTL_SECONDS")

    # Collections
    games_collection: str = Field("board_games", alias="GAMES_COLLECTION")
    search_collection: str = Field("games_search", alias="SEARCH_COLLECTION")
    metadata_collection: str = Field("data_updates", alias="METADATA_COLLECTION")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_local_store(self) -> bool:
        return self.db_host in LOCAL_HOSTS

    def effective_batch_size(self) -> int:
        """
        Write batch size: explicit override, else local/remote default.
        """
        if self.batch_size:
            return self.batch_size
        return self.batch_size_local if self.is_local_store else self.batch_size_remote

    def build_dsn(self) -> str:
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
