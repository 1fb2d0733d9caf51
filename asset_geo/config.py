"""
Central configuration loaded from environment variables with sensible defaults.
All secrets come from env vars; no hardcoded credentials.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path

_DATA_DIR = Path(__file__).parent / "data"


@dataclass(frozen=True)
class DatabaseConfig:
    host: str = os.getenv("PG_HOST", "localhost")
    port: int = int(os.getenv("PG_PORT", "5432"))
    user: str = os.getenv("PG_USER", "asset_geo")
    password: str = os.getenv("PG_PASSWORD", "asset_geo")
    database: str = os.getenv("PG_DATABASE", "asset_geo")
    min_pool_size: int = int(os.getenv("PG_POOL_MIN", "2"))
    max_pool_size: int = int(os.getenv("PG_POOL_MAX", "10"))

    @property
    def dsn(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}"


@dataclass(frozen=True)
class DictionaryConfig:
    provinces_path: str = os.getenv("GEO_PROVINCES_PATH", str(_DATA_DIR / "provinces.json"))
    counties_path: str = os.getenv("GEO_COUNTIES_PATH", str(_DATA_DIR / "counties.json"))


@dataclass(frozen=True)
class SyncConfig:
    # Upper bound on records rewritten per in-store propagation transaction
    cascade_batch_size: int = int(os.getenv("CASCADE_BATCH_SIZE", "200"))
    # Software records carry no geography; derive the lookup province from the unit name
    derive_missing_province: bool = os.getenv("SYNC_DERIVE_MISSING_PROVINCE", "true").lower() == "true"


@dataclass(frozen=True)
class SchedulerConfig:
    enabled: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"
    interval_minutes: int = int(os.getenv("RECONCILE_INTERVAL_MIN", "60"))


@dataclass(frozen=True)
class Settings:
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    dictionary: DictionaryConfig = field(default_factory=DictionaryConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    env: str = os.getenv("APP_ENV", "development")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton settings instance."""
    return Settings()
