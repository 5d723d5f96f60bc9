"""
Service settings.

Values come from ``DISPENSE_*`` environment variables with defaults suited to
a single-host deployment against a local SQLite file and Temporal dev server.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

logger = logging.getLogger("config")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"[Config] {name}={raw!r} is not an integer, using {default}")
        return default


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///dispense.db"
    temporal_address: str = "localhost:7233"
    liveness_task_queue: str = "liveness-tq"
    liveness_workflow_id: str = "machine-liveness"
    stale_after_seconds: int = 120
    sweep_interval_seconds: int = 60
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.environ.get("DISPENSE_DATABASE_URL", cls.database_url),
            temporal_address=os.environ.get("DISPENSE_TEMPORAL_ADDRESS", cls.temporal_address),
            liveness_task_queue=os.environ.get("DISPENSE_LIVENESS_TASK_QUEUE", cls.liveness_task_queue),
            stale_after_seconds=_env_int("DISPENSE_STALE_AFTER_SECONDS", cls.stale_after_seconds),
            sweep_interval_seconds=_env_int("DISPENSE_SWEEP_INTERVAL_SECONDS", cls.sweep_interval_seconds),
            log_level=os.environ.get("DISPENSE_LOG_LEVEL", cls.log_level).upper(),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
