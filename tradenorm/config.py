# tradenorm/config.py
"""Runtime settings, read from the environment."""

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./tradenorm.db"
    log_level: str = "INFO"
    log_json: bool = False
    log_file: Optional[str] = None
    source_timezone: str = "UTC"  # Timezone assumed for naive timestamps in imported files

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("DATABASE_URL", cls.database_url),
            log_level=os.getenv("TRADENORM_LOG_LEVEL", cls.log_level),
            log_json=_env_bool("TRADENORM_LOG_JSON", cls.log_json),
            log_file=os.getenv("TRADENORM_LOG_FILE") or None,
            source_timezone=os.getenv("TRADENORM_SOURCE_TZ", cls.source_timezone),
        )


settings = Settings.from_env()
