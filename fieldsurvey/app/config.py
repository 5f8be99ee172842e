from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


def _env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(key)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _env_int(key: str, default: int) -> int:
    v = _env_str(key)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    v = _env_str(key)
    if v is None:
        return default
    return v.lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    # Core paths
    db_path: str
    exports_dir: str

    # Logging
    log_level: str
    log_json: bool

    # Merge: commit every rewritten response in one transaction instead of one by one.
    merge_atomic: bool

    # Results page
    chart_max_categories: int

    @staticmethod
    def from_env(dotenv_path: Optional[str] = None) -> "Settings":
        # Read configuration from environment variables (.env is loaded first, real env wins).
        load_dotenv(dotenv_path, override=False)

        db_path = _env_str("FIELDSURVEY_DB_PATH", "data/fieldsurvey.db") or "data/fieldsurvey.db"
        exports_dir = _env_str("FIELDSURVEY_EXPORTS_DIR", "exports") or "exports"

        # Create directories if needed (do not create DB file here).
        Path(exports_dir).mkdir(parents=True, exist_ok=True)
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        return Settings(
            db_path=db_path,
            exports_dir=exports_dir,

            log_level=_env_str("FIELDSURVEY_LOG_LEVEL", "INFO") or "INFO",
            log_json=_env_bool("FIELDSURVEY_LOG_JSON", True),

            merge_atomic=_env_bool("FIELDSURVEY_MERGE_ATOMIC", False),

            chart_max_categories=_env_int("FIELDSURVEY_CHART_MAX_CATEGORIES", 15),
        )
