"""Environment-driven settings and logging setup."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import BaseModel

ConflictPriority = Literal["single_exercise_first", "workout_first"]

_DEFAULT_DB = Path(__file__).resolve().parent.parent / "liftlog.db"


class Settings(BaseModel):
    db_path: Path = _DEFAULT_DB
    log_level: str = "INFO"
    conflict_priority: ConflictPriority = "single_exercise_first"

    @classmethod
    def from_env(cls) -> "Settings":
        """LIFTLOG_DB_PATH, LIFTLOG_LOG_LEVEL, LIFTLOG_CONFLICT_PRIORITY."""
        return cls(
            db_path=os.environ.get("LIFTLOG_DB_PATH", str(_DEFAULT_DB)),
            log_level=os.environ.get("LIFTLOG_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            conflict_priority=os.environ.get("LIFTLOG_CONFLICT_PRIORITY", "single_exercise_first").strip().lower(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Single stderr sink. stdout stays free for the MCP stdio transport."""
    logger.remove()
    logger.add(sys.stderr, level=level)
