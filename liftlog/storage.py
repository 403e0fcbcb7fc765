"""SQLite storage for the session bundle: versioned payload, forward migration, recovery."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Optional

from loguru import logger
from pydantic import ValidationError

from .duration import compute_duration_sec
from .errors import StoreLoadError
from .models import SessionBundle

SCHEMA_VERSION = 2
STATE_KEY = "app_state"


def _dict_factory(cursor: sqlite3.Cursor, row: tuple) -> dict:
    return {col[0]: row[i] for i, col in enumerate(cursor.description)}


# --- Migrations (forward-only, non-destructive) ---

def _first_set_at(session: dict) -> Optional[int]:
    stamps = [
        s.get("timestamp")
        for ex in session.get("exercises") or []
        for s in ex.get("sets") or []
        if isinstance(s.get("timestamp"), (int, float))
    ]
    return int(min(stamps)) if stamps else None


def _migrate_session(session: Optional[dict], kind: str) -> Optional[dict]:
    """Tag the session kind and fill started_at / ended_at / duration_sec from legacy fields."""
    if not isinstance(session, dict):
        return session
    s = dict(session)
    s.setdefault("kind", kind)
    if not isinstance(s.get("start_time"), (int, float)) and isinstance(s.get("created_at"), (int, float)):
        s["start_time"] = s["created_at"]
    if not isinstance(s.get("started_at"), (int, float)):
        s["started_at"] = _first_set_at(s) or s.get("start_time")
    if not isinstance(s.get("ended_at"), (int, float)) and isinstance(s.get("end_time"), (int, float)):
        s["ended_at"] = s["end_time"]
    if not isinstance(s.get("duration_sec"), (int, float)) and s.get("ended_at"):
        s["duration_sec"] = compute_duration_sec(s.get("started_at"), s["ended_at"])
    s.pop("end_time", None)
    s.pop("created_at", None)
    return s


def migrate_v1_to_v2(data: dict) -> dict:
    """v1: bare bundle dict with no schema_version and legacy timing fields."""
    return {
        "schema_version": 2,
        "data": {
            "workouts": [_migrate_session(w, "workout") for w in data.get("workouts") or []],
            "templates": list(data.get("templates") or []),
            "incomplete_exercise_session": _migrate_session(data.get("incomplete_exercise_session"), "single_exercise"),
            "incomplete_workout_id": data.get("incomplete_workout_id"),
            "ad_hoc_session": _migrate_session(data.get("ad_hoc_session"), "ad_hoc"),
        },
    }


def migrate_payload(payload: dict[str, Any], target_version: int = SCHEMA_VERSION) -> dict[str, Any]:
    """Run migrations in order until payload is at target_version."""
    version = payload.get("schema_version")
    if not version:
        payload = migrate_v1_to_v2(payload)
        version = payload["schema_version"]
    if version > target_version:
        raise ValueError(f"schema_version {version} is newer than supported {target_version}")
    return payload


def bundle_from_payload(payload: Any) -> SessionBundle:
    """Parsed JSON -> SessionBundle. Raises ValueError / ValidationError on bad structure."""
    if not isinstance(payload, dict):
        raise ValueError("stored data is not an object")
    migrated = migrate_payload(payload)
    data = migrated.get("data")
    if not isinstance(data, dict):
        raise ValueError("migrated data structure is invalid")
    return SessionBundle.model_validate(data)


class SessionStore:
    """SQLite-backed store for the single LiftLog session bundle."""

    def __init__(self, db_path: str | Path = "liftlog.db"):
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = _dict_factory
            self._ensure_schema()
        return self._conn

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_schema(self) -> None:
        conn = self.connect()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS app_state (
                state_key TEXT PRIMARY KEY,
                payload TEXT NOT NULL,
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            );
        """)
        conn.commit()

    def get_raw_data(self) -> Optional[str]:
        conn = self.connect()
        row = conn.execute("SELECT payload FROM app_state WHERE state_key = ?", (STATE_KEY,)).fetchone()
        return row["payload"] if row else None

    def load(self) -> SessionBundle:
        """
        Load and migrate the bundle. An empty store yields an empty bundle.
        Unreadable data raises StoreLoadError with the raw payload attached; it is never reset.
        """
        raw = self.get_raw_data()
        if raw is None:
            return SessionBundle()
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StoreLoadError(f"Failed to parse stored data: {e}", raw_data=raw) from e
        try:
            bundle = bundle_from_payload(parsed)
        except (ValueError, ValidationError) as e:
            raise StoreLoadError(f"Stored data is invalid: {e}", raw_data=raw) from e
        logger.debug("loaded bundle: {} workouts, {} templates", len(bundle.workouts), len(bundle.templates))
        return bundle

    def save(self, bundle: SessionBundle) -> None:
        payload = json.dumps({"schema_version": SCHEMA_VERSION, "data": bundle.model_dump(mode="json")})
        conn = self.connect()
        conn.execute(
            """
            INSERT INTO app_state (state_key, payload)
            VALUES (?, ?)
            ON CONFLICT(state_key) DO UPDATE SET
                payload = excluded.payload,
                updated_at = datetime('now')
            """,
            (STATE_KEY, payload),
        )
        conn.commit()

    def export_data(self) -> str:
        """JSON export. If the stored data cannot be loaded, the raw payload is exported as-is."""
        try:
            bundle = self.load()
        except StoreLoadError as e:
            if e.raw_data:
                return e.raw_data
            bundle = SessionBundle()
        return json.dumps(
            {"schema_version": SCHEMA_VERSION, "data": bundle.model_dump(mode="json")},
            indent=2,
        )

    def import_data(self, text: str) -> SessionBundle:
        """Replace stored data with an export. Invalid input raises ValueError and stores nothing."""
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValueError(f"Failed to parse imported data: {e}") from e
        try:
            bundle = bundle_from_payload(parsed)
        except ValidationError as e:
            raise ValueError(f"Imported data structure is invalid: {e}") from e
        self.save(bundle)
        logger.info("imported bundle: {} workouts", len(bundle.workouts))
        return bundle

    def clear(self) -> None:
        """Remove all stored data (explicit user action only)."""
        conn = self.connect()
        conn.execute("DELETE FROM app_state WHERE state_key = ?", (STATE_KEY,))
        conn.commit()
