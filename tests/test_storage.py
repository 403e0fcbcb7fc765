"""Tests for the SQLite session store: round trip, v1 migration, recovery on corrupt data, export/import."""

import json
import tempfile
from pathlib import Path

import pytest

from liftlog.errors import StoreLoadError
from liftlog.models import (
    ExerciseInstance,
    SessionAdapter,
    SessionBundle,
    SetRecord,
    WorkoutSession,
    WorkoutTemplate,
)
from liftlog.storage import SCHEMA_VERSION, STATE_KEY, SessionStore, bundle_from_payload, migrate_payload


def _write_raw(storage: SessionStore, raw: str) -> None:
    conn = storage.connect()
    conn.execute("INSERT INTO app_state (state_key, payload) VALUES (?, ?)", (STATE_KEY, raw))
    conn.commit()


def _bundle() -> SessionBundle:
    workout = WorkoutSession(
        id="w1",
        name="Push day",
        start_time=1_000,
        started_at=2_000,
        exercises=[
            ExerciseInstance(
                instance_id="e1",
                name="Bench press",
                sets=[SetRecord(id="s1", weight=135, reps=8, timestamp=2_000)],
            )
        ],
    )
    template = WorkoutTemplate(id="t1", name="Push", exercise_names=["Bench press"], created_at=1, updated_at=1)
    return SessionBundle(workouts=[workout], templates=[template], incomplete_workout_id="w1")


def test_empty_store_loads_empty_bundle() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        storage = SessionStore(Path(tmp) / "test.db")
        bundle = storage.load()
        storage.close()
    assert bundle == SessionBundle()


def test_save_then_load_round_trip() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        db = Path(tmp) / "test.db"
        storage = SessionStore(db)
        storage.save(_bundle())
        storage.close()
        reopened = SessionStore(db)
        bundle = reopened.load()
        raw = json.loads(reopened.get_raw_data())
        reopened.close()
    assert raw["schema_version"] == SCHEMA_VERSION
    assert bundle.incomplete_workout_id == "w1"
    assert bundle.workouts[0].kind == "workout"
    assert bundle.workouts[0].exercises[0].sets[0].weight == 135
    assert bundle.templates[0].name == "Push"


def test_v1_payload_is_migrated_with_timing_fields() -> None:
    """Legacy start/end fields become started_at / ended_at / duration_sec; kind is filled in."""
    v1 = {
        "workouts": [{
            "id": "old",
            "name": "Legs",
            "created_at": 1_000,
            "end_time": 61_000,
            "is_complete": True,
            "exercises": [{
                "instance_id": "e1",
                "name": "Squat",
                "sets": [{"id": "s1", "weight": 225, "reps": 5, "timestamp": 5_000}],
            }],
        }],
        "templates": [],
    }
    bundle = bundle_from_payload(v1)
    old = bundle.workouts[0]
    assert old.kind == "workout"
    assert old.start_time == 1_000
    assert old.started_at == 5_000
    assert old.ended_at == 61_000
    assert old.duration_sec == 56


def test_newer_schema_version_is_rejected() -> None:
    with pytest.raises(ValueError):
        migrate_payload({"schema_version": SCHEMA_VERSION + 1, "data": {}})


def test_corrupt_data_raises_and_is_kept() -> None:
    """Unparseable data raises StoreLoadError with the raw text and is never reset."""
    with tempfile.TemporaryDirectory() as tmp:
        storage = SessionStore(Path(tmp) / "test.db")
        _write_raw(storage, "{not json")
        with pytest.raises(StoreLoadError) as exc_info:
            storage.load()
        exported = storage.export_data()
        still_there = storage.get_raw_data()
        storage.close()
    assert exc_info.value.raw_data == "{not json"
    assert exported == "{not json"
    assert still_there == "{not json"


def test_invalid_structure_raises_store_load_error() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        storage = SessionStore(Path(tmp) / "test.db")
        _write_raw(storage, json.dumps({"schema_version": 2, "data": {"workouts": [{"kind": "nope"}]}}))
        with pytest.raises(StoreLoadError):
            storage.load()
        storage.close()


def test_export_import_and_clear() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        source = SessionStore(Path(tmp) / "a.db")
        source.save(_bundle())
        text = source.export_data()
        source.close()

        target = SessionStore(Path(tmp) / "b.db")
        with pytest.raises(ValueError):
            target.import_data("[]")
        with pytest.raises(ValueError):
            target.import_data('{"schema_version": 2, "data": {"workouts": "x"}}')
        assert target.get_raw_data() is None
        imported = target.import_data(text)
        loaded = target.load()
        target.clear()
        cleared = target.load()
        target.close()
    assert imported == loaded
    assert loaded.workouts[0].id == "w1"
    assert cleared == SessionBundle()


def test_session_adapter_dispatches_on_kind() -> None:
    session = SessionAdapter.validate_python({
        "kind": "single_exercise",
        "id": "x1",
        "name": "Plank",
        "start_time": 1,
        "exercises": [{"instance_id": "e1", "name": "Plank"}],
    })
    assert session.exercise_name == "Plank"
    assert session.sets == []
