#!/usr/bin/env python3
"""
Walk through a superset workout end to end against a scratch database.
Usage: python scripts/demo_session.py [db_path]
"""
from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from liftlog.config import configure_logging
from liftlog.conflict import ConflictResolver
from liftlog.duration import format_duration
from liftlog.lifecycle import SessionController
from liftlog.models import SessionSeed
from liftlog.storage import SessionStore


DEFAULT_DB = ROOT / "liftlog_demo.db"


def main() -> None:
    db_path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_DB
    configure_logging("INFO")
    store = SessionStore(db_path)
    store.clear()
    controller = SessionController.from_store(store)
    resolver = ConflictResolver(controller)

    outcome = resolver.request({"kind": "workout", "seed": {"origin": "named", "name": "Push day"}})
    workout = outcome.session
    for name in ("Bench press", "Incline dumbbell press", "Tricep pushdown"):
        workout = controller.add_exercise(workout.id, name)
    bench, incline, pushdown = [ex.instance_id for ex in workout.exercises]

    workout = controller.create_group(workout.id, [incline, pushdown])
    controller.log_set(workout.id, bench, 185, 5)
    controller.log_set(workout.id, bench, 185, 5)
    controller.log_superset_set(workout.id, [
        {"instance_id": incline, "weight": 60, "reps": 10},
        {"instance_id": pushdown, "weight": 50, "reps": 12},
    ])

    print("Items:")
    for item in controller.session_items(workout.id):
        print(f"  {item.type:9s} {item.id}  exercises={len(item.exercise_ids)}")

    # A second start request conflicts with the workout in progress
    outcome = resolver.request(
        {"kind": "single_exercise", "seed": {"origin": "exercise", "exercise_name": "Plank"}}
    )
    print(f"\nSecond request: {outcome.status} (blocked by {outcome.conflict.existing_kind})")
    resolution = resolver.save_and_continue()
    for result in resolution.finalized:
        s = result.session
        print(f"Saved {s.name}: {s.total_sets} sets in {format_duration(s.duration_sec)}")
    print(f"Started {resolution.session.kind}: {resolution.session.name}")

    repeat = SessionSeed(origin="history", source_session_id=resolution.finalized[0].session.id)
    controller.discard(resolution.session.id)
    again = controller.start_session("workout", repeat)
    print(f"\nRepeat seeded: {[ex.name for ex in again.exercises]}")

    store.close()
    print(f"\nDB: {db_path}")


if __name__ == "__main__":
    main()
