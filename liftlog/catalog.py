"""Exercise catalog: resolves a display name to a catalog id used to stamp new exercise instances."""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel

from .models import ExerciseSource


class CatalogEntry(BaseModel):
    id: str
    source: ExerciseSource


# Exact synonyms (lowercase) -> system exercise id
SYSTEM_EXERCISES: dict[str, str] = {
    "bench": "barbell_bench_press",
    "bench press": "barbell_bench_press",
    "barbell bench press": "barbell_bench_press",
    "incline bench press": "incline_barbell_bench_press",
    "incline dumbbell press": "incline_dumbbell_press",
    "squat": "barbell_back_squat",
    "back squat": "barbell_back_squat",
    "front squat": "barbell_front_squat",
    "deadlift": "barbell_deadlift",
    "romanian deadlift": "romanian_deadlift",
    "rdl": "romanian_deadlift",
    "overhead press": "overhead_press",
    "ohp": "overhead_press",
    "pull up": "pull_up",
    "pull-up": "pull_up",
    "chin up": "chin_up",
    "barbell row": "barbell_row",
    "bent over row": "barbell_row",
    "lat pulldown": "lat_pulldown",
    "seated cable row": "seated_cable_row",
    "dumbbell curl": "dumbbell_curl",
    "bicep curl": "dumbbell_curl",
    "tricep pushdown": "tricep_pushdown",
    "lateral raise": "lateral_raise",
    "leg press": "leg_press",
    "leg curl": "leg_curl",
    "leg extension": "leg_extension",
    "calf raise": "calf_raise",
    "hip thrust": "hip_thrust",
    "dip": "dip",
    "dips": "dip",
    "push up": "push_up",
    "push-up": "push_up",
    "plank": "plank",
}


def slug_exercise(raw: str) -> str:
    """Turn a free-text exercise name into a slug for user ids."""
    s = raw.strip().lower()
    s = re.sub(r"[^\w\s-]", "", s)
    s = re.sub(r"[-\s]+", "_", s)
    return s or "unknown"


class ExerciseCatalog:
    """
    Name -> {id, source}. Known lifts resolve to system ids; anything else is registered
    once as a user exercise with a stable slug id.
    """

    def __init__(self, system: Optional[dict[str, str]] = None):
        self._system = dict(SYSTEM_EXERCISES if system is None else system)
        self._user: dict[str, CatalogEntry] = {}

    def lookup(self, name: str) -> CatalogEntry:
        key = re.sub(r"\s+", " ", (name or "").strip().lower())
        if key in self._system:
            return CatalogEntry(id=self._system[key], source="system")
        if key not in self._user:
            self._user[key] = CatalogEntry(id=f"user:{slug_exercise(key)}", source="user")
        return self._user[key]

    def user_exercises(self) -> list[CatalogEntry]:
        return list(self._user.values())
