"""Session classification and default naming for sessions the user has not named."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from .models import SessionCore

SessionType = Literal["exercise", "workout"]


def classify_session(exercise_count: int) -> SessionType:
    """One exercise is an 'exercise' session; anything else is a 'workout'."""
    return "exercise" if exercise_count == 1 else "workout"


def time_of_day_label(hour: int) -> str:
    """Morning 04:00-11:59, afternoon 12:00-16:59, evening otherwise."""
    if 4 <= hour < 12:
        return "Morning workout"
    if 12 <= hour < 17:
        return "Afternoon workout"
    return "Evening workout"


def default_session_name(session: SessionCore) -> str:
    if classify_session(len(session.exercises)) == "exercise":
        return session.exercises[0].name or "Exercise"
    hour = datetime.fromtimestamp(session.start_time / 1000).hour
    return time_of_day_label(hour)


def apply_classification(session: SessionCore) -> SessionCore:
    """Refresh session_type; rename only when the user has not named the session."""
    new_type = classify_session(len(session.exercises))
    update: dict = {"session_type": new_type}
    if not session.is_user_named:
        name = session.name or ""
        stale = (
            not name
            or session.session_type != new_type
            or (new_type == "exercise" and name != session.exercises[0].name)
            or (new_type == "workout" and "workout" not in name)
        )
        if stale:
            update["name"] = default_session_name(session)
    return session.model_copy(update=update)


def next_workout_number(names: list[str]) -> str:
    """Next free 'Workout #NNN' name."""
    numbers = []
    for n in names:
        if n.startswith("Workout #") and n[9:].isdigit() and len(n) == 12:
            numbers.append(int(n[9:]))
    return f"Workout #{(max(numbers) + 1) if numbers else 1:03d}"
