"""
Session lifecycle controller: creation, mutation, finalize and discard for every session kind.

Each call reads the session, transforms it into a new value, normalizes its groups and
writes it back into the bundle in one synchronous step; the store save that follows is
fire-and-forget. Ids that do not resolve make an operation a silent no-op, creation
failures are raised.
"""

from __future__ import annotations

import sqlite3
import uuid
from typing import Callable, Iterable, Optional, Union

from loguru import logger

from . import grouping, hooks
from .catalog import ExerciseCatalog
from .duration import compute_duration_sec, elapsed_sec, elapsed_since, now_ms
from .errors import (
    ActiveSessionConflict,
    EmptySessionError,
    EmptySourceError,
    GroupInvariantViolation,
    NotFoundError,
)
from .models import (
    AdHocSession,
    ExerciseHistoryEntry,
    ExerciseInstance,
    ExerciseSessionSummary,
    FinalizeResult,
    GroupInfo,
    GroupMeta,
    SessionBundle,
    SessionItem,
    SessionKind,
    SessionRequest,
    SessionSeed,
    SetRecord,
    SetSummary,
    SingleExerciseSession,
    SupersetEntry,
    WorkoutSession,
    WorkoutTemplate,
)
from .naming import apply_classification, next_workout_number
from .storage import SessionStore

AnySession = Union[WorkoutSession, SingleExerciseSession, AdHocSession]

DISCARDED_BANNER = "Workout discarded"
QUICK_WORKOUT_NAME = "Quick Workout"

_DEFAULT_ORIGIN = {"workout": "quick", "single_exercise": "exercise", "ad_hoc": "ad_hoc"}


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def _latest_set_owner(exercises: list[ExerciseInstance]) -> tuple[Optional[int], Optional[str]]:
    """Max set timestamp across exercises and its owner (group id if grouped). Earlier position wins ties."""
    best_at: Optional[int] = None
    best_owner: Optional[str] = None
    for ex in exercises:
        if not ex.sets:
            continue
        ts = max(s.timestamp for s in ex.sets)
        if best_at is None or ts > best_at:
            best_at, best_owner = ts, ex.group_id or ex.instance_id
    return best_at, best_owner


class SessionController:
    """Owns the session bundle and every lifecycle operation on it."""

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        catalog: Optional[ExerciseCatalog] = None,
        bundle: Optional[SessionBundle] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.catalog = catalog or ExerciseCatalog()
        self._bundle = bundle or SessionBundle()
        self._clock = clock

    @classmethod
    def from_store(
        cls,
        store: SessionStore,
        catalog: Optional[ExerciseCatalog] = None,
        clock: Callable[[], int] = now_ms,
    ) -> "SessionController":
        """Load the persisted bundle. StoreLoadError propagates to the recovery flow."""
        return cls(store=store, catalog=catalog, bundle=store.load(), clock=clock)

    @property
    def bundle(self) -> SessionBundle:
        return self._bundle

    # --- Queries ---

    def active_workout(self) -> Optional[WorkoutSession]:
        return next(
            (w for w in self._bundle.workouts if w.kind == "workout" and not w.is_complete),
            None,
        )

    def incomplete_exercise_session(self) -> Optional[SingleExerciseSession]:
        return self._bundle.incomplete_exercise_session

    def ad_hoc_session(self) -> Optional[AdHocSession]:
        s = self._bundle.ad_hoc_session
        return s if s is not None and s.status == "active" else None

    def in_progress(self) -> list[AnySession]:
        """Incomplete workout and single-exercise sessions (the kinds that conflict)."""
        return [s for s in (self.incomplete_exercise_session(), self.active_workout()) if s is not None]

    def history(self) -> list[AnySession]:
        return [w for w in self._bundle.workouts if w.is_complete]

    def _history_newest_first(self) -> list[AnySession]:
        return sorted((s for s in self.history() if s.ended_at), key=lambda s: s.ended_at, reverse=True)

    def exercise_history(self) -> dict[str, ExerciseHistoryEntry]:
        """Exercise name -> the latest finished session it appeared in, with that session's set count."""
        index: dict[str, ExerciseHistoryEntry] = {}
        for session in self.history():
            performed = session.ended_at or 0
            for ex in session.exercises:
                existing = index.get(ex.name)
                if existing is None or performed > existing.last_performed:
                    index[ex.name] = ExerciseHistoryEntry(
                        last_performed=performed,
                        total_sets=len(ex.sets),
                        session_id=session.id,
                    )
        return index

    def recent_sessions_for_exercise(self, name: str, limit: int = 5) -> list[ExerciseSessionSummary]:
        """Newest first: finished sessions where `name` has at least one logged set."""
        out: list[ExerciseSessionSummary] = []
        for session in self._history_newest_first():
            if len(out) >= limit:
                break
            ex = next((e for e in session.exercises if e.name == name and e.sets), None)
            if ex is not None:
                out.append(ExerciseSessionSummary(
                    sets=[SetSummary(weight=s.weight, reps=s.reps) for s in ex.sets],
                    date=session.ended_at,
                    session_id=session.id,
                    session_name=session.name,
                ))
        return out

    def last_session_for_exercise(self, name: str) -> Optional[ExerciseSessionSummary]:
        recent = self.recent_sessions_for_exercise(name, limit=1)
        return recent[0] if recent else None

    def find_sessions_by_exercise(self, query: str) -> list[AnySession]:
        """Finished sessions, newest first, with an exercise whose name contains `query` (case-insensitive)."""
        term = query.strip().lower()
        return [
            s for s in sorted(self.history(), key=lambda s: s.ended_at or 0, reverse=True)
            if any(term in ex.name.lower() for ex in s.exercises)
        ]

    def get_session(self, session_id: str) -> Optional[AnySession]:
        active = self._active(session_id)
        if active is not None:
            return active
        return next((w for w in self._bundle.workouts if w.id == session_id), None)

    def session_items(self, session_id: str) -> list[SessionItem]:
        s = self.get_session(session_id)
        return grouping.build_session_items(s.exercises) if s else []

    def group_info(self, session_id: str, instance_id: str) -> GroupInfo:
        s = self.get_session(session_id)
        return grouping.get_group_info(s.exercises, instance_id) if s else GroupInfo()

    def elapsed(self, session_id: str, now: Optional[int] = None) -> int:
        """Session clock: seconds since the first logged set (frozen at ended_at)."""
        s = self.get_session(session_id)
        if s is None:
            return 0
        return elapsed_sec(s.started_at, s.ended_at, now if now is not None else self._clock())

    def rest_elapsed(self, session_id: str, now: Optional[int] = None) -> int:
        s = self.get_session(session_id)
        if s is None:
            return 0
        return elapsed_since(s.last_set_at, now if now is not None else self._clock())

    # --- Internals ---

    def _active(self, session_id: str) -> Optional[AnySession]:
        b = self._bundle
        if b.incomplete_exercise_session is not None and b.incomplete_exercise_session.id == session_id:
            return b.incomplete_exercise_session
        if b.ad_hoc_session is not None and b.ad_hoc_session.id == session_id:
            return self.ad_hoc_session()
        return next((w for w in b.workouts if w.id == session_id and not w.is_complete), None)

    def _new_instance(self, name: str) -> ExerciseInstance:
        entry = self.catalog.lookup(name)
        return ExerciseInstance(
            instance_id=generate_id("ex"),
            name=name.strip(),
            exercise_id=entry.id,
            source=entry.source,
            added_at=self._clock(),
        )

    def _persist(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save(self._bundle)
        except (sqlite3.Error, OSError):
            logger.exception("session store save failed; in-memory state kept")

    def _sync_group_meta(self, session: AdHocSession) -> AdHocSession:
        now = self._clock()
        groups = {
            gid: session.groups.get(gid) or GroupMeta(created_at=now)
            for gid in grouping.group_ids(session.exercises)
        }
        return session.model_copy(update={"groups": groups})

    def _store_session(self, session: AnySession) -> None:
        b = self._bundle
        if isinstance(session, SingleExerciseSession):
            self._bundle = b.model_copy(update={"incomplete_exercise_session": session})
        elif isinstance(session, AdHocSession):
            self._bundle = b.model_copy(update={"ad_hoc_session": session})
        else:
            if any(w.id == session.id for w in b.workouts):
                workouts = [session if w.id == session.id else w for w in b.workouts]
            else:
                workouts = [*b.workouts, session]
            self._bundle = b.model_copy(update={"workouts": workouts, "incomplete_workout_id": session.id})

    def _commit(self, session: AnySession) -> AnySession:
        session = session.model_copy(update={"exercises": grouping.normalize_groups(session.exercises)})
        if isinstance(session, AdHocSession):
            session = self._sync_group_meta(apply_classification(session))
        self._store_session(session)
        self._persist()
        return session

    def _update(self, session_id: str, fn: Callable[[AnySession], AnySession]) -> Optional[AnySession]:
        session = self._active(session_id)
        if session is None:
            logger.debug("no active session {}; ignored", session_id)
            return None
        updated = fn(session)
        if updated is session:
            return session
        return self._commit(updated)

    @staticmethod
    def _with_items(session: AnySession, items: list[ExerciseInstance]) -> AnySession:
        if items == session.exercises:
            return session
        return session.model_copy(update={"exercises": items})

    def _map_exercise(
        self,
        session: AnySession,
        instance_id: str,
        fn: Callable[[ExerciseInstance], ExerciseInstance],
    ) -> AnySession:
        if session.find_exercise(instance_id) is None:
            logger.debug("exercise {} not in session {}; ignored", instance_id, session.id)
            return session
        return self._with_items(
            session,
            [fn(ex) if ex.instance_id == instance_id else ex for ex in session.exercises],
        )

    def _map_group(
        self,
        session: AnySession,
        group_id: str,
        fn: Callable[[ExerciseInstance], ExerciseInstance],
    ) -> AnySession:
        return self._with_items(
            session,
            [fn(ex) if ex.group_id == group_id else ex for ex in session.exercises],
        )

    def _remove(self, session: AnySession, instance_ids: Iterable[str]) -> AnySession:
        ids = set(instance_ids)
        if not ids or not any(ex.instance_id in ids for ex in session.exercises):
            return session
        if isinstance(session, SingleExerciseSession):
            logger.debug("cannot remove the only exercise of {}; discard the session instead", session.id)
            return session
        items = grouping.normalize_groups([ex for ex in session.exercises if ex.instance_id not in ids])
        last_at, owner = _latest_set_owner(items)
        return session.model_copy(update={"exercises": items, "last_set_at": last_at, "last_set_owner_id": owner})

    def _stamp_logged(
        self,
        session: AnySession,
        items: list[ExerciseInstance],
        ts: int,
        owner_id: str,
    ) -> AnySession:
        update = {
            "exercises": items,
            "last_set_at": ts,
            "last_set_owner_id": owner_id,
            "ended_at": None,
            "duration_sec": None,
        }
        if session.started_at is None:
            update["started_at"] = ts
        return session.model_copy(update=update)

    # --- Creation ---

    def _check_can_start(self, kind: SessionKind) -> None:
        if kind == "ad_hoc":
            existing = self.ad_hoc_session()
            if existing is not None:
                raise ActiveSessionConflict(f"ad-hoc session {existing.id} is still active", existing.id)
            return
        existing = self.in_progress()
        if existing:
            raise ActiveSessionConflict(
                f"{existing[0].kind} session {existing[0].id} is in progress; resolve it first",
                existing[0].id,
            )

    def _find_template(self, template_id: Optional[str]) -> WorkoutTemplate:
        template = next((t for t in self._bundle.templates if t.id == template_id), None)
        if template is None:
            raise NotFoundError(f"template {template_id} not found")
        return template

    def _repeat_source(self, source_session_id: str) -> tuple[AnySession, list[ExerciseInstance]]:
        """The history session to repeat and its exercises with at least one logged set."""
        source = next((s for s in self.history() if s.id == source_session_id), None)
        if source is None:
            raise NotFoundError(f"history session {source_session_id} not found")
        qualifying = [ex for ex in source.exercises if ex.sets]
        if not qualifying:
            raise EmptySourceError(f"session {source_session_id} has no exercises with logged sets")
        return source, qualifying

    def validate_seed(self, kind: SessionKind, seed: Optional[SessionSeed] = None) -> SessionRequest:
        """
        Check that a session could be built from `seed` without creating anything: the request
        shape, the template and the repeat source. Active-session guards are not checked here.
        """
        request = SessionRequest(kind=kind, seed=seed or SessionSeed(origin=_DEFAULT_ORIGIN[kind]))
        if request.seed.origin == "template":
            self._find_template(request.seed.template_id)
        elif request.seed.origin == "history":
            self._repeat_source(request.seed.source_session_id or "")
        return request

    def _repeat_exercises(self, source_session_id: str, now: int) -> tuple[str, list[ExerciseInstance], Optional[str]]:
        source, qualifying = self._repeat_source(source_session_id)
        fresh_groups: dict[str, str] = {}
        seeded: list[ExerciseInstance] = []
        for ex in qualifying:
            gid = None
            if ex.group_id:
                if ex.group_id not in fresh_groups:
                    fresh_groups[ex.group_id] = grouping.new_group_id()
                gid = fresh_groups[ex.group_id]
            seeded.append(ExerciseInstance(
                instance_id=generate_id("ex"),
                name=ex.name,
                exercise_id=ex.exercise_id,
                source=ex.source,
                group_id=gid,
                added_at=now,
            ))
        return source.name, seeded, getattr(source, "template_id", None)

    def _build_workout(self, seed: SessionSeed, now: int) -> WorkoutSession:
        template_id: Optional[str] = None
        exercises: list[ExerciseInstance] = []
        if seed.origin == "quick":
            name = seed.name or QUICK_WORKOUT_NAME
        elif seed.origin == "named":
            name = (seed.name or "").strip()
        elif seed.origin == "template":
            template = self._find_template(seed.template_id)
            name, template_id = template.name, template.id
            exercises = [self._new_instance(n) for n in template.exercise_names]
        else:
            name, exercises, template_id = self._repeat_exercises(seed.source_session_id or "", now)
        return WorkoutSession(
            id=generate_id("workout"),
            name=name,
            exercises=exercises,
            start_time=now,
            template_id=template_id,
            is_user_named=seed.origin == "named",
        )

    def start_session(self, kind: SessionKind, seed: Optional[SessionSeed] = None) -> AnySession:
        """
        Create a session of `kind` from `seed`. Raises ActiveSessionConflict when a conflicting
        session is in progress, NotFoundError for unknown templates / history sources and
        EmptySourceError when a repeat source has nothing logged. Nothing is created on failure.
        """
        request = SessionRequest(kind=kind, seed=seed or SessionSeed(origin=_DEFAULT_ORIGIN[kind]))
        seed = request.seed
        self._check_can_start(kind)
        now = self._clock()
        session: AnySession
        if kind == "workout":
            session = self._build_workout(seed, now)
        elif kind == "single_exercise":
            name = (seed.exercise_name or "").strip()
            session = SingleExerciseSession(
                id=generate_id("exercise"),
                name=name,
                exercises=[self._new_instance(name)],
                start_time=now,
            )
        else:
            session = AdHocSession(
                id=generate_id("adhoc"),
                name=(seed.name or "").strip(),
                exercises=[self._new_instance(n) for n in seed.exercise_names],
                start_time=now,
                is_user_named=bool((seed.name or "").strip()),
            )
        session = self._commit(session)
        logger.info("started {} session {} ({}, {} exercises)", kind, session.id, seed.origin, len(session.exercises))
        return session

    def add_exercise(self, session_id: str, name: str) -> Optional[AnySession]:
        def apply(s: AnySession) -> AnySession:
            if isinstance(s, SingleExerciseSession):
                logger.debug("single-exercise session {} cannot take more exercises", s.id)
                return s
            return s.model_copy(update={"exercises": [*s.exercises, self._new_instance(name)]})

        return self._update(session_id, apply)

    # --- Set logging ---

    def log_set(
        self,
        session_id: str,
        instance_id: str,
        weight: float,
        reps: int,
        rest_duration: Optional[int] = None,
    ) -> Optional[AnySession]:
        """Append a set. Sets started_at on the session's first set only and reactivates the exercise."""

        def apply(s: AnySession) -> AnySession:
            target = s.find_exercise(instance_id)
            if target is None:
                logger.debug("log_set: exercise {} not in session {}; ignored", instance_id, session_id)
                return s
            ts = self._clock()
            new_set = SetRecord(
                id=generate_id("set"),
                weight=weight,
                reps=reps,
                timestamp=ts,
                rest_duration_seconds=rest_duration,
            )
            items = [
                ex.model_copy(update={"sets": [*ex.sets, new_set], "last_set_at": ts, "is_complete": False})
                if ex.instance_id == instance_id else ex
                for ex in s.exercises
            ]
            return self._stamp_logged(s, items, ts, target.group_id or target.instance_id)

        return self._update(session_id, apply)

    def log_superset_set(
        self,
        session_id: str,
        entries: list[SupersetEntry] | list[dict],
        superset_set_id: Optional[str] = None,
        rest_duration: Optional[int] = None,
    ) -> Optional[AnySession]:
        """
        One weight/reps pair per grouped exercise, applied atomically. All resulting sets share
        one timestamp and superset_set_id. Skipped members and unknown ids are left out.
        """
        parsed = [SupersetEntry.model_validate(e) for e in entries]

        def apply(s: AnySession) -> AnySession:
            by_id = {e.instance_id: e for e in parsed}
            targets = [ex for ex in s.exercises if ex.instance_id in by_id and not ex.is_skipped]
            if not targets:
                return s
            group_id = targets[0].group_id
            if group_id is None or any(ex.group_id != group_id for ex in targets):
                raise GroupInvariantViolation("superset sets must target members of a single group")
            ts = self._clock()
            shared_id = superset_set_id or generate_id("superset")
            target_ids = {ex.instance_id for ex in targets}
            items = []
            for ex in s.exercises:
                if ex.instance_id in target_ids:
                    entry = by_id[ex.instance_id]
                    new_set = SetRecord(
                        id=generate_id("set"),
                        weight=entry.weight,
                        reps=entry.reps,
                        timestamp=ts,
                        rest_duration_seconds=rest_duration,
                        superset_set_id=shared_id,
                    )
                    ex = ex.model_copy(update={"sets": [*ex.sets, new_set], "last_set_at": ts, "is_complete": False})
                items.append(ex)
            return self._stamp_logged(s, items, ts, group_id)

        return self._update(session_id, apply)

    def delete_set(self, session_id: str, instance_id: str, set_id: str) -> Optional[AnySession]:
        """Remove a set and recompute last_set_at for the exercise and the session from what remains."""

        def apply(s: AnySession) -> AnySession:
            target = s.find_exercise(instance_id)
            if target is None or not any(st.id == set_id for st in target.sets):
                logger.debug("delete_set: set {} not found on {}; ignored", set_id, instance_id)
                return s
            remaining = [st for st in target.sets if st.id != set_id]
            items = [
                ex.model_copy(update={
                    "sets": remaining,
                    "last_set_at": max((st.timestamp for st in remaining), default=None),
                })
                if ex.instance_id == instance_id else ex
                for ex in s.exercises
            ]
            last_at, owner = _latest_set_owner(items)
            return s.model_copy(update={"exercises": items, "last_set_at": last_at, "last_set_owner_id": owner})

        return self._update(session_id, apply)

    # --- Completion, skip, defer, delete ---

    def complete_exercise(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._map_exercise(s, instance_id, lambda ex: ex.model_copy(update={"is_complete": True})),
        )

    def complete_group(self, session_id: str, group_id: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._map_group(s, group_id, lambda ex: ex.model_copy(update={"is_complete": True})),
        )

    def skip_exercise(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        """Plain skip: the instance is removed from the session."""
        return self._update(session_id, lambda s: self._remove(s, [instance_id]))

    def skip_group(self, session_id: str, group_id: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._remove(s, [ex.instance_id for ex in grouping.group_members(s.exercises, group_id)]),
        )

    def skip_exercise_in_group(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        """Flag a group member as skipped; group shape is kept and superset logging leaves it out."""

        def apply(s: AnySession) -> AnySession:
            target = s.find_exercise(instance_id)
            if target is None or not target.group_id:
                return s
            return self._map_exercise(s, instance_id, lambda ex: ex.model_copy(update={"is_skipped": True}))

        return self._update(session_id, apply)

    def unskip_exercise_in_group(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._map_exercise(s, instance_id, lambda ex: ex.model_copy(update={"is_skipped": False})),
        )

    def defer_exercise(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        """Move the exercise to the end. A grouped exercise takes its whole group along."""

        def apply(s: AnySession) -> AnySession:
            target = s.find_exercise(instance_id)
            if target is None:
                return s
            if target.group_id:
                ids = [ex.instance_id for ex in grouping.group_members(s.exercises, target.group_id)]
            else:
                ids = [instance_id]
            return self._with_items(s, grouping.move_to_end(s.exercises, ids))

        return self._update(session_id, apply)

    def defer_group(self, session_id: str, group_id: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._with_items(
                s,
                grouping.move_to_end(s.exercises, [ex.instance_id for ex in grouping.group_members(s.exercises, group_id)]),
            ),
        )

    def reorder_exercise(self, session_id: str, instance_id: str, index: int) -> Optional[AnySession]:
        """Move an exercise (with its whole group, if grouped) to `index`."""
        return self._update(
            session_id,
            lambda s: self._with_items(s, grouping.move_to(s.exercises, instance_id, index)),
        )

    def delete_exercise(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        return self._update(session_id, lambda s: self._remove(s, [instance_id]))

    def delete_group(self, session_id: str, group_id: str) -> Optional[AnySession]:
        return self.skip_group(session_id, group_id)

    # --- Grouping ---

    def create_group(self, session_id: str, instance_ids: list[str]) -> Optional[AnySession]:
        return self._update(session_id, lambda s: self._with_items(s, grouping.create_group(s.exercises, instance_ids)))

    def add_to_group(self, session_id: str, group_id: str, instance_id: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._with_items(s, grouping.add_to_group(s.exercises, group_id, instance_id)),
        )

    def merge_groups(self, session_id: str, group_id_1: str, group_id_2: str) -> Optional[AnySession]:
        return self._update(
            session_id,
            lambda s: self._with_items(s, grouping.merge_groups(s.exercises, group_id_1, group_id_2)),
        )

    def ungroup(self, session_id: str, instance_id: str) -> Optional[AnySession]:
        return self._update(session_id, lambda s: self._with_items(s, grouping.ungroup(s.exercises, instance_id)))

    def ungroup_all(self, session_id: str, group_id: str) -> Optional[AnySession]:
        return self._update(session_id, lambda s: self._with_items(s, grouping.ungroup_all(s.exercises, group_id)))

    def swap_group_member(
        self,
        session_id: str,
        group_id: str,
        source_instance_id: str,
        replacement_instance_id: str,
    ) -> Optional[AnySession]:
        """Raises GroupInvariantViolation (session unchanged) when a swap precondition fails."""

        def apply(s: AnySession) -> AnySession:
            try:
                grouping.validate_group_swap(s.exercises, group_id, source_instance_id, replacement_instance_id)
            except GroupInvariantViolation as exc:
                logger.warning("group swap refused in {}: {}", s.id, exc)
                raise
            items = grouping.swap_group_member(s.exercises, group_id, source_instance_id, replacement_instance_id)
            return self._with_items(s, items)

        return self._update(session_id, apply)

    def replace_group_member(
        self,
        session_id: str,
        group_id: str,
        source_instance_id: str,
        new_exercise_name: str,
    ) -> Optional[AnySession]:
        """Swap a group member for a new instance of `new_exercise_name`."""
        swapped: list[tuple[str, str]] = []

        def apply(s: AnySession) -> AnySession:
            source = s.find_exercise(source_instance_id)
            if source is None or source.group_id != group_id:
                logger.warning("group swap refused in {}: {} is not in {}", s.id, source_instance_id, group_id)
                raise GroupInvariantViolation(f"{source_instance_id} is not a member of {group_id}")
            new_ex = self._new_instance(new_exercise_name)
            items = grouping.swap_group_member([*s.exercises, new_ex], group_id, source_instance_id, new_ex.instance_id)
            swapped.append((source.name, new_ex.name))
            return self._with_items(s, items)

        result = self._update(session_id, apply)
        for from_name, to_name in swapped:
            hooks.record_swap(from_name, to_name)
        return result

    def swap_exercise(self, session_id: str, instance_id: str, new_exercise_name: str) -> Optional[AnySession]:
        """
        No sets logged: swap in place (same slot and instance id, new name, sets cleared).
        Sets logged: keep the old instance and insert a new empty one right after it.
        """
        swapped: list[tuple[str, str]] = []

        def apply(s: AnySession) -> AnySession:
            target = s.find_exercise(instance_id)
            if target is None:
                return s
            new_name = new_exercise_name.strip()
            if not target.sets:
                entry = self.catalog.lookup(new_name)
                replaced = target.model_copy(update={
                    "name": new_name,
                    "exercise_id": entry.id,
                    "source": entry.source,
                    "sets": [],
                    "last_set_at": None,
                    "is_complete": False,
                    "is_skipped": False,
                })
                items = [replaced if ex.instance_id == instance_id else ex for ex in s.exercises]
                update: dict = {"exercises": items}
                if isinstance(s, SingleExerciseSession) and not s.is_user_named:
                    update["name"] = new_name
            elif isinstance(s, SingleExerciseSession):
                logger.debug("single-exercise session {} already has sets; swap ignored", s.id)
                return s
            else:
                idx = next(i for i, ex in enumerate(s.exercises) if ex.instance_id == instance_id)
                items = [*s.exercises[: idx + 1], self._new_instance(new_name), *s.exercises[idx + 1:]]
                update = {"exercises": items}
            swapped.append((target.name, new_name))
            return s.model_copy(update=update)

        result = self._update(session_id, apply)
        for from_name, to_name in swapped:
            hooks.record_swap(from_name, to_name)
        return result

    # --- Session-level edits ---

    def rename_session(self, session_id: str, name: str) -> Optional[AnySession]:
        clean = name.strip()
        if not clean:
            raise ValueError("session name must not be empty")
        return self._update(session_id, lambda s: s.model_copy(update={"name": clean, "is_user_named": True}))

    def convert_to_workout(self, session_id: str) -> Optional[WorkoutSession]:
        """Turn the in-progress single-exercise session into an in-progress workout."""
        single = self._bundle.incomplete_exercise_session
        if single is None or single.id != session_id:
            return None
        existing = self.active_workout()
        if existing is not None:
            raise ActiveSessionConflict(f"workout {existing.id} is already in progress", existing.id)
        workout = WorkoutSession(
            id=generate_id("workout"),
            name=next_workout_number([w.name for w in self._bundle.workouts]),
            exercises=[ex.model_copy(update={"is_complete": True}) for ex in single.exercises],
            start_time=single.start_time,
            started_at=single.started_at,
            last_set_at=single.last_set_at,
            last_set_owner_id=single.last_set_owner_id,
        )
        self._bundle = self._bundle.model_copy(update={"incomplete_exercise_session": None})
        committed = self._commit(workout)
        logger.info("converted exercise session {} into workout {}", session_id, committed.id)
        return committed

    # --- Termination ---

    def _archive(self, done: AnySession) -> None:
        b = self._bundle
        if any(w.id == done.id for w in b.workouts):
            workouts = [done if w.id == done.id else w for w in b.workouts]
        else:
            workouts = [*b.workouts, done]
        update: dict = {"workouts": workouts}
        if b.incomplete_workout_id == done.id:
            update["incomplete_workout_id"] = None
        if b.incomplete_exercise_session is not None and b.incomplete_exercise_session.id == done.id:
            update["incomplete_exercise_session"] = None
        if b.ad_hoc_session is not None and b.ad_hoc_session.id == done.id:
            update["ad_hoc_session"] = None
        self._bundle = b.model_copy(update=update)
        self._persist()

    def _complete(
        self,
        session: AnySession,
        kept: list[ExerciseInstance],
        dropped: Optional[list[str]] = None,
    ) -> FinalizeResult:
        ended_at = session.ended_at or self._clock()
        update: dict = {
            "exercises": grouping.normalize_groups(kept),
            "ended_at": ended_at,
            "duration_sec": compute_duration_sec(session.started_at or session.start_time, ended_at),
            "is_complete": True,
        }
        if isinstance(session, AdHocSession):
            update["status"] = "completed"
        done = session.model_copy(update=update)
        if isinstance(done, AdHocSession):
            done = self._sync_group_meta(apply_classification(done))
        self._archive(done)
        template_id = getattr(done, "template_id", None)
        for ex in done.exercises:
            hooks.record_usage(ex.name, template_id)
        logger.info(
            "finalized {} session {}: {} exercises, {} sets, {}s",
            done.kind, done.id, len(done.exercises), done.total_sets, done.duration_sec,
        )
        return FinalizeResult(outcome="completed", session=done, dropped_exercise_ids=dropped or [])

    def _discard_result(self, session: AnySession) -> FinalizeResult:
        self.discard(session.id)
        return FinalizeResult(outcome="discarded", banner=DISCARDED_BANNER)

    def finalize(self, session_id: str, confirm_partial: bool = False) -> Optional[FinalizeResult]:
        """
        Turn an active session into history.
        - single_exercise without sets: EmptySessionError.
        - no sets at all: the session is discarded instead.
        - some exercises without sets: confirmation_required unless confirm_partial; confirming
          drops those exercises.
        ended_at is stamped once and reused by later attempts.
        """
        session = self._active(session_id)
        if session is None:
            logger.debug("finalize: no active session {}; ignored", session_id)
            return None
        if isinstance(session, SingleExerciseSession):
            if session.total_sets == 0:
                raise EmptySessionError("Add at least one set before finishing")
            return self._complete(session, session.exercises)
        if session.total_sets == 0:
            return self._discard_result(session)
        empty = [ex.instance_id for ex in session.exercises if not ex.sets]
        if empty and not confirm_partial:
            if session.ended_at is None:
                session = self._commit(session.model_copy(update={"ended_at": self._clock()}))
            return FinalizeResult(outcome="confirmation_required", session=session, dropped_exercise_ids=empty)
        return self._complete(session, [ex for ex in session.exercises if ex.sets], dropped=empty)

    def auto_finalize(self, session_id: str) -> Optional[FinalizeResult]:
        """
        Save-and-continue policy, never asks: saves when at least one set was logged or one
        exercise was marked complete (keeping exactly those exercises), otherwise discards.
        """
        session = self._active(session_id)
        if session is None:
            return None
        kept = [ex for ex in session.exercises if ex.sets or ex.is_complete]
        if session.total_sets == 0 and not any(ex.is_complete for ex in session.exercises):
            return self._discard_result(session)
        dropped = [ex.instance_id for ex in session.exercises if ex not in kept]
        return self._complete(session, kept, dropped=dropped)

    def discard(self, session_id: str) -> bool:
        """Delete an active session without a trace. Returns False if nothing matched."""
        session = self._active(session_id)
        if session is None:
            return False
        b = self._bundle
        if isinstance(session, SingleExerciseSession):
            update: dict = {"incomplete_exercise_session": None}
        elif isinstance(session, AdHocSession):
            update = {"ad_hoc_session": None}
        else:
            update = {"workouts": [w for w in b.workouts if w.id != session_id]}
            if b.incomplete_workout_id == session_id:
                update["incomplete_workout_id"] = None
        self._bundle = b.model_copy(update=update)
        self._persist()
        logger.info("discarded {} session {}", session.kind, session_id)
        return True

    def delete_history(self, session_ids: list[str]) -> int:
        """Delete finished sessions from history. Returns how many were removed."""
        ids = set(session_ids)
        before = len(self._bundle.workouts)
        workouts = [w for w in self._bundle.workouts if not (w.is_complete and w.id in ids)]
        removed = before - len(workouts)
        if removed:
            self._bundle = self._bundle.model_copy(update={"workouts": workouts})
            self._persist()
        return removed

    # --- Templates ---

    def save_template(self, name: str, exercise_names: list[str]) -> WorkoutTemplate:
        clean = name.strip()
        if not clean:
            raise ValueError("template name must not be empty")
        now = self._clock()
        template = WorkoutTemplate(
            id=generate_id("template"),
            name=clean,
            exercise_names=[n.strip() for n in exercise_names if n.strip()],
            created_at=now,
            updated_at=now,
        )
        self._bundle = self._bundle.model_copy(update={"templates": [*self._bundle.templates, template]})
        self._persist()
        return template

    def delete_template(self, template_id: str) -> bool:
        templates = [t for t in self._bundle.templates if t.id != template_id]
        if len(templates) == len(self._bundle.templates):
            return False
        self._bundle = self._bundle.model_copy(update={"templates": templates})
        self._persist()
        return True
