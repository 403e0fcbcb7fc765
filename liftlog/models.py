"""Pydantic models for LiftLog: sets, exercise instances, the session variant, bundle and results."""

from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, computed_field, model_validator

SessionKind = Literal["workout", "single_exercise", "ad_hoc"]
SeedOrigin = Literal["quick", "named", "template", "history", "exercise", "ad_hoc"]
ExerciseSource = Literal["system", "user"]


# --- Sets and exercise instances ---

class SetRecord(BaseModel):
    id: str
    weight: float
    reps: int = Field(ge=0)
    timestamp: int  # epoch ms
    rest_duration_seconds: Optional[int] = None
    superset_set_id: Optional[str] = None  # shared by sets logged together across a group


class ExerciseInstance(BaseModel):
    """One occurrence of an exercise inside a session (not its catalog identity)."""
    instance_id: str
    name: str
    exercise_id: Optional[str] = None
    source: Optional[ExerciseSource] = None
    sets: list[SetRecord] = Field(default_factory=list)
    is_complete: bool = False
    is_skipped: bool = False  # only used inside groups; keeps group shape
    group_id: Optional[str] = None
    last_set_at: Optional[int] = None
    added_at: Optional[int] = None


# --- Session variant ---

class SessionCore(BaseModel):
    id: str
    name: str
    exercises: list[ExerciseInstance] = Field(default_factory=list)
    start_time: int  # creation time
    started_at: Optional[int] = None  # first logged set, set once
    ended_at: Optional[int] = None
    duration_sec: Optional[int] = None
    is_complete: bool = False
    last_set_at: Optional[int] = None
    last_set_owner_id: Optional[str] = None  # instance id or group id
    is_user_named: bool = False
    session_type: Optional[Literal["exercise", "workout"]] = None

    @property
    def total_sets(self) -> int:
        return sum(len(ex.sets) for ex in self.exercises)

    def find_exercise(self, instance_id: str) -> Optional[ExerciseInstance]:
        return next((ex for ex in self.exercises if ex.instance_id == instance_id), None)


class WorkoutSession(SessionCore):
    kind: Literal["workout"] = "workout"
    template_id: Optional[str] = None


class SingleExerciseSession(SessionCore):
    kind: Literal["single_exercise"] = "single_exercise"

    @model_validator(mode="after")
    def _check_single_instance(self) -> "SingleExerciseSession":
        if len(self.exercises) != 1:
            raise ValueError("single_exercise session must hold exactly one exercise instance")
        return self

    @property
    def exercise_name(self) -> str:
        return self.exercises[0].name

    @property
    def sets(self) -> list[SetRecord]:
        return self.exercises[0].sets


class GroupMeta(BaseModel):
    created_at: int


class AdHocSession(SessionCore):
    kind: Literal["ad_hoc"] = "ad_hoc"
    status: Literal["active", "completed"] = "active"
    groups: dict[str, GroupMeta] = Field(default_factory=dict)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def exercise_order(self) -> list[str]:
        return [ex.instance_id for ex in self.exercises]


Session = Annotated[
    Union[WorkoutSession, SingleExerciseSession, AdHocSession],
    Field(discriminator="kind"),
]
SessionAdapter: TypeAdapter[Session] = TypeAdapter(Session)


# --- Templates and persisted bundle ---

class WorkoutTemplate(BaseModel):
    id: str
    name: str
    exercise_names: list[str] = Field(default_factory=list)
    created_at: int
    updated_at: int


class SessionBundle(BaseModel):
    workouts: list[Session] = Field(default_factory=list)  # history + the incomplete workout
    templates: list[WorkoutTemplate] = Field(default_factory=list)
    incomplete_exercise_session: Optional[SingleExerciseSession] = None
    incomplete_workout_id: Optional[str] = None
    ad_hoc_session: Optional[AdHocSession] = None


# --- Session creation requests ---

class SessionSeed(BaseModel):
    origin: SeedOrigin = "quick"
    name: Optional[str] = None
    template_id: Optional[str] = None
    source_session_id: Optional[str] = None  # repeat from history
    exercise_name: Optional[str] = None
    exercise_names: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_origin_fields(self) -> "SessionSeed":
        if self.origin == "named" and not (self.name or "").strip():
            raise ValueError("name required when origin is named")
        if self.origin == "template" and not self.template_id:
            raise ValueError("template_id required when origin is template")
        if self.origin == "history" and not self.source_session_id:
            raise ValueError("source_session_id required when origin is history")
        if self.origin == "exercise" and not (self.exercise_name or "").strip():
            raise ValueError("exercise_name required when origin is exercise")
        return self


_ORIGINS_BY_KIND: dict[str, tuple[str, ...]] = {
    "workout": ("quick", "named", "template", "history"),
    "single_exercise": ("exercise",),
    "ad_hoc": ("ad_hoc",),
}


class SessionRequest(BaseModel):
    """A start request captured with enough data to replay creation after conflict resolution."""
    kind: SessionKind
    seed: SessionSeed = Field(default_factory=SessionSeed)

    @model_validator(mode="after")
    def _check_kind_origin(self) -> "SessionRequest":
        if self.seed.origin not in _ORIGINS_BY_KIND[self.kind]:
            raise ValueError(f"origin {self.seed.origin!r} cannot start a {self.kind} session")
        return self


# --- Operation inputs and results ---

class SupersetEntry(BaseModel):
    instance_id: str
    weight: float
    reps: int = Field(ge=0)


class GroupInfo(BaseModel):
    group_id: Optional[str] = None
    members: list[ExerciseInstance] = Field(default_factory=list)
    is_first_in_group: bool = False
    is_last_in_group: bool = False


class SessionItem(BaseModel):
    """A display slot: a standalone exercise or a whole superset."""
    id: str  # instance id for a single exercise, group id for a superset
    type: Literal["exercise", "superset"]
    exercise_ids: list[str]
    is_complete: bool


class FinalizeResult(BaseModel):
    outcome: Literal["completed", "discarded", "confirmation_required"]
    session: Optional[Session] = None
    dropped_exercise_ids: list[str] = Field(default_factory=list)
    banner: Optional[str] = None


class SessionConflict(BaseModel):
    existing_kind: SessionKind
    existing_session_id: str
    request: SessionRequest


class ResolutionResult(BaseModel):
    action: Literal["started", "resumed", "discarded", "saved", "cancelled"]
    session: Optional[Session] = None
    finalized: list[FinalizeResult] = Field(default_factory=list)


class RequestOutcome(BaseModel):
    status: Literal["started", "conflict"]
    session: Optional[Session] = None
    conflict: Optional[SessionConflict] = None


class ExerciseHistoryEntry(BaseModel):
    """Latest finished session that included an exercise."""
    last_performed: int
    total_sets: int
    session_id: str


class SetSummary(BaseModel):
    weight: float
    reps: int


class ExerciseSessionSummary(BaseModel):
    """One exercise's sets within one finished session."""
    sets: list[SetSummary]
    date: int
    session_id: str
    session_name: str


# --- MCP tool inputs ---

class SessionRefInput(BaseModel):
    session_id: str


class AddExerciseInput(SessionRefInput):
    name: str


class LogSetInput(SessionRefInput):
    instance_id: str
    weight: float
    reps: int = Field(ge=0)
    rest_duration: Optional[int] = None


class LogSupersetSetInput(SessionRefInput):
    entries: list[SupersetEntry]
    superset_set_id: Optional[str] = None
    rest_duration: Optional[int] = None


class DeleteSetInput(SessionRefInput):
    instance_id: str
    set_id: str


ExerciseAction = Literal[
    "complete", "skip", "skip_in_group", "unskip_in_group", "defer", "delete",
]
GroupAction = Literal["complete", "skip", "defer", "delete", "ungroup_all"]


class ExerciseActionInput(SessionRefInput):
    action: ExerciseAction
    instance_id: str


class GroupActionInput(SessionRefInput):
    action: GroupAction
    group_id: str


class GroupEditInput(SessionRefInput):
    """create: instance_ids; add: group_id + instance_id; merge: group_id + other_group_id;
    ungroup: instance_id; swap: group_id + instance_id + replacement_id or replacement_name."""
    action: Literal["create", "add", "merge", "ungroup", "swap"]
    instance_ids: list[str] = Field(default_factory=list)
    group_id: Optional[str] = None
    other_group_id: Optional[str] = None
    instance_id: Optional[str] = None
    replacement_id: Optional[str] = None
    replacement_name: Optional[str] = None


class SwapExerciseInput(SessionRefInput):
    instance_id: str
    new_name: str


class RenameSessionInput(SessionRefInput):
    name: str


class FinalizeInput(SessionRefInput):
    confirm_partial: bool = False


class ResolveConflictInput(BaseModel):
    choice: Literal["resume", "discard", "save_and_continue", "cancel"]


class SaveTemplateInput(BaseModel):
    name: str
    exercise_names: list[str] = Field(default_factory=list)


class TemplateRefInput(BaseModel):
    template_id: str


class ReorderExerciseInput(SessionRefInput):
    instance_id: str
    index: int = Field(ge=0)


class ExerciseHistoryInput(BaseModel):
    """No name: the per-exercise index. With a name: its last and recent finished sessions."""
    name: Optional[str] = None
    limit: int = Field(default=5, ge=1, le=50)


class ImportDataInput(BaseModel):
    data: str  # text of a JSON export
