"""MCP server: liftlog.* session tools and read-only resources over the session bundle."""

from __future__ import annotations

import json
from typing import Any, Callable, Optional

from fastmcp import FastMCP
from loguru import logger

from .config import Settings, configure_logging
from .conflict import ConflictResolver
from .duration import format_ago, format_duration, format_rest_time, group_last_set_at, now_ms
from .errors import LiftLogError, StoreLoadError
from .lifecycle import SessionController
from .models import (
    AddExerciseInput,
    DeleteSetInput,
    ExerciseActionInput,
    ExerciseHistoryInput,
    FinalizeInput,
    GroupActionInput,
    GroupEditInput,
    ImportDataInput,
    LogSetInput,
    LogSupersetSetInput,
    RenameSessionInput,
    ReorderExerciseInput,
    ResolveConflictInput,
    SaveTemplateInput,
    SessionRefInput,
    SessionRequest,
    SwapExerciseInput,
    TemplateRefInput,
)
from .storage import SessionStore

_settings = Settings.from_env()
configure_logging(_settings.log_level)
_store = SessionStore(_settings.db_path)
_resolver: Optional[ConflictResolver] = None

mcp = FastMCP(name="liftlog")


def _get_resolver() -> ConflictResolver:
    """Load the bundle on first use. StoreLoadError propagates so tools can report recovery data."""
    global _resolver
    if _resolver is None:
        controller = SessionController.from_store(_store)
        _resolver = ConflictResolver(controller, priority=_settings.conflict_priority)
    return _resolver


def _controller() -> SessionController:
    return _get_resolver().controller


def _error(exc: Exception) -> dict:
    out: dict[str, Any] = {"status": "error", "error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, StoreLoadError):
        out["raw_data"] = exc.raw_data
    return out


def _run(op: Callable[[], dict], *also: type[Exception]) -> dict:
    """
    Tool error boundary. Engine errors, including a store that cannot be loaded on first use,
    come back as an error payload; `also` names extra exception types reported the same way.
    """
    try:
        return op()
    except (LiftLogError, *also) as e:
        return _error(e)


def _session_result(session: Any) -> dict:
    if session is None:
        return {"status": "not_found"}
    return {"status": "ok", "session": session.model_dump(mode="json")}


def _found(ok: bool) -> dict:
    return {"status": "ok" if ok else "not_found"}


@mcp.tool(name="liftlog.start_session")
def liftlog_start_session(payload: dict) -> dict:
    """
    Request a new session: { kind: workout|single_exercise|ad_hoc, seed: { origin, ... } }.
    Returns status=started with the session, or status=conflict naming the blocking session;
    answer a conflict with liftlog.resolve_conflict.
    """
    request = SessionRequest.model_validate(payload)
    return _run(lambda: _get_resolver().request(request).model_dump(mode="json"))


@mcp.tool(name="liftlog.resolve_conflict")
def liftlog_resolve_conflict(payload: dict) -> dict:
    """
    Answer a pending conflict: { choice: resume|discard|save_and_continue|cancel }.
    If the pending request can no longer be created, nothing is discarded or saved.
    """
    inp = ResolveConflictInput.model_validate(payload)
    return _run(lambda: getattr(_get_resolver(), inp.choice)().model_dump(mode="json"), RuntimeError)


@mcp.tool(name="liftlog.add_exercise")
def liftlog_add_exercise(payload: dict) -> dict:
    inp = AddExerciseInput.model_validate(payload)
    return _run(lambda: _session_result(_controller().add_exercise(inp.session_id, inp.name)))


@mcp.tool(name="liftlog.log_set")
def liftlog_log_set(payload: dict) -> dict:
    """Log one set: { session_id, instance_id, weight, reps, rest_duration? }."""
    inp = LogSetInput.model_validate(payload)
    return _run(lambda: _session_result(
        _controller().log_set(inp.session_id, inp.instance_id, inp.weight, inp.reps, inp.rest_duration)
    ))


@mcp.tool(name="liftlog.log_superset_set")
def liftlog_log_superset_set(payload: dict) -> dict:
    """Log one round of a superset: { session_id, entries: [{ instance_id, weight, reps }] }."""
    inp = LogSupersetSetInput.model_validate(payload)
    return _run(lambda: _session_result(
        _controller().log_superset_set(inp.session_id, inp.entries, inp.superset_set_id, inp.rest_duration)
    ))


@mcp.tool(name="liftlog.delete_set")
def liftlog_delete_set(payload: dict) -> dict:
    inp = DeleteSetInput.model_validate(payload)
    return _run(lambda: _session_result(_controller().delete_set(inp.session_id, inp.instance_id, inp.set_id)))


_EXERCISE_ACTIONS = {
    "complete": "complete_exercise",
    "skip": "skip_exercise",
    "skip_in_group": "skip_exercise_in_group",
    "unskip_in_group": "unskip_exercise_in_group",
    "defer": "defer_exercise",
    "delete": "delete_exercise",
}

_GROUP_ACTIONS = {
    "complete": "complete_group",
    "skip": "skip_group",
    "defer": "defer_group",
    "delete": "delete_group",
    "ungroup_all": "ungroup_all",
}


@mcp.tool(name="liftlog.exercise_action")
def liftlog_exercise_action(payload: dict) -> dict:
    """{ session_id, instance_id, action: complete|skip|skip_in_group|unskip_in_group|defer|delete }."""
    inp = ExerciseActionInput.model_validate(payload)
    return _run(lambda: _session_result(
        getattr(_controller(), _EXERCISE_ACTIONS[inp.action])(inp.session_id, inp.instance_id)
    ))


@mcp.tool(name="liftlog.reorder_exercise")
def liftlog_reorder_exercise(payload: dict) -> dict:
    """Move an exercise to { index }. A grouped exercise moves with its whole group."""
    inp = ReorderExerciseInput.model_validate(payload)
    return _run(lambda: _session_result(
        _controller().reorder_exercise(inp.session_id, inp.instance_id, inp.index)
    ))


@mcp.tool(name="liftlog.group_action")
def liftlog_group_action(payload: dict) -> dict:
    """{ session_id, group_id, action: complete|skip|defer|delete|ungroup_all }."""
    inp = GroupActionInput.model_validate(payload)
    return _run(lambda: _session_result(
        getattr(_controller(), _GROUP_ACTIONS[inp.action])(inp.session_id, inp.group_id)
    ))


def _edit_group(inp: GroupEditInput) -> dict:
    c = _controller()
    if inp.action == "create":
        session = c.create_group(inp.session_id, inp.instance_ids)
    elif inp.action == "add" and inp.group_id and inp.instance_id:
        session = c.add_to_group(inp.session_id, inp.group_id, inp.instance_id)
    elif inp.action == "merge" and inp.group_id and inp.other_group_id:
        session = c.merge_groups(inp.session_id, inp.group_id, inp.other_group_id)
    elif inp.action == "ungroup" and inp.instance_id:
        session = c.ungroup(inp.session_id, inp.instance_id)
    elif inp.action == "swap" and inp.group_id and inp.instance_id and inp.replacement_id:
        session = c.swap_group_member(inp.session_id, inp.group_id, inp.instance_id, inp.replacement_id)
    elif inp.action == "swap" and inp.group_id and inp.instance_id and inp.replacement_name:
        session = c.replace_group_member(inp.session_id, inp.group_id, inp.instance_id, inp.replacement_name)
    else:
        return {"status": "error", "error": "InvalidInput", "message": f"missing fields for {inp.action}"}
    return _session_result(session)


@mcp.tool(name="liftlog.edit_group")
def liftlog_edit_group(payload: dict) -> dict:
    """
    Change group structure. action=create (instance_ids), add (group_id, instance_id),
    merge (group_id, other_group_id), ungroup (instance_id), swap (group_id, instance_id and
    replacement_id or replacement_name). Swap preconditions that fail return an error.
    """
    inp = GroupEditInput.model_validate(payload)
    return _run(lambda: _edit_group(inp))


@mcp.tool(name="liftlog.swap_exercise")
def liftlog_swap_exercise(payload: dict) -> dict:
    inp = SwapExerciseInput.model_validate(payload)
    return _run(lambda: _session_result(_controller().swap_exercise(inp.session_id, inp.instance_id, inp.new_name)))


@mcp.tool(name="liftlog.rename_session")
def liftlog_rename_session(payload: dict) -> dict:
    inp = RenameSessionInput.model_validate(payload)
    return _run(lambda: _session_result(_controller().rename_session(inp.session_id, inp.name)), ValueError)


@mcp.tool(name="liftlog.convert_to_workout")
def liftlog_convert_to_workout(payload: dict) -> dict:
    inp = SessionRefInput.model_validate(payload)
    return _run(lambda: _session_result(_controller().convert_to_workout(inp.session_id)))


def _finalize(inp: FinalizeInput) -> dict:
    result = _controller().finalize(inp.session_id, inp.confirm_partial)
    if result is None:
        return {"status": "not_found"}
    return result.model_dump(mode="json")


@mcp.tool(name="liftlog.finalize")
def liftlog_finalize(payload: dict) -> dict:
    """
    Finish a session: { session_id, confirm_partial? }. Returns outcome completed, discarded
    (nothing was logged) or confirmation_required (resend with confirm_partial=true to drop
    the listed exercises).
    """
    inp = FinalizeInput.model_validate(payload)
    return _run(lambda: _finalize(inp))


@mcp.tool(name="liftlog.discard")
def liftlog_discard(payload: dict) -> dict:
    inp = SessionRefInput.model_validate(payload)
    return _run(lambda: _found(_controller().discard(inp.session_id)))


@mcp.tool(name="liftlog.save_template")
def liftlog_save_template(payload: dict) -> dict:
    inp = SaveTemplateInput.model_validate(payload)
    return _run(
        lambda: {"status": "ok", "template": _controller().save_template(inp.name, inp.exercise_names).model_dump(mode="json")},
        ValueError,
    )


@mcp.tool(name="liftlog.delete_template")
def liftlog_delete_template(payload: dict) -> dict:
    inp = TemplateRefInput.model_validate(payload)
    return _run(lambda: _found(_controller().delete_template(inp.template_id)))


def _exercise_history(inp: ExerciseHistoryInput) -> dict:
    c = _controller()
    if not inp.name:
        index = c.exercise_history()
        return {"status": "ok", "exercises": {name: e.model_dump(mode="json") for name, e in index.items()}}
    last = c.last_session_for_exercise(inp.name)
    return {
        "status": "ok",
        "name": inp.name,
        "last_session": last.model_dump(mode="json") if last else None,
        "recent_sessions": [s.model_dump(mode="json") for s in c.recent_sessions_for_exercise(inp.name, inp.limit)],
        "session_ids": [s.id for s in c.find_sessions_by_exercise(inp.name)],
    }


@mcp.tool(name="liftlog.exercise_history")
def liftlog_exercise_history(payload: dict) -> dict:
    """
    Finished-session history per exercise. { } returns every exercise with its last-performed time;
    { name, limit? } returns that exercise's last session, its recent sessions (newest first) and
    the ids of finished sessions whose exercise names contain `name`.
    """
    inp = ExerciseHistoryInput.model_validate(payload)
    return _run(lambda: _exercise_history(inp))


def _import_data(inp: ImportDataInput) -> dict:
    global _resolver
    bundle = _store.import_data(inp.data)
    _resolver = None
    return {"status": "ok", "workouts": len(bundle.workouts), "templates": len(bundle.templates)}


@mcp.tool(name="liftlog.import_data")
def liftlog_import_data(payload: dict) -> dict:
    """Replace all stored data with a JSON export: { data: "<export text>" }. Invalid input stores nothing."""
    inp = ImportDataInput.model_validate(payload)
    return _run(lambda: _import_data(inp), ValueError)


def _session_view(session_id: str) -> dict:
    c = _controller()
    session = c.get_session(session_id)
    if session is None:
        return {"error": "session not found", "session_id": session_id}
    out = session.model_dump(mode="json")
    now = now_ms()
    by_id = {ex.instance_id: ex for ex in session.exercises}
    items = []
    for item in c.session_items(session_id):
        row = item.model_dump(mode="json")
        last = group_last_set_at(by_id[i].last_set_at for i in item.exercise_ids)
        row["last_set_ago"] = format_ago(last, now) if last else None
        items.append(row)
    out["items"] = items
    out["elapsed"] = format_duration(c.elapsed(session_id, now))
    out["rest"] = format_rest_time(c.rest_elapsed(session_id, now))
    return out


@mcp.resource("session://{session_id}", mime_type="application/json")
def resource_session(session_id: str) -> str:
    """Read-only: one session (active or history) with its display items."""
    return json.dumps(_run(lambda: _session_view(session_id)), indent=2)


def _active_sessions() -> dict:
    c = _controller()
    active = [*c.in_progress(), *([c.ad_hoc_session()] if c.ad_hoc_session() else [])]
    return {"sessions": [{"id": s.id, "kind": s.kind, "name": s.name} for s in active]}


@mcp.resource("sessions://active", mime_type="application/json")
def resource_active_sessions() -> str:
    """Read-only: ids and kinds of everything in progress."""
    return json.dumps(_run(_active_sessions), indent=2)


@mcp.resource("bundle://export", mime_type="application/json")
def resource_export() -> str:
    """Read-only: full JSON export. Falls back to the raw stored payload if it cannot be loaded."""
    return _store.export_data()


def run() -> None:
    """Run the MCP server with stdio transport (default)."""
    logger.info("liftlog server starting (db={})", _settings.db_path)
    mcp.run()
