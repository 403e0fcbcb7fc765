"""
Active-session conflict resolution.

At most one workout or single-exercise session may be in progress. A start request that
would break that is parked until the user picks resume, discard, save-and-continue or cancel.
"""

from __future__ import annotations

from typing import Literal, Optional

from loguru import logger

from .config import ConflictPriority
from .errors import LiftLogError
from .lifecycle import AnySession, SessionController
from .models import (
    RequestOutcome,
    ResolutionResult,
    SessionConflict,
    SessionRequest,
)

ConflictState = Literal["idle", "awaiting_choice"]


class ConflictResolver:
    """Two-state machine (idle / awaiting_choice) in front of SessionController.start_session."""

    def __init__(self, controller: SessionController, priority: ConflictPriority = "single_exercise_first"):
        self.controller = controller
        self.priority = priority
        self.state: ConflictState = "idle"
        self.pending: Optional[SessionRequest] = None
        self.conflict: Optional[SessionConflict] = None

    def _existing(self) -> list[AnySession]:
        single = self.controller.incomplete_exercise_session()
        workout = self.controller.active_workout()
        ordered = [single, workout] if self.priority == "single_exercise_first" else [workout, single]
        return [s for s in ordered if s is not None]

    def detect(self, request: SessionRequest) -> Optional[SessionConflict]:
        """Ad-hoc sessions never conflict here; their own single-slot rule is enforced on start."""
        if request.kind == "ad_hoc":
            return None
        existing = self._existing()
        if not existing:
            return None
        return SessionConflict(
            existing_kind=existing[0].kind,
            existing_session_id=existing[0].id,
            request=request,
        )

    def request(self, request: SessionRequest | dict) -> RequestOutcome:
        if isinstance(request, dict):
            request = SessionRequest.model_validate(request)
        if self.state == "awaiting_choice":
            logger.info("new start request replaces pending {} request", self.pending.kind if self.pending else None)
            self._reset()
        conflict = self.detect(request)
        if conflict is None:
            session = self.controller.start_session(request.kind, request.seed)
            return RequestOutcome(status="started", session=session)
        self.state = "awaiting_choice"
        self.pending = request
        self.conflict = conflict
        logger.info(
            "start of {} blocked by {} session {}",
            request.kind, conflict.existing_kind, conflict.existing_session_id,
        )
        return RequestOutcome(status="conflict", conflict=conflict)

    def _require_pending(self) -> SessionConflict:
        if self.state != "awaiting_choice" or self.conflict is None:
            raise RuntimeError("no pending session request to resolve")
        return self.conflict

    def _reset(self) -> None:
        self.state = "idle"
        self.pending = None
        self.conflict = None

    def resume(self) -> ResolutionResult:
        """Keep the existing session and drop the pending request."""
        conflict = self._require_pending()
        self._reset()
        return ResolutionResult(action="resumed", session=self.controller.get_session(conflict.existing_session_id))

    def _buildable_request(self) -> SessionRequest:
        """
        The pending request, checked to be creatable before any existing session is touched.
        On failure the error propagates and the resolver stays awaiting a choice.
        """
        request = self._require_pending().request
        try:
            self.controller.validate_seed(request.kind, request.seed)
        except LiftLogError as exc:
            logger.warning("pending {} request cannot be created: {}", request.kind, exc)
            raise
        return request

    def discard(self) -> ResolutionResult:
        """Discard every in-progress session, then run the pending request."""
        request = self._buildable_request()
        for s in self._existing():
            self.controller.discard(s.id)
        self._reset()
        session = self.controller.start_session(request.kind, request.seed)
        return ResolutionResult(action="discarded", session=session)

    def save_and_continue(self) -> ResolutionResult:
        """Auto-finalize every in-progress session (never prompting), then run the pending request."""
        request = self._buildable_request()
        finalized = []
        for s in self._existing():
            result = self.controller.auto_finalize(s.id)
            if result is not None:
                finalized.append(result)
        self._reset()
        session = self.controller.start_session(request.kind, request.seed)
        return ResolutionResult(action="saved", session=session, finalized=finalized)

    def cancel(self) -> ResolutionResult:
        self._require_pending()
        self._reset()
        return ResolutionResult(action="cancelled")
