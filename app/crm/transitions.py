"""
Status transitions for offers and tasks.

Despite the "optimistic" name this is confirm-then-apply: the partial update is
sent first and the view-local row is patched only after the backend confirms,
so a failure needs no rollback and the user never sees a transient wrong
status.

Each call moves through an explicit state machine:

    PENDING -> SUCCEEDED | FAILED | SUPERSEDED

SUPERSEDED covers overlapping calls for the same entity: every call takes a
per-entity generation number, and a confirmed response whose generation is no
longer the latest is not applied. Responses are therefore applied in issue
order rather than arrival order. Generations are only as long-lived as the
controller: the offer and task status endpoints build a fresh controller and
ViewState for every HTTP request, so within the running app a controller sees
one call and SUPERSEDED does not occur there. Overlapping clicks in the
browser are serialised by static/js/status.js, which disables a row's control
while its request is in flight.

Transitions are unconstrained: any status in the entity's set may follow any
other.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from app.crm.constants import OFFER_STATUSES, TASK_STATUSES, TaskStatus
from app.crm.errors import AuthorizationFailure, NotFound, RequestFailure

if TYPE_CHECKING:
    from app.crm.api_client import CrmApiClient

logger = logging.getLogger(__name__)


class TransitionState(str, Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SUPERSEDED = "SUPERSEDED"


class TransitionErrorKind(str, Enum):
    INVALID = "INVALID"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    SERVER = "SERVER"


@dataclass(frozen=True)
class TransitionError:
    kind: TransitionErrorKind
    message: str


@dataclass
class TransitionOutcome:
    entity_id: int
    requested_status: str
    state: TransitionState = TransitionState.PENDING
    generation: int = 0
    error: TransitionError | None = None
    # True only when a request was actually sent.
    sent: bool = False

    @property
    def ok(self) -> bool:
        return self.state is TransitionState.SUCCEEDED


class ViewState:
    """Disposable, view-local copy of entity rows keyed by id."""

    def __init__(self, rows: Iterable[dict[str, Any]] = ()):
        self.rows: list[dict[str, Any]] = [dict(r) for r in rows]

    def find(self, entity_id: int) -> dict[str, Any] | None:
        for row in self.rows:
            if _same_id(row.get("id"), entity_id):
                return row
        return None

    def status_of(self, entity_id: int) -> str | None:
        row = self.find(entity_id)
        return row.get("status") if row else None

    def patch_status(self, entity_id: int, status: str) -> None:
        """Replace the status field of one row; everything else is left as is."""
        self.rows = [
            {**row, "status": status} if _same_id(row.get("id"), entity_id) else row
            for row in self.rows
        ]


def _same_id(a: Any, b: Any) -> bool:
    try:
        return int(a) == int(b)
    except (TypeError, ValueError):
        return False


_MESSAGES = {
    "offer": {
        TransitionErrorKind.FORBIDDEN: "You do not have permission to change the status of offers.",
        TransitionErrorKind.NOT_FOUND: "The offer was not found. It may have been deleted.",
    },
    "task": {
        TransitionErrorKind.FORBIDDEN: "You do not have permission to change the status of tasks.",
        TransitionErrorKind.NOT_FOUND: "The task was not found. It may have been deleted.",
    },
}


class StatusTransitionController:
    def __init__(
        self,
        send: Callable[[int, str], Any],
        view: ViewState,
        *,
        entity: str,
        allowed: Iterable[str],
    ):
        self._send = send
        self.view = view
        self.entity = entity
        self.allowed = tuple(allowed)
        self._generations: dict[int, int] = {}

    def _next_generation(self, entity_id: int) -> int:
        gen = self._generations.get(entity_id, 0) + 1
        self._generations[entity_id] = gen
        return gen

    def _fail(self, outcome: TransitionOutcome, kind: TransitionErrorKind, message: str) -> TransitionOutcome:
        outcome.state = TransitionState.FAILED
        outcome.error = TransitionError(kind, message)
        return outcome

    def transition(self, entity_id: int, new_status: str) -> TransitionOutcome:
        entity_id = int(entity_id)
        outcome = TransitionOutcome(entity_id=entity_id, requested_status=new_status)

        if new_status not in self.allowed:
            return self._fail(
                outcome,
                TransitionErrorKind.INVALID,
                f"Invalid status. Must be one of: {', '.join(self.allowed)}",
            )

        if self.view.status_of(entity_id) == new_status:
            outcome.state = TransitionState.SUCCEEDED
            return outcome

        outcome.generation = self._next_generation(entity_id)
        outcome.sent = True
        try:
            self._send(entity_id, new_status)
        except AuthorizationFailure:
            return self._fail(outcome, TransitionErrorKind.FORBIDDEN, _MESSAGES[self.entity][TransitionErrorKind.FORBIDDEN])
        except NotFound:
            return self._fail(outcome, TransitionErrorKind.NOT_FOUND, _MESSAGES[self.entity][TransitionErrorKind.NOT_FOUND])
        except RequestFailure as e:
            detail = e.detail or "Server error"
            return self._fail(outcome, TransitionErrorKind.SERVER, f"Could not change the status: {detail}")

        if self._generations.get(entity_id) != outcome.generation:
            logger.info(
                "Discarding stale %s status response (id=%s status=%s generation=%s)",
                self.entity,
                entity_id,
                new_status,
                outcome.generation,
            )
            outcome.state = TransitionState.SUPERSEDED
            return outcome

        self.view.patch_status(entity_id, new_status)
        outcome.state = TransitionState.SUCCEEDED
        return outcome

    def toggle_completion(self, entity_id: int) -> TransitionOutcome:
        """DONE flips to TODO (not to any earlier IN_PROGRESS); anything else flips to DONE."""
        current = self.view.status_of(entity_id)
        new_status = TaskStatus.TODO.value if current == TaskStatus.DONE.value else TaskStatus.DONE.value
        return self.transition(entity_id, new_status)


def offer_controller(api: "CrmApiClient", view: ViewState) -> StatusTransitionController:
    return StatusTransitionController(api.update_offer_status, view, entity="offer", allowed=OFFER_STATUSES)


def task_controller(api: "CrmApiClient", view: ViewState) -> StatusTransitionController:
    return StatusTransitionController(api.update_task_status, view, entity="task", allowed=TASK_STATUSES)
