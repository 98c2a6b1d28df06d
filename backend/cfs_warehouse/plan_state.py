"""Status rules for receiving and destuffing plans.

Container level::

    RECEIVING   WAITING -> RECEIVED | REJECTED | DEFERRED
    DESTUFFING  WAITING -> IN_PROGRESS -> DONE | REJECTED | DEFERRED

Plan level, only while the plan is IN_PROGRESS:

    cancel        all containers WAITING             -> SCHEDULED
    mark_pending  some processed, some still WAITING -> PENDING
                  (receiving: also nothing WAITING but some
                  REJECTED or DEFERRED)
    mark_done     every container in the done status -> DONE

Nothing here touches the database. Transitions return the next status for
the caller to persist, or the error that blocks it.
"""

from collections import Counter
from dataclasses import asdict, dataclass, replace
from typing import Iterable

from .errors import GuardError, TransitionError

PLAN_KIND_RECEIVING = "RECEIVING"
PLAN_KIND_DESTUFFING = "DESTUFFING"
PLAN_KINDS = (PLAN_KIND_RECEIVING, PLAN_KIND_DESTUFFING)

PLAN_PENDING = "PENDING"
PLAN_SCHEDULED = "SCHEDULED"
PLAN_IN_PROGRESS = "IN_PROGRESS"
PLAN_DONE = "DONE"
PLAN_CANCELLED = "CANCELLED"
PLAN_STATUSES = (PLAN_PENDING, PLAN_SCHEDULED, PLAN_IN_PROGRESS, PLAN_DONE, PLAN_CANCELLED)

WAITING = "WAITING"
IN_PROGRESS = "IN_PROGRESS"
RECEIVED = "RECEIVED"
REJECTED = "REJECTED"
DEFERRED = "DEFERRED"
DONE = "DONE"
CONTAINER_STATUSES = (WAITING, RECEIVED, REJECTED, DEFERRED, IN_PROGRESS, DONE)

RECEIVED_NORMAL = "NORMAL"
RECEIVED_PROBLEM = "PROBLEM"
RECEIVED_ADJUSTED_DOCUMENT = "ADJUSTED_DOCUMENT"
RECEIVED_TYPES = (RECEIVED_NORMAL, RECEIVED_PROBLEM, RECEIVED_ADJUSTED_DOCUMENT)

CONTAINER_TRANSITIONS = {
    PLAN_KIND_RECEIVING: {
        WAITING: {RECEIVED, REJECTED, DEFERRED},
    },
    PLAN_KIND_DESTUFFING: {
        WAITING: {IN_PROGRESS},
        IN_PROGRESS: {DONE, REJECTED, DEFERRED},
    },
}

DONE_STATUS = {
    PLAN_KIND_RECEIVING: RECEIVED,
    PLAN_KIND_DESTUFFING: DONE,
}

STARTABLE_PLAN_STATUSES = (PLAN_PENDING, PLAN_SCHEDULED)

ACTION_CANCEL = "cancel"
ACTION_MARK_DONE = "mark_done"
ACTION_MARK_PENDING = "mark_pending"


def _check_kind(kind: str):
    if kind not in PLAN_KINDS:
        raise ValueError(f"unknown plan kind {kind!r}")


def allowed_transitions(kind: str, current: str) -> set[str]:
    _check_kind(kind)
    return set(CONTAINER_TRANSITIONS[kind].get(current, ()))


def transition_container(kind: str, current: str, target: str) -> str | TransitionError:
    if target not in allowed_transitions(kind, current):
        return TransitionError(f"{kind.lower()} container cannot move from {current} to {target}")
    return target


# Guards. Each takes the statuses of every container on the plan.


def can_cancel(statuses: Iterable[str]) -> bool:
    statuses = list(statuses)
    return bool(statuses) and all(s == WAITING for s in statuses)


def can_mark_done(statuses: Iterable[str], kind: str = PLAN_KIND_DESTUFFING) -> bool:
    _check_kind(kind)
    statuses = list(statuses)
    done = DONE_STATUS[kind]
    return bool(statuses) and all(s == done for s in statuses)


def can_mark_pending(statuses: Iterable[str], kind: str = PLAN_KIND_DESTUFFING) -> bool:
    _check_kind(kind)
    statuses = list(statuses)
    if any(s != WAITING for s in statuses) and any(s == WAITING for s in statuses):
        return True
    # rejected and deferred are terminal for receiving containers
    return kind == PLAN_KIND_RECEIVING and should_enable_pending(_status_summary(statuses))


@dataclass(frozen=True)
class PlanActions:
    can_cancel: bool
    can_mark_done: bool
    can_mark_pending: bool

    def to_dict(self) -> dict:
        return asdict(self)


def plan_actions(statuses: Iterable[str], kind: str) -> PlanActions:
    statuses = list(statuses)
    return PlanActions(
        can_cancel=can_cancel(statuses),
        can_mark_done=can_mark_done(statuses, kind),
        can_mark_pending=can_mark_pending(statuses, kind),
    )


# Plan transitions.


def start(plan_status: str) -> str | TransitionError:
    if plan_status not in STARTABLE_PLAN_STATUSES:
        return TransitionError(f"plan in status {plan_status} cannot be started")
    return PLAN_IN_PROGRESS


# action -> (guard attribute on PlanActions, next plan status, refusal reason)
_ACTIONS = {
    ACTION_CANCEL: ("can_cancel", PLAN_SCHEDULED, "some containers were already processed"),
    ACTION_MARK_DONE: ("can_mark_done", PLAN_DONE, "not every container is done"),
    ACTION_MARK_PENDING: ("can_mark_pending", PLAN_PENDING, "plan is not partially processed"),
}


def apply_action(action: str, plan_status: str, statuses: Iterable[str], kind: str) -> str | GuardError:
    """Next plan status for ``action``, or the guard that refused it."""
    if action not in _ACTIONS:
        raise ValueError(f"unknown plan action {action!r}")
    guard, next_status, reason = _ACTIONS[action]
    if plan_status != PLAN_IN_PROGRESS:
        return GuardError(f"{action} needs an IN_PROGRESS plan, plan is {plan_status}")
    if not getattr(plan_actions(statuses, kind), guard):
        return GuardError(f"cannot {action.replace('_', ' ')}: {reason}")
    return next_status


def cancel(plan_status: str, statuses: Iterable[str], kind: str) -> str | GuardError:
    return apply_action(ACTION_CANCEL, plan_status, statuses, kind)


def mark_done(plan_status: str, statuses: Iterable[str], kind: str) -> str | GuardError:
    return apply_action(ACTION_MARK_DONE, plan_status, statuses, kind)


def mark_pending(plan_status: str, statuses: Iterable[str], kind: str) -> str | GuardError:
    return apply_action(ACTION_MARK_PENDING, plan_status, statuses, kind)


# Receiving execution helpers


@dataclass(frozen=True)
class ExecutionSummary:
    total: int = 0
    waiting: int = 0
    received: int = 0
    rejected: int = 0
    deferred: int = 0
    problem: int = 0
    adjusted: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def partition_containers(containers: Iterable) -> dict[str, list]:
    """Split receiving containers into ``waiting`` (incl. deferred) and ``processed``."""
    waiting, processed = [], []
    for container in containers:
        if container.status in (WAITING, DEFERRED):
            waiting.append(container)
        else:
            processed.append(container)
    return {"waiting": waiting, "processed": processed}


def _status_summary(statuses: list[str]) -> ExecutionSummary:
    counts = Counter(statuses)
    return ExecutionSummary(
        total=len(statuses),
        waiting=counts[WAITING],
        received=counts[RECEIVED],
        rejected=counts[REJECTED],
        deferred=counts[DEFERRED],
    )


def calculate_execution_summary(containers: Iterable) -> ExecutionSummary:
    containers = list(containers)
    received = [c for c in containers if c.status == RECEIVED]
    return replace(
        _status_summary([c.status for c in containers]),
        problem=sum(1 for c in received if c.received_type == RECEIVED_PROBLEM),
        adjusted=sum(1 for c in received if c.received_type == RECEIVED_ADJUSTED_DOCUMENT),
    )


def should_enable_done(summary: ExecutionSummary) -> bool:
    return (
        summary.total > 0
        and summary.waiting == 0
        and summary.rejected == 0
        and summary.deferred == 0
    )


def should_enable_pending(summary: ExecutionSummary) -> bool:
    return summary.waiting == 0 and (summary.rejected > 0 or summary.deferred > 0)


def note_preview(note: str | None = None, limit: int = 80) -> str:
    text = " ".join((note or "").split())
    if len(text) <= limit:
        return text
    return text[: limit - 1].rstrip() + "…"
