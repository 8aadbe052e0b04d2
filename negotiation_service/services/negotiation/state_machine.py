"""
Negotiation session lifecycle as pure transitions.

    open --dispatch--> awaiting_response --respond--> responded --resolve--> resolved
      |                     |
      +------cancel---------+---cancel/expire--> cancelled

``transition`` never touches the database. It returns the new status plus
the side effects the caller has to carry out (persist, audit, notify).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from negotiation_service.core.exceptions import InvalidTransitionError


class SessionStatus(str, Enum):
    OPEN = "open"
    AWAITING_RESPONSE = "awaiting_response"
    RESPONDED = "responded"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"


class SessionEvent(str, Enum):
    DISPATCH = "dispatch"
    RESPOND = "respond"
    RESOLVE = "resolve"
    CANCEL = "cancel"
    EXPIRE = "expire"


ACTIVE_STATUSES = {SessionStatus.OPEN.value, SessionStatus.AWAITING_RESPONSE.value}

VALID_TRANSITIONS = {
    (SessionStatus.OPEN, SessionEvent.DISPATCH): SessionStatus.AWAITING_RESPONSE,
    (SessionStatus.OPEN, SessionEvent.CANCEL): SessionStatus.CANCELLED,
    (SessionStatus.AWAITING_RESPONSE, SessionEvent.RESPOND): SessionStatus.RESPONDED,
    (SessionStatus.AWAITING_RESPONSE, SessionEvent.CANCEL): SessionStatus.CANCELLED,
    (SessionStatus.AWAITING_RESPONSE, SessionEvent.EXPIRE): SessionStatus.CANCELLED,
    (SessionStatus.RESPONDED, SessionEvent.RESOLVE): SessionStatus.RESOLVED,
    # Terminal states have no outgoing transitions
}

NOTIFY_EVENTS = {
    SessionEvent.DISPATCH: "negotiation_requested",
    SessionEvent.RESPOND: "negotiation_responded",
    SessionEvent.RESOLVE: "negotiation_resolved",
    SessionEvent.CANCEL: "negotiation_cancelled",
    SessionEvent.EXPIRE: "negotiation_expired",
}

AUDIT_ACTIONS = {
    SessionEvent.DISPATCH: "request",
    SessionEvent.RESPOND: "respond",
    SessionEvent.CANCEL: "cancel",
    SessionEvent.EXPIRE: "expire",
}


@dataclass(frozen=True)
class Intent:
    kind: str  # persist, audit, notify
    name: str
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    event: SessionEvent
    from_status: SessionStatus
    to_status: SessionStatus
    intents: tuple = ()

    def of_kind(self, kind: str) -> list:
        return [intent for intent in self.intents if intent.kind == kind]


def next_status(status, event) -> Optional[SessionStatus]:
    return VALID_TRANSITIONS.get((SessionStatus(status), SessionEvent(event)))


def can_transition(status, event) -> bool:
    return next_status(status, event) is not None


def transition(status, event, *, outcome: Optional[str] = None, payload: Optional[dict] = None) -> Transition:
    """
    Validate ``event`` against ``status`` and describe its effects.
    Raises InvalidTransitionError for anything not in VALID_TRANSITIONS.
    """
    current = SessionStatus(status)
    event = SessionEvent(event)
    target = VALID_TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(current.value, None, event.value)

    payload = dict(payload or {})
    payload.update({"old_state": current.value, "new_state": target.value})

    if event == SessionEvent.RESOLVE:
        if outcome not in ("accepted", "rejected"):
            raise ValueError("resolve requires outcome 'accepted' or 'rejected'")
        payload["outcome"] = outcome
        audit_action = "accept" if outcome == "accepted" else "reject"
    else:
        audit_action = AUDIT_ACTIONS[event]

    intents = (
        Intent(kind="persist", name=target.value, payload=payload),
        Intent(kind="audit", name=audit_action, payload=payload),
        Intent(kind="notify", name=NOTIFY_EVENTS[event], payload=payload),
    )
    return Transition(
        event=event, from_status=current, to_status=target, intents=intents
    )
