"""
Read-only reconstruction of a proposal's negotiation history.

build_timeline      - every session event and comment, oldest first
build_version_steps - compact original_offer / change_request / updated_offer
                      sequence for display
"""

from datetime import datetime, timezone
from typing import List

from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import NotFoundError
from negotiation_service.crud import (
    crud_negotiation_session,
    crud_proposal,
    crud_proposal_version,
)
from negotiation_service.schemas.timeline import (
    StepView,
    TimelineStep,
    TimelineStepKind,
    VersionStep,
    VersionStepKind,
)
from negotiation_service.services.negotiation.aggregation import to_float

# Tie-break for events sharing a timestamp within one session
_STEP_RANK = {
    TimelineStepKind.SESSION_CREATED: 0,
    TimelineStepKind.RESPONSE_SUBMITTED: 1,
    TimelineStepKind.COMMENT: 2,
    TimelineStepKind.RESOLVED: 3,
    TimelineStepKind.CANCELLED: 3,
}


def _aware(value: datetime) -> datetime:
    # Some drivers hand back naive UTC datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _money(value) -> str:
    return f"{to_float(value):,.2f}"


def _request_label(session) -> str:
    if session.target_total is not None and session.target_reduction_percent is not None:
        return (
            f"Negotiation requested: target {_money(session.target_total)} "
            f"(-{session.target_reduction_percent:g}%)"
        )
    if session.target_total is not None:
        return f"Negotiation requested: target {_money(session.target_total)}"
    if session.target_reduction_percent is not None:
        return f"Negotiation requested: {session.target_reduction_percent:g}% reduction"
    return "Negotiation requested"


def session_steps(session) -> List[TimelineStep]:
    """All steps of one session, unsorted."""
    base = dict(session_id=session.id, session_status=session.status)
    target_total = to_float(session.target_total) if session.target_total is not None else None

    steps = [TimelineStep(
        kind=TimelineStepKind.SESSION_CREATED,
        timestamp=_aware(session.created_at),
        label=_request_label(session),
        author_type="initiator",
        message=session.global_comment,
        target_total=target_total,
        target_reduction_percent=session.target_reduction_percent,
        version_id=session.negotiated_version_id,
        **base,
    )]

    if session.responded_at is not None:
        steps.append(TimelineStep(
            kind=TimelineStepKind.RESPONSE_SUBMITTED,
            timestamp=_aware(session.responded_at),
            label="Updated offer submitted",
            author_type="respondent",
            message=session.respondent_message,
            version_id=session.responded_version_id,
            **base,
        ))

    if session.resolved_at is not None:
        if session.status == "cancelled":
            steps.append(TimelineStep(
                kind=TimelineStepKind.CANCELLED,
                timestamp=_aware(session.resolved_at),
                label="Negotiation cancelled",
                **base,
            ))
        else:
            label = {
                "accepted": "Updated offer accepted",
                "rejected": "Updated offer rejected",
            }.get(session.outcome, "Negotiation resolved")
            steps.append(TimelineStep(
                kind=TimelineStepKind.RESOLVED,
                timestamp=_aware(session.resolved_at),
                label=label,
                author_type="initiator",
                outcome=session.outcome,
                version_id=session.responded_version_id,
                **base,
            ))

    for comment in session.comments:
        who = "initiator" if comment.author_type == "initiator" else "respondent"
        steps.append(TimelineStep(
            kind=TimelineStepKind.COMMENT,
            timestamp=_aware(comment.created_at),
            label=f"Comment from {who}",
            author_type=comment.author_type,
            message=comment.content,
            comment_id=comment.id,
            **base,
        ))

    return steps


def merge_steps(sessions) -> List[TimelineStep]:
    steps = []
    for session in sessions:
        steps.extend(session_steps(session))
    # sorted() is stable, so equal keys keep per-session order.
    return sorted(steps, key=lambda s: (s.timestamp, _STEP_RANK[s.kind]))


def build_timeline(db: Session, proposal_id: str) -> List[TimelineStep]:
    if not crud_proposal.get(db, proposal_id):
        raise NotFoundError(f"Proposal {proposal_id} not found")
    sessions = crud_negotiation_session.list_for_proposal(db, proposal_id)
    return merge_steps(sessions)


# ── Compact version steps ─────────────────────────────────────────────

def _version_label(version) -> str:
    return f"Updated offer v{version.version_number}: {_money(version.price)}"


def pair_version_steps(proposal, versions, sessions) -> List[VersionStep]:
    """
    Pair the Nth change request with the Nth version after version 1, by
    creation order. Legacy sessions do not always link forward to the version
    they produced, so no foreign key is used. Unequal counts leave trailing
    requests or versions unpaired.
    """
    versions = sorted(versions, key=lambda v: v.version_number)
    sessions = sorted(sessions, key=lambda s: _aware(s.created_at))

    steps = []
    original = versions[0] if versions and versions[0].version_number == 1 else None
    updates = versions[1:] if original is not None else versions

    if original is not None:
        steps.append(VersionStep(
            kind=VersionStepKind.ORIGINAL_OFFER,
            date=_aware(original.created_at),
            label=f"Original offer: {_money(original.price)}",
            version=1,
            status="submitted",
            view=StepView(type="version", id=original.id),
        ))
    elif proposal is not None:
        steps.append(VersionStep(
            kind=VersionStepKind.ORIGINAL_OFFER,
            date=_aware(proposal.submitted_at),
            label=f"Original offer: {_money(proposal.price)}",
            status="submitted",
            view=StepView(type="proposal", id=proposal.id),
        ))

    for index in range(max(len(sessions), len(updates))):
        session = sessions[index] if index < len(sessions) else None
        version = updates[index] if index < len(updates) else None

        if session is not None:
            steps.append(VersionStep(
                kind=VersionStepKind.CHANGE_REQUEST,
                date=_aware(session.created_at),
                label=_request_label(session),
                status="negotiation_requested",
                view=StepView(type="negotiation_session", id=session.id),
            ))
        if version is not None:
            accepted = (
                session is not None
                and session.status == "resolved"
                and session.outcome == "accepted"
            )
            steps.append(VersionStep(
                kind=VersionStepKind.UPDATED_OFFER,
                date=_aware(version.created_at),
                label=_version_label(version),
                version=version.version_number,
                status="accepted" if accepted else "resubmitted",
                view=StepView(type="version", id=version.id),
            ))

    return steps


def build_version_steps(db: Session, proposal_id: str) -> List[VersionStep]:
    proposal = crud_proposal.get(db, proposal_id)
    if not proposal:
        raise NotFoundError(f"Proposal {proposal_id} not found")
    versions = crud_proposal_version.list_for_proposal(db, proposal_id)
    sessions = crud_negotiation_session.list_for_proposal(db, proposal_id)
    return pair_version_steps(proposal, versions, sessions)
