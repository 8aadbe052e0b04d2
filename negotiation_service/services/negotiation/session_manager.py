"""
Negotiation session manager.

Every operation validates first, then writes, then commits once, and only
after the commit hands the transition's notify intents to ``notifier``.
A notifier that raises is logged and ignored; the transition stands.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from negotiation_service.core.config import settings
from negotiation_service.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
)
from negotiation_service.crud import (
    crud_negotiation_audit_log,
    crud_negotiation_comment,
    crud_negotiation_session,
    crud_proposal,
    crud_proposal_version,
)
from negotiation_service.models.line_item_negotiation import LineItemNegotiation
from negotiation_service.models.milestone_adjustment import MilestoneAdjustment
from negotiation_service.models.negotiation_comment import NegotiationComment
from negotiation_service.models.negotiation_session import NegotiationSession
from negotiation_service.models.proposal_version import ProposalVersion
from negotiation_service.schemas.negotiation import NegotiationAsk
from negotiation_service.schemas.proposal import FeeLineItemSnapshot, VersionSnapshot
from negotiation_service.services.negotiation.aggregation import (
    PercentageCheck,
    adjusted_line_item_price,
    line_item_total,
    reduce_by_percent,
    reduction_percent_for,
    to_float,
    to_money,
    validate_percentage_total,
)
from negotiation_service.services.negotiation.state_machine import (
    SessionEvent,
    SessionStatus,
    Transition,
    transition,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[str, dict], object]

AUTHOR_TYPES = {"initiator", "respondent"}
CLOSED_PROPOSAL_STATUSES = {"approved", "rejected", "withdrawn"}
ALREADY_IN_PROGRESS = "A negotiation is already in progress for this proposal."


@dataclass(frozen=True)
class ExistingSessionConflict:
    """Returned (not raised) when a proposal already has a live session."""

    proposal_id: str
    session_id: Optional[str]
    status: Optional[str]
    message: str = ALREADY_IN_PROGRESS


@dataclass(frozen=True)
class SessionOutcome:
    session: NegotiationSession
    transition: Transition
    version: Optional[ProposalVersion] = None

    @property
    def intents(self) -> tuple:
        return self.transition.intents


# ── Helpers ───────────────────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _emit(notifier: Optional[Notifier], outcome_transition: Transition) -> None:
    if notifier is None:
        return
    for intent in outcome_transition.of_kind("notify"):
        try:
            notifier(intent.name, intent.payload)
        except Exception:
            logger.error(
                f"Notification '{intent.name}' failed; transition already committed",
                exc_info=True,
            )


def _audit(
    db: Session,
    session: NegotiationSession,
    outcome_transition: Transition,
    user_id: str,
    extra: Optional[dict] = None,
) -> None:
    for intent in outcome_transition.of_kind("audit"):
        metadata = {
            k: v for k, v in intent.payload.items() if k not in ("old_state", "new_state")
        }
        if extra:
            metadata.update(extra)
        crud_negotiation_audit_log.create_audit_entry(
            db,
            proposal_id=session.proposal_id,
            session_id=session.id,
            user_id=user_id or "system",
            action=intent.name,
            old_state=intent.payload.get("old_state"),
            new_state=intent.payload.get("new_state"),
            metadata=metadata or None,
        )


def _get_session_or_404(db: Session, session_id: str) -> NegotiationSession:
    session = crud_negotiation_session.get(db, session_id)
    if not session:
        raise NotFoundError(f"Negotiation session {session_id} not found")
    return session


def _session_payload(session: NegotiationSession, **extra) -> dict:
    payload = {
        "session_id": session.id,
        "proposal_id": session.proposal_id,
        "project_id": session.project_id,
        "respondent_id": session.proposal.respondent_id if session.proposal else None,
        "target_total": to_float(session.target_total) if session.target_total is not None else None,
        "target_reduction_percent": session.target_reduction_percent,
    }
    payload.update(extra)
    return payload


def _release_proposal(session: NegotiationSession) -> None:
    proposal = session.proposal
    if proposal is not None and proposal.status == "negotiating":
        crud_proposal.transition_status(proposal, "submitted")


# ── Validation ────────────────────────────────────────────────────────

def validate_ask(ask: NegotiationAsk) -> None:
    if ask.target_total is not None and ask.target_reduction_percent is not None:
        raise ValidationError(
            "Provide either target_total or target_reduction_percent, not both."
        )
    has_content = (
        ask.target_total is not None
        or ask.target_reduction_percent is not None
        or ask.line_item_adjustments
        or ask.milestone_adjustments
        or (ask.message and ask.message.strip())
        or ask.comments
    )
    if not has_content:
        raise ValidationError(
            "A negotiation request needs a target, line-item or milestone "
            "adjustments, or a message."
        )


def validate_milestone_adjustments(
    milestones: Iterable,
    drafts: Iterable,
    tolerance: Optional[float] = None,
) -> PercentageCheck:
    """
    Check the union of untouched milestones (original percentage) and
    adjusted ones (target percentage) sums to 100.
    """
    tolerance = settings.PERCENTAGE_TOLERANCE if tolerance is None else tolerance
    milestones = list(milestones)
    drafts = list(drafts)
    known = {m.id: m for m in milestones}

    targets = {}
    for draft in drafts:
        if known and draft.milestone_id not in known:
            raise ValidationError(f"Unknown milestone '{draft.milestone_id}'.")
        if draft.milestone_id in targets:
            raise ValidationError(
                f"Milestone '{draft.milestone_id}' is adjusted more than once."
            )
        targets[draft.milestone_id] = draft.target_percentage

    percentages = [
        targets.get(m.id, m.percentage) for m in milestones
    ] + [pct for mid, pct in targets.items() if mid not in known]

    check = validate_percentage_total(percentages, tolerance)
    if not check:
        raise ValidationError(
            f"Milestone percentages must sum to 100% (currently {check.total:g}%).",
            current_sum=check.total,
            delta=check.delta,
        )
    return check


def _validate_line_item_adjustments(ask: NegotiationAsk, baseline: Optional[ProposalVersion]) -> dict:
    items = {item.item_id: item for item in (baseline.line_items if baseline else [])}
    seen = set()
    for adjustment in ask.line_item_adjustments:
        if adjustment.line_item_id not in items:
            raise ValidationError(
                f"Line item '{adjustment.line_item_id}' is not part of the negotiated version."
            )
        if adjustment.line_item_id in seen:
            raise ValidationError(
                f"Line item '{adjustment.line_item_id}' is adjusted more than once."
            )
        seen.add(adjustment.line_item_id)
    return items


# ── Operations ────────────────────────────────────────────────────────

def create_session(
    db: Session,
    *,
    proposal_id: str,
    ask: NegotiationAsk,
    initiator_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
    tolerance: Optional[float] = None,
    audit_action: Optional[str] = None,
    base_price=None,
):
    """
    Open a negotiation round on a proposal.

    Targets are derived from ``base_price`` when given (bulk asks quote the
    price the initiator saw), otherwise from the baseline version's price.

    Returns a SessionOutcome, or an ExistingSessionConflict when the proposal
    already has an open / awaiting_response session. Raises ValidationError
    before anything is written.
    """
    proposal = crud_proposal.get(db, proposal_id)
    if not proposal:
        raise NotFoundError(f"Proposal {proposal_id} not found")

    validate_ask(ask)
    if proposal.status in CLOSED_PROPOSAL_STATUSES:
        raise ConflictError(f"Cannot negotiate a proposal with status '{proposal.status}'.")

    if ask.milestone_adjustments:
        validate_milestone_adjustments(
            crud_proposal.list_milestones(db, proposal_id),
            ask.milestone_adjustments,
            tolerance,
        )

    # Fast path; the partial unique index below is the real guard.
    active = crud_negotiation_session.get_active_for_proposal(db, proposal_id)
    if active:
        return ExistingSessionConflict(
            proposal_id=proposal_id, session_id=active.id, status=active.status
        )

    if ask.negotiated_version_id:
        baseline = crud_proposal_version.get(db, ask.negotiated_version_id)
        if not baseline or baseline.proposal_id != proposal_id:
            raise ValidationError(
                f"Version {ask.negotiated_version_id} does not belong to proposal {proposal_id}."
            )
    else:
        baseline = crud_proposal_version.get_latest_version(db, proposal_id)

    baseline_items = _validate_line_item_adjustments(ask, baseline)

    if baseline is None:
        baseline = crud_proposal_version.ensure_baseline_version(db, proposal_id).version

    # One target is authoritative; the other is derived from the base price.
    base = baseline.price if base_price is None else base_price
    target_basis = None
    target_total = None
    target_reduction_percent = None
    if ask.target_total is not None:
        target_basis = "total"
        target_total = to_money(ask.target_total)
        target_reduction_percent = reduction_percent_for(base, ask.target_total)
    elif ask.target_reduction_percent is not None:
        target_basis = "percent"
        target_reduction_percent = ask.target_reduction_percent
        target_total = to_money(reduce_by_percent(base, ask.target_reduction_percent))

    session = NegotiationSession(
        proposal_id=proposal_id,
        project_id=proposal.project_id,
        initiator_id=initiator_id,
        status=SessionStatus.OPEN.value,
        target_basis=target_basis,
        target_total=target_total,
        target_reduction_percent=target_reduction_percent,
        global_comment=ask.message,
        negotiated_version_id=baseline.id,
    )
    for adjustment in ask.line_item_adjustments:
        original = line_item_total(baseline_items[adjustment.line_item_id])
        session.line_item_negotiations.append(LineItemNegotiation(
            line_item_id=adjustment.line_item_id,
            adjustment_type=adjustment.adjustment_type.value,
            adjustment_value=adjustment.adjustment_value,
            original_price=to_money(original),
            initiator_target_price=to_money(adjusted_line_item_price(
                original, adjustment.adjustment_type.value, adjustment.adjustment_value
            )),
            initiator_note=adjustment.initiator_note,
        ))

    milestones = {m.id: m for m in crud_proposal.list_milestones(db, proposal_id)}
    for draft in ask.milestone_adjustments:
        original = draft.original_percentage
        if original is None and draft.milestone_id in milestones:
            original = milestones[draft.milestone_id].percentage
        session.milestone_adjustments.append(MilestoneAdjustment(
            milestone_id=draft.milestone_id,
            original_percentage=original if original is not None else 0.0,
            target_percentage=draft.target_percentage,
            initiator_note=draft.initiator_note,
        ))

    db.add(session)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        active = crud_negotiation_session.get_active_for_proposal(db, proposal_id)
        logger.warning(f"Concurrent negotiation detected on proposal {proposal_id}")
        return ExistingSessionConflict(
            proposal_id=proposal_id,
            session_id=active.id if active else None,
            status=active.status if active else None,
        )

    for comment in ask.comments:
        session.comments.append(NegotiationComment(
            author_id=initiator_id,
            author_type="initiator",
            comment_type=comment.comment_type.value,
            entity_reference=comment.entity_reference,
            content=comment.content,
        ))

    dispatched = transition(
        session.status,
        SessionEvent.DISPATCH,
        payload=_session_payload(
            session,
            message=ask.message,
            negotiated_version_id=baseline.id,
            negotiated_version_number=baseline.version_number,
        ),
    )
    session.status = dispatched.to_status.value
    crud_proposal.transition_status(proposal, "negotiating")
    _audit(
        db,
        session,
        dispatched,
        initiator_id,
        extra={"action_source": audit_action} if audit_action else None,
    )

    db.commit()
    db.refresh(session)
    logger.info(f"Negotiation {session.id} opened on proposal {proposal_id}")

    _emit(notifier, dispatched)
    return SessionOutcome(session=session, transition=dispatched)


def _response_snapshot(
    session: NegotiationSession,
    baseline: ProposalVersion,
    snapshot: Optional[VersionSnapshot],
    line_item_responses: list,
) -> VersionSnapshot:
    if snapshot is not None and snapshot.line_items:
        items = [item.model_copy() for item in snapshot.line_items]
    else:
        items = [
            FeeLineItemSnapshot(
                item_id=line.item_id,
                description=line.description,
                quantity=line.quantity,
                unit=line.unit,
                unit_price=line.unit_price,
                total=line.total,
                is_optional=line.is_optional,
                charge_type=line.charge_type,
                duration=line.duration,
            )
            for line in baseline.line_items
        ]

    by_id = {item.item_id: item for item in items if item.item_id}
    negotiations = {n.line_item_id: n for n in session.line_item_negotiations}
    for response in line_item_responses:
        item = by_id.get(response.line_item_id)
        if item is None:
            raise ValidationError(
                f"Line item '{response.line_item_id}' is not part of the negotiated version."
            )
        # response_price is the new line total
        item.total = to_money(response.response_price)
        if item.quantity:
            item.unit_price = to_money(to_float(response.response_price) / item.quantity)
        else:
            item.unit_price = to_money(response.response_price)
        negotiation = negotiations.get(response.line_item_id)
        if negotiation is not None:
            negotiation.respondent_response_price = to_money(response.response_price)
            negotiation.respondent_note = response.note

    price = snapshot.price if snapshot is not None else None
    if price is None and not items:
        raise ValidationError("A response without line items must state a price.")

    source = snapshot or VersionSnapshot()
    return VersionSnapshot(
        price=price,
        timeline_days=source.timeline_days if source.timeline_days is not None else baseline.timeline_days,
        scope_text=source.scope_text if source.scope_text is not None else baseline.scope_text,
        terms=source.terms if source.terms is not None else baseline.terms,
        change_reason=source.change_reason or "negotiation response",
        line_items=items,
    )


def record_response(
    db: Session,
    *,
    session_id: str,
    snapshot: Optional[VersionSnapshot] = None,
    line_item_responses: Optional[list] = None,
    message: Optional[str] = None,
    respondent_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> SessionOutcome:
    """
    Respondent's reply: creates the next proposal version and moves the
    session to 'responded'. Raises VersionConflictError if a concurrent
    writer took the version number (nothing is kept; retry).
    """
    session = _get_session_or_404(db, session_id)
    transition(session.status, SessionEvent.RESPOND)

    baseline = session.negotiated_version or crud_proposal_version.get_latest_version(
        db, session.proposal_id
    )
    if baseline is None:
        raise ConflictError(f"Negotiation {session_id} has no baseline version.")

    new_snapshot = _response_snapshot(
        session, baseline, snapshot, list(line_item_responses or [])
    )
    version = crud_proposal_version.create_version(
        db, proposal=session.proposal, snapshot=new_snapshot, created_by=respondent_id
    )

    responded = transition(
        session.status,
        SessionEvent.RESPOND,
        payload=_session_payload(
            session,
            message=message,
            new_version_id=version.id,
            new_version_number=version.version_number,
            new_price=to_float(version.price),
            previous_price=to_float(baseline.price),
        ),
    )
    session.status = responded.to_status.value
    session.responded_at = _now()
    session.responded_version_id = version.id
    session.respondent_message = message
    _audit(db, session, responded, respondent_id)

    db.commit()
    db.refresh(session)
    db.refresh(version)
    logger.info(
        f"Negotiation {session.id} answered with version {version.version_number}"
    )

    _emit(notifier, responded)
    return SessionOutcome(session=session, transition=responded, version=version)


def resolve(
    db: Session,
    *,
    session_id: str,
    outcome: str,
    actor_id: Optional[str] = None,
    message: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> SessionOutcome:
    """
    Initiator accepts or rejects the replied version. On accept the proposal's
    current price / timeline / scope / terms mirror that version.
    """
    session = _get_session_or_404(db, session_id)
    transition(session.status, SessionEvent.RESOLVE, outcome=outcome)

    version = None
    proposal = session.proposal
    if outcome == "accepted":
        version = session.responded_version or crud_proposal_version.get_latest_version(
            db, session.proposal_id
        )
        if version is None:
            raise ConflictError(f"Negotiation {session_id} has no replied version to accept.")
        crud_proposal.apply_version(proposal, version)
        crud_proposal.transition_status(proposal, "approved")
    else:
        _release_proposal(session)

    resolved = transition(
        session.status,
        SessionEvent.RESOLVE,
        outcome=outcome,
        payload=_session_payload(
            session,
            message=message,
            version_id=version.id if version else session.responded_version_id,
        ),
    )
    session.status = resolved.to_status.value
    session.outcome = outcome
    session.resolved_at = _now()
    if message:
        session.comments.append(NegotiationComment(
            author_id=actor_id,
            author_type="initiator",
            comment_type="general",
            content=message,
        ))
    _audit(db, session, resolved, actor_id)

    db.commit()
    db.refresh(session)
    logger.info(f"Negotiation {session.id} resolved as {outcome}")

    _emit(notifier, resolved)
    return SessionOutcome(session=session, transition=resolved, version=version)


def cancel(
    db: Session,
    *,
    session_id: str,
    actor_type: str,
    actor_id: Optional[str] = None,
    reason: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> SessionOutcome:
    """Either party withdraws a round before the respondent replies."""
    if actor_type not in AUTHOR_TYPES:
        raise ValidationError(f"Unknown actor type '{actor_type}'.")
    session = _get_session_or_404(db, session_id)
    cancelled = transition(
        session.status,
        SessionEvent.CANCEL,
        payload=_session_payload(session, cancelled_by=actor_type, reason=reason),
    )
    session.status = cancelled.to_status.value
    session.resolved_at = _now()
    if reason:
        session.comments.append(NegotiationComment(
            author_id=actor_id,
            author_type=actor_type,
            comment_type="general",
            content=reason,
        ))
    _release_proposal(session)
    _audit(db, session, cancelled, actor_id)

    db.commit()
    db.refresh(session)
    logger.info(f"Negotiation {session.id} cancelled by {actor_type}")

    _emit(notifier, cancelled)
    return SessionOutcome(session=session, transition=cancelled)


def add_comment(
    db: Session,
    *,
    session_id: str,
    author_type: str,
    content: str,
    author_id: Optional[str] = None,
    comment_type: str = "general",
    entity_reference: Optional[str] = None,
) -> NegotiationComment:
    if author_type not in AUTHOR_TYPES:
        raise ValidationError(f"Unknown author type '{author_type}'.")
    if not content or not content.strip():
        raise ValidationError("Comment content is required.")
    _get_session_or_404(db, session_id)

    comment = crud_negotiation_comment.create(
        db,
        session_id=session_id,
        author_id=author_id,
        author_type=author_type,
        comment_type=comment_type,
        entity_reference=entity_reference,
        content=content,
    )
    db.commit()
    db.refresh(comment)
    return comment


def expire_stale_sessions(
    db: Session,
    *,
    now: Optional[datetime] = None,
    threshold_days: Optional[int] = None,
    notifier: Optional[Notifier] = None,
) -> List[NegotiationSession]:
    """Cancel every awaiting_response session older than the threshold."""
    now = now or _now()
    threshold_days = (
        settings.NEGOTIATION_STALE_THRESHOLD_DAYS if threshold_days is None else threshold_days
    )
    stale = crud_negotiation_session.list_stale(
        db, older_than=now - timedelta(days=threshold_days)
    )
    if not stale:
        logger.info("No stale negotiations found")
        return []

    transitions = []
    for session in stale:
        expired = transition(
            session.status,
            SessionEvent.EXPIRE,
            payload=_session_payload(
                session, threshold_days=threshold_days, expired_at=now.isoformat()
            ),
        )
        session.status = expired.to_status.value
        session.resolved_at = now
        _release_proposal(session)
        _audit(db, session, expired, "system")
        transitions.append(expired)

    db.commit()
    logger.info(f"Expired {len(stale)} stale negotiations")

    for expired in transitions:
        _emit(notifier, expired)
    return stale
