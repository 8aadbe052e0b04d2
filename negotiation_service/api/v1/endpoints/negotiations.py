# negotiation_service/api/v1/endpoints/negotiations.py
"""Negotiation rounds: request, respond, resolve, cancel, comment, bulk."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from kafka import KafkaProducer
from sqlalchemy.orm import Session

from negotiation_service.api import deps
from negotiation_service.api.v1.endpoints.proposals import get_proposal_or_404, party_for
from negotiation_service.core.exceptions import NegotiationError
from negotiation_service.core.kafka_producer import get_kafka_producer
from negotiation_service.crud import (
    crud_negotiation_audit_log,
    crud_negotiation_session,
)
from negotiation_service.db.session import get_db
from negotiation_service.schemas.bulk import BulkDispatchResponse, BulkNegotiationRequest
from negotiation_service.schemas.negotiation import (
    AuditLogEntry,
    CommentCreate,
    CommentResponse,
    ExistingSessionResponse,
    NegotiationAsk,
    NegotiationCancelRequest,
    NegotiationRespondRequest,
    NegotiationRespondResult,
    NegotiationResolveRequest,
    NegotiationSessionResponse,
)
from negotiation_service.schemas.token import TokenPayload
from negotiation_service.services.negotiation import bulk_dispatch, session_manager
from negotiation_service.services.negotiation.aggregation import to_float
from negotiation_service.utils.negotiation_notifications import make_notifier

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Negotiations"])


# ── Helpers ───────────────────────────────────────────────────────────

def _get_session_for_party(db: Session, session_id: str, current_user: TokenPayload):
    """Load a session and the caller's side of it; 404 / 403 otherwise."""
    session = crud_negotiation_session.get(db, session_id)
    if not session:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Negotiation not found")
    party = party_for(session.proposal, current_user)
    if party is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return session, party


def _require_party(party: str, expected: str):
    if party != expected:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Only the {expected} can do this",
        )


# ── Create ────────────────────────────────────────────────────────────

@router.post(
    "/proposals/{proposalId}/negotiations",
    response_model=NegotiationSessionResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ExistingSessionResponse}},
)
def create_negotiation(
    proposalId: str,
    body: NegotiationAsk,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    kafka_producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    """Initiator opens a negotiation round on a submitted proposal."""
    proposal = get_proposal_or_404(db, proposalId, current_user)
    _require_party(party_for(proposal, current_user), "initiator")

    try:
        result = session_manager.create_session(
            db,
            proposal_id=proposalId,
            ask=body,
            initiator_id=current_user.sub,
            notifier=make_notifier(kafka_producer),
        )
    except NegotiationError as e:
        raise deps.http_error_for(e)

    if isinstance(result, session_manager.ExistingSessionConflict):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"detail": result.message, "session_id": result.session_id},
        )
    return result.session


@router.post("/negotiations/bulk", response_model=BulkDispatchResponse)
def create_bulk_negotiations(
    body: BulkNegotiationRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    kafka_producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    """
    Send the same reduction ask to many proposals at once.

    Proposals that already have a negotiation in progress, or that belong to
    another organization, are reported in ``skipped``; the rest proceed.
    """
    result = bulk_dispatch.dispatch_bulk(
        db,
        proposals=body.proposals,
        reduction_type=body.reduction_type,
        value=body.value,
        message=body.message,
        initiator_id=current_user.sub,
        organization_id=current_user.org_id,
        notifier=make_notifier(kafka_producer),
    )
    return BulkDispatchResponse(
        success_count=result.success_count,
        skipped=[{"proposal_id": s.proposal_id, "reason": s.reason} for s in result.skipped],
        dispatched=[
            {
                "proposal_id": d.proposal_id,
                "session_id": d.session_id,
                "target_price": d.target_price,
            }
            for d in result.dispatched
        ],
    )


# ── Read ──────────────────────────────────────────────────────────────

@router.get("/negotiations/{sessionId}", response_model=NegotiationSessionResponse)
def get_negotiation(
    sessionId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    session, _ = _get_session_for_party(db, sessionId, current_user)
    return session


@router.get("/negotiations/{sessionId}/audit-log", response_model=List[AuditLogEntry])
def get_negotiation_audit_log(
    sessionId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _get_session_for_party(db, sessionId, current_user)
    return crud_negotiation_audit_log.get_audit_log_for_session(db, sessionId)


# ── Transitions ───────────────────────────────────────────────────────

@router.post("/negotiations/{sessionId}/respond", response_model=NegotiationRespondResult)
def respond_to_negotiation(
    sessionId: str,
    body: NegotiationRespondRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    kafka_producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    """Respondent answers with an updated offer, which becomes a new version."""
    session, party = _get_session_for_party(db, sessionId, current_user)
    _require_party(party, "respondent")

    try:
        result = session_manager.record_response(
            db,
            session_id=session.id,
            snapshot=body.snapshot,
            line_item_responses=body.line_item_responses,
            message=body.message,
            respondent_id=current_user.sub,
            notifier=make_notifier(kafka_producer),
        )
    except NegotiationError as e:
        raise deps.http_error_for(e)

    return NegotiationRespondResult(
        session=NegotiationSessionResponse.model_validate(result.session),
        new_version_id=result.version.id,
        new_version_number=result.version.version_number,
        new_price=to_float(result.version.price),
    )


@router.post("/negotiations/{sessionId}/resolve", response_model=NegotiationSessionResponse)
def resolve_negotiation(
    sessionId: str,
    body: NegotiationResolveRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    kafka_producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    """Initiator accepts or rejects the updated offer."""
    session, party = _get_session_for_party(db, sessionId, current_user)
    _require_party(party, "initiator")

    try:
        result = session_manager.resolve(
            db,
            session_id=session.id,
            outcome=body.outcome.value,
            actor_id=current_user.sub,
            message=body.message,
            notifier=make_notifier(kafka_producer),
        )
    except NegotiationError as e:
        raise deps.http_error_for(e)
    return result.session


@router.post("/negotiations/{sessionId}/cancel", response_model=NegotiationSessionResponse)
def cancel_negotiation(
    sessionId: str,
    body: NegotiationCancelRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
    kafka_producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    session, party = _get_session_for_party(db, sessionId, current_user)
    try:
        result = session_manager.cancel(
            db,
            session_id=session.id,
            actor_type=party,
            actor_id=current_user.sub,
            reason=body.reason,
            notifier=make_notifier(kafka_producer),
        )
    except NegotiationError as e:
        raise deps.http_error_for(e)
    return result.session


@router.post(
    "/negotiations/{sessionId}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_negotiation_comment(
    sessionId: str,
    body: CommentCreate,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    session, party = _get_session_for_party(db, sessionId, current_user)
    try:
        return session_manager.add_comment(
            db,
            session_id=session.id,
            author_type=party,
            author_id=current_user.sub,
            content=body.content,
            comment_type=body.comment_type.value,
            entity_reference=body.entity_reference,
        )
    except NegotiationError as e:
        raise deps.http_error_for(e)
