# negotiation_service/crud/crud_negotiation_session.py
from typing import Optional, List
from datetime import datetime
from sqlalchemy.orm import Session, selectinload

from negotiation_service.models.negotiation_session import NegotiationSession
from negotiation_service.services.negotiation.state_machine import ACTIVE_STATUSES


def get(db: Session, session_id: str) -> Optional[NegotiationSession]:
    return (
        db.query(NegotiationSession)
        .options(
            selectinload(NegotiationSession.line_item_negotiations),
            selectinload(NegotiationSession.milestone_adjustments),
            selectinload(NegotiationSession.comments),
        )
        .filter(NegotiationSession.id == session_id)
        .first()
    )


def get_active_for_proposal(db: Session, proposal_id: str) -> Optional[NegotiationSession]:
    """The open or awaiting_response session of a proposal, if any."""
    return (
        db.query(NegotiationSession)
        .filter(
            NegotiationSession.proposal_id == proposal_id,
            NegotiationSession.status.in_(ACTIVE_STATUSES),
        )
        .first()
    )


def list_for_proposal(db: Session, proposal_id: str) -> List[NegotiationSession]:
    return (
        db.query(NegotiationSession)
        .options(selectinload(NegotiationSession.comments))
        .filter(NegotiationSession.proposal_id == proposal_id)
        .order_by(NegotiationSession.created_at.asc())
        .all()
    )


def list_stale(db: Session, *, older_than: datetime) -> List[NegotiationSession]:
    return (
        db.query(NegotiationSession)
        .filter(
            NegotiationSession.status == "awaiting_response",
            NegotiationSession.created_at < older_than,
        )
        .order_by(NegotiationSession.created_at.asc())
        .all()
    )
