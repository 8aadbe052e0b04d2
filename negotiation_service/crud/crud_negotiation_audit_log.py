# negotiation_service/crud/crud_negotiation_audit_log.py
"""
CRUD operations for the negotiation audit trail.
"""
from typing import Optional, List, Dict, Any
from sqlalchemy.orm import Session

from negotiation_service.models.negotiation_audit_log import NegotiationAuditLog


def create_audit_entry(
    db: Session,
    *,
    proposal_id: str,
    user_id: str,
    action: str,
    old_state: Optional[str] = None,
    new_state: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    session_id: Optional[str] = None,
) -> NegotiationAuditLog:
    """Add an audit entry to the current transaction."""
    entry = NegotiationAuditLog(
        proposal_id=proposal_id,
        session_id=session_id,
        user_id=user_id,
        action=action,
        old_state=old_state,
        new_state=new_state,
        action_metadata=metadata,
    )
    db.add(entry)
    db.flush()
    return entry


def get_audit_log_for_session(
    db: Session,
    session_id: str,
    limit: int = 100,
) -> List[NegotiationAuditLog]:
    return (
        db.query(NegotiationAuditLog)
        .filter(NegotiationAuditLog.session_id == session_id)
        .order_by(NegotiationAuditLog.created_at.desc())
        .limit(limit)
        .all()
    )
