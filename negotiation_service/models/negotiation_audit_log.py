# negotiation_service/models/negotiation_audit_log.py
"""
Audit trail for negotiation state changes.
Tracks request, respond, accept, reject, cancel, expire and bulk_request.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, JSON, Index, text
from sqlalchemy.dialects.postgresql import JSONB
from negotiation_service.db.base_class import Base


class NegotiationAuditLog(Base):
    __tablename__ = "negotiation_audit_log"

    id = Column(
        String, primary_key=True, default=lambda: f"nal_{uuid.uuid4().hex[:12]}"
    )
    # No FKs: entries outlive the sessions they describe.
    session_id = Column(String, nullable=True, index=True)
    proposal_id = Column(String, nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)  # "system" for scheduled actions

    action = Column(String(50), nullable=False, index=True)
    old_state = Column(String(50), nullable=True)
    new_state = Column(String(50), nullable=True)
    # 'metadata' is reserved on declarative classes
    action_metadata = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_negotiation_audit_proposal_created_desc", "proposal_id", text("created_at DESC")),
    )
