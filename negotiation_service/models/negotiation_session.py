# negotiation_service/models/negotiation_session.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Text, Float, DateTime, Numeric, ForeignKey, Index, text
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base

ACTIVE_SESSION_FILTER = "status IN ('open', 'awaiting_response')"


class NegotiationSession(Base):
    __tablename__ = "negotiation_sessions"

    id = Column(
        String, primary_key=True, default=lambda: f"ngs_{uuid.uuid4().hex[:12]}"
    )
    proposal_id = Column(
        String, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id = Column(String, nullable=False, index=True)
    initiator_id = Column(String, nullable=True)

    # open, awaiting_response, responded, resolved, cancelled
    status = Column(String, nullable=False, default="open")
    outcome = Column(String, nullable=True)  # accepted | rejected, once resolved

    # "total" or "percent": which of the two targets the initiator set
    target_basis = Column(String, nullable=True)
    target_total = Column(Numeric(14, 2), nullable=True)
    target_reduction_percent = Column(Float, nullable=True)

    global_comment = Column(Text, nullable=True)
    respondent_message = Column(Text, nullable=True)

    negotiated_version_id = Column(
        String, ForeignKey("proposal_versions.id", ondelete="SET NULL"), nullable=True
    )
    responded_version_id = Column(
        String, ForeignKey("proposal_versions.id", ondelete="SET NULL"), nullable=True
    )

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    responded_at = Column(DateTime(timezone=True), nullable=True)
    resolved_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    proposal = relationship("Proposal", back_populates="negotiation_sessions")
    negotiated_version = relationship(
        "ProposalVersion", foreign_keys=[negotiated_version_id]
    )
    responded_version = relationship(
        "ProposalVersion", foreign_keys=[responded_version_id]
    )
    line_item_negotiations = relationship(
        "LineItemNegotiation", back_populates="session", cascade="all, delete-orphan"
    )
    milestone_adjustments = relationship(
        "MilestoneAdjustment", back_populates="session", cascade="all, delete-orphan"
    )
    comments = relationship(
        "NegotiationComment",
        back_populates="session",
        order_by="NegotiationComment.created_at",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        # At most one non-terminal session per proposal.
        Index(
            "uq_negotiation_sessions_active_proposal",
            "proposal_id",
            unique=True,
            postgresql_where=text(ACTIVE_SESSION_FILTER),
            sqlite_where=text(ACTIVE_SESSION_FILTER),
        ),
        Index("ix_negotiation_sessions_status_created", "status", "created_at"),
    )
