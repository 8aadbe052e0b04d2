# negotiation_service/models/proposal.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, Integer, DateTime, Numeric, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base


class Proposal(Base):
    __tablename__ = "proposals"

    id = Column(
        String, primary_key=True, default=lambda: f"prp_{uuid.uuid4().hex[:12]}"
    )
    project_id = Column(String, nullable=False, index=True)
    organization_id = Column(String, nullable=False, index=True)  # initiator's org
    respondent_id = Column(String, nullable=False, index=True)  # respondent's org
    respondent_name = Column(String, nullable=True)
    rfp_invite_id = Column(String, nullable=True)  # originating invite, if any

    # Current terms. Changed only by accepting a negotiated version.
    price = Column(Numeric(14, 2), nullable=False)
    timeline_days = Column(Integer, nullable=True)
    scope_text = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    current_version = Column(Integer, nullable=False, default=0)

    # submitted, negotiating, approved, rejected, withdrawn
    status = Column(String, nullable=False, default="submitted")

    # Declaration / signature
    declaration_text = Column(Text, nullable=True)
    signed_by = Column(String, nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)

    submitted_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    versions = relationship(
        "ProposalVersion",
        back_populates="proposal",
        order_by="ProposalVersion.version_number",
    )
    milestones = relationship(
        "MilestonePayment",
        back_populates="proposal",
        order_by="MilestonePayment.display_order",
    )
    negotiation_sessions = relationship(
        "NegotiationSession",
        back_populates="proposal",
        order_by="NegotiationSession.created_at",
    )

    __table_args__ = (
        Index("ix_proposals_project_respondent", "project_id", "respondent_id"),
    )
