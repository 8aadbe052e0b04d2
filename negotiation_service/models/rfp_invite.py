# negotiation_service/models/rfp_invite.py
import uuid
from sqlalchemy import Column, String, DateTime, Index
from sqlalchemy.sql import func
from negotiation_service.db.base_class import Base


class RFPInvite(Base):
    __tablename__ = "rfp_invites"

    id = Column(
        String, primary_key=True, default=lambda: f"inv_{uuid.uuid4().hex[:12]}"
    )
    rfp_id = Column(String, nullable=False, index=True)
    advisor_id = Column(String, nullable=False, index=True)

    # pending, sent, opened, in_progress, submitted, declined, expired
    status = Column(String, nullable=False, default="pending")
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_rfp_invites_rfp_advisor", "rfp_id", "advisor_id"),
    )
