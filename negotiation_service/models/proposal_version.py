# negotiation_service/models/proposal_version.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Text, Integer, DateTime, Numeric, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from negotiation_service.db.base_class import Base


class ProposalVersion(Base):
    """Immutable snapshot of a proposal. Corrections produce a new row."""

    __tablename__ = "proposal_versions"

    id = Column(
        String, primary_key=True, default=lambda: f"prv_{uuid.uuid4().hex[:12]}"
    )
    proposal_id = Column(
        String, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version_number = Column(Integer, nullable=False)

    price = Column(Numeric(14, 2), nullable=False)
    timeline_days = Column(Integer, nullable=True)
    scope_text = Column(Text, nullable=True)
    terms = Column(Text, nullable=True)
    change_reason = Column(String, nullable=True)
    created_by = Column(String, nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    proposal = relationship("Proposal", back_populates="versions")
    line_items = relationship(
        "ProposalLineItem",
        back_populates="version",
        order_by="ProposalLineItem.display_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint(
            "proposal_id", "version_number", name="uq_proposal_version_number"
        ),
    )
