# negotiation_service/models/proposal_line_item.py
import uuid
from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Numeric, ForeignKey
)
from sqlalchemy.orm import relationship
from negotiation_service.db.base_class import Base


class ProposalLineItem(Base):
    """Fee line item, snapshotted per version."""

    __tablename__ = "proposal_line_items"

    id = Column(
        String, primary_key=True, default=lambda: f"pli_{uuid.uuid4().hex[:12]}"
    )
    # Stable across versions; rows themselves are re-created for every version.
    item_id = Column(String, nullable=False, default=lambda: f"itm_{uuid.uuid4().hex[:12]}")
    proposal_id = Column(
        String, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    proposal_version_id = Column(
        String,
        ForeignKey("proposal_versions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    version_number = Column(Integer, nullable=False)

    description = Column(String, nullable=False)
    quantity = Column(Float, nullable=False, default=1)
    unit = Column(String, nullable=True)
    unit_price = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=True)
    is_optional = Column(Boolean, nullable=False, default=False)
    charge_type = Column(String, nullable=False, default="one_time")  # one_time, monthly, hourly
    duration = Column(Integer, nullable=True)  # recurrence count for recurring charges
    display_order = Column(Integer, nullable=False, default=0)

    # Relationships
    version = relationship("ProposalVersion", back_populates="line_items")
