# negotiation_service/models/milestone_payment.py
import uuid
from sqlalchemy import Column, String, Integer, Float, ForeignKey
from sqlalchemy.orm import relationship
from negotiation_service.db.base_class import Base


class MilestonePayment(Base):
    __tablename__ = "milestone_payments"

    id = Column(
        String, primary_key=True, default=lambda: f"mst_{uuid.uuid4().hex[:12]}"
    )
    proposal_id = Column(
        String, ForeignKey("proposals.id", ondelete="CASCADE"), nullable=False, index=True
    )
    description = Column(String, nullable=False)  # payment trigger
    percentage = Column(Float, nullable=False)  # 0-100, set sums to 100
    display_order = Column(Integer, nullable=False, default=0)

    # Relationships
    proposal = relationship("Proposal", back_populates="milestones")
