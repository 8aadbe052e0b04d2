# negotiation_service/models/milestone_adjustment.py
import uuid
from sqlalchemy import Column, String, Text, Float, ForeignKey
from sqlalchemy.orm import relationship
from negotiation_service.db.base_class import Base


class MilestoneAdjustment(Base):
    __tablename__ = "milestone_adjustments"

    id = Column(
        String, primary_key=True, default=lambda: f"mad_{uuid.uuid4().hex[:12]}"
    )
    session_id = Column(
        String,
        ForeignKey("negotiation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    milestone_id = Column(String, nullable=False)
    original_percentage = Column(Float, nullable=False)
    target_percentage = Column(Float, nullable=False)
    initiator_note = Column(Text, nullable=True)

    # Relationships
    session = relationship("NegotiationSession", back_populates="milestone_adjustments")
