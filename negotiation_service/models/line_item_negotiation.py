# negotiation_service/models/line_item_negotiation.py
import uuid
from sqlalchemy import Column, String, Text, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from negotiation_service.db.base_class import Base


class LineItemNegotiation(Base):
    __tablename__ = "line_item_negotiations"

    id = Column(
        String, primary_key=True, default=lambda: f"lin_{uuid.uuid4().hex[:12]}"
    )
    session_id = Column(
        String,
        ForeignKey("negotiation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_item_id = Column(String, nullable=False)  # stable ProposalLineItem.item_id
    adjustment_type = Column(String, nullable=False)  # price_change, flat_discount, percentage_discount
    adjustment_value = Column(Numeric(14, 2), nullable=False)
    original_price = Column(Numeric(14, 2), nullable=False)
    initiator_target_price = Column(Numeric(14, 2), nullable=False)
    initiator_note = Column(Text, nullable=True)

    # Filled in when the respondent replies
    respondent_response_price = Column(Numeric(14, 2), nullable=True)
    respondent_note = Column(Text, nullable=True)

    # Relationships
    session = relationship("NegotiationSession", back_populates="line_item_negotiations")
