# negotiation_service/models/negotiation_comment.py
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from negotiation_service.db.base_class import Base


class NegotiationComment(Base):
    """Append-only discussion entry on a negotiation session."""

    __tablename__ = "negotiation_comments"

    id = Column(
        String, primary_key=True, default=lambda: f"ngc_{uuid.uuid4().hex[:12]}"
    )
    session_id = Column(
        String,
        ForeignKey("negotiation_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    author_id = Column(String, nullable=True)
    author_type = Column(String, nullable=False)  # "initiator" | "respondent"
    comment_type = Column(String, nullable=False, default="general")  # document, scope, milestone, payment, general
    entity_reference = Column(String, nullable=True)
    content = Column(Text, nullable=False)

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    session = relationship("NegotiationSession", back_populates="comments")
