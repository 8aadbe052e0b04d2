# negotiation_service/crud/crud_negotiation_comment.py
from typing import Optional
from sqlalchemy.orm import Session

from negotiation_service.models.negotiation_comment import NegotiationComment


def create(
    db: Session,
    *,
    session_id: str,
    author_type: str,
    content: str,
    author_id: Optional[str] = None,
    comment_type: str = "general",
    entity_reference: Optional[str] = None,
) -> NegotiationComment:
    """Append a comment and flush. Comments are never edited or deleted."""
    comment = NegotiationComment(
        session_id=session_id,
        author_id=author_id,
        author_type=author_type,
        comment_type=comment_type,
        entity_reference=entity_reference,
        content=content,
    )
    db.add(comment)
    db.flush()
    return comment
