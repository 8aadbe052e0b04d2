# negotiation_service/crud/crud_rfp_invite.py
import logging
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session

from negotiation_service.models.rfp_invite import RFPInvite

logger = logging.getLogger(__name__)

# Statuses an invite may still be submitted from
SUBMITTABLE_STATUSES = {"pending", "sent", "opened", "in_progress"}


def get(db: Session, invite_id: str) -> Optional[RFPInvite]:
    return db.query(RFPInvite).filter(RFPInvite.id == invite_id).first()


def mark_submitted(
    db: Session,
    *,
    invite_id: Optional[str] = None,
    advisor_id: Optional[str] = None,
    rfp_id: Optional[str] = None,
) -> Optional[RFPInvite]:
    """
    Advance exactly one invite to 'submitted'. Keyed by invite id whenever
    one is known; the (advisor_id, rfp_id) match is a fallback for callers
    without an invite id and only touches a single still-open invite, so
    sibling invites are never updated collaterally. Does not commit.
    """
    if invite_id:
        invite = get(db, invite_id)
    elif advisor_id and rfp_id:
        invite = (
            db.query(RFPInvite)
            .filter(
                RFPInvite.advisor_id == advisor_id,
                RFPInvite.rfp_id == rfp_id,
                RFPInvite.status.in_(SUBMITTABLE_STATUSES),
            )
            .order_by(RFPInvite.created_at.desc())
            .first()
        )
    else:
        return None

    if invite is None:
        logger.warning(
            f"No RFP invite to mark submitted (invite_id={invite_id}, "
            f"advisor_id={advisor_id}, rfp_id={rfp_id})"
        )
        return None

    if invite.status == "submitted":
        return invite
    if invite.status not in SUBMITTABLE_STATUSES:
        logger.warning(
            f"RFP invite {invite.id} is '{invite.status}'; not marking submitted"
        )
        return invite

    invite.status = "submitted"
    invite.submitted_at = datetime.now(timezone.utc)
    db.flush()
    return invite
