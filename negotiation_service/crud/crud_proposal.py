# negotiation_service/crud/crud_proposal.py
import logging
from typing import Optional, List
from datetime import datetime, timezone
from sqlalchemy.orm import Session, selectinload

from negotiation_service.crud import crud_proposal_version, crud_rfp_invite
from negotiation_service.models.proposal import Proposal
from negotiation_service.models.proposal_version import ProposalVersion
from negotiation_service.models.milestone_payment import MilestonePayment
from negotiation_service.schemas.proposal import ProposalSubmit, VersionSnapshot

logger = logging.getLogger(__name__)

# Valid status transitions
VALID_TRANSITIONS = {
    "submitted": {"negotiating", "approved", "rejected", "withdrawn"},
    "negotiating": {"submitted", "approved", "rejected", "withdrawn"},
    # approved / rejected / withdrawn are terminal
}


def get(db: Session, proposal_id: str) -> Optional[Proposal]:
    return (
        db.query(Proposal)
        .options(selectinload(Proposal.milestones))
        .filter(Proposal.id == proposal_id)
        .first()
    )


def list_milestones(db: Session, proposal_id: str) -> List[MilestonePayment]:
    return (
        db.query(MilestonePayment)
        .filter(MilestonePayment.proposal_id == proposal_id)
        .order_by(MilestonePayment.display_order.asc())
        .all()
    )


def transition_status(proposal: Proposal, new_status: str) -> bool:
    """Validate and apply a status transition. Returns True if valid."""
    if proposal.status == new_status:
        return True
    allowed = VALID_TRANSITIONS.get(proposal.status, set())
    if new_status not in allowed:
        return False
    proposal.status = new_status
    return True


def apply_version(proposal: Proposal, version: ProposalVersion) -> Proposal:
    """Mirror an accepted version onto the proposal's current terms."""
    proposal.price = version.price
    proposal.timeline_days = version.timeline_days
    proposal.scope_text = version.scope_text
    proposal.terms = version.terms
    proposal.current_version = version.version_number
    return proposal


def submit(
    db: Session,
    *,
    project_id: str,
    org_id: str,
    data: ProposalSubmit,
) -> Proposal:
    """
    Create a proposal with its milestones and version 1, then advance the
    originating RFP invite to 'submitted'.
    """
    proposal = Proposal(
        project_id=project_id,
        organization_id=org_id,
        respondent_id=data.respondent_id,
        respondent_name=data.respondent_name,
        rfp_invite_id=data.rfp_invite_id,
        price=data.price,
        timeline_days=data.timeline_days,
        scope_text=data.scope_text,
        terms=data.terms,
        declaration_text=data.declaration_text,
        signed_by=data.signed_by,
        signed_at=datetime.now(timezone.utc) if data.signed_by else None,
        status="submitted",
        current_version=0,
    )
    for position, milestone in enumerate(data.milestones):
        proposal.milestones.append(MilestonePayment(
            description=milestone.description,
            percentage=milestone.percentage,
            display_order=position,
        ))
    db.add(proposal)
    db.flush()

    crud_proposal_version.create_version(
        db,
        proposal=proposal,
        snapshot=VersionSnapshot(
            price=data.price,
            timeline_days=data.timeline_days,
            scope_text=data.scope_text,
            terms=data.terms,
            change_reason=crud_proposal_version.BASELINE_CHANGE_REASON,
            line_items=data.line_items,
        ),
        created_by=data.respondent_id,
    )

    invite = crud_rfp_invite.mark_submitted(
        db,
        invite_id=data.rfp_invite_id,
        advisor_id=data.respondent_id,
        rfp_id=data.rfp_id,
    )
    if invite is not None and proposal.rfp_invite_id is None:
        proposal.rfp_invite_id = invite.id

    db.commit()
    db.refresh(proposal)
    logger.info(f"Proposal {proposal.id} submitted for project {project_id}")
    return proposal
