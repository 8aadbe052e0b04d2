# negotiation_service/api/v1/endpoints/proposals.py
"""Proposal submission, versions, totals and negotiation history."""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from sqlalchemy.orm import Session

from negotiation_service.api import deps
from negotiation_service.db.session import get_db
from negotiation_service.core.exceptions import NegotiationError
from negotiation_service.crud import crud_proposal, crud_proposal_version
from negotiation_service.schemas.proposal import (
    BaselineVersionResponse,
    ItemDiffResponse,
    MilestoneAmount,
    MilestoneCheckRequest,
    PercentageCheckResponse,
    ProposalResponse,
    ProposalSubmit,
    ProposalVersionResponse,
    TotalsResponse,
    VersionDiffResponse,
)
from negotiation_service.schemas.timeline import TimelineResponse, VersionStepsResponse
from negotiation_service.schemas.token import TokenPayload
from negotiation_service.services.negotiation import aggregation, timeline

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Proposals"])


# ── Helpers ───────────────────────────────────────────────────────────

def party_for(proposal, current_user: TokenPayload) -> Optional[str]:
    """'initiator', 'respondent' or None for the caller's side of a proposal."""
    if current_user.org_id and current_user.org_id == proposal.organization_id:
        return "initiator"
    if current_user.org_id and current_user.org_id == proposal.respondent_id:
        return "respondent"
    return None


def get_proposal_or_404(db: Session, proposal_id: str, current_user: TokenPayload):
    proposal = crud_proposal.get(db, proposal_id)
    if not proposal:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")
    if party_for(proposal, current_user) is None:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return proposal


# ── Submission ────────────────────────────────────────────────────────

@router.post(
    "/projects/{projectId}/proposals",
    response_model=ProposalResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit_proposal(
    projectId: str,
    orgId: str,
    body: ProposalSubmit,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Respondent submits a proposal to the initiator org ``orgId``."""
    if current_user.org_id != body.respondent_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
    return crud_proposal.submit(db, project_id=projectId, org_id=orgId, data=body)


@router.get("/proposals/{proposalId}", response_model=ProposalResponse)
def get_proposal(
    proposalId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return get_proposal_or_404(db, proposalId, current_user)


# ── Versions ──────────────────────────────────────────────────────────

@router.get("/proposals/{proposalId}/versions", response_model=List[ProposalVersionResponse])
def list_versions(
    proposalId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    get_proposal_or_404(db, proposalId, current_user)
    return crud_proposal_version.list_for_proposal(db, proposalId)


@router.get("/proposals/{proposalId}/versions/latest", response_model=ProposalVersionResponse)
def get_latest_version(
    proposalId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    get_proposal_or_404(db, proposalId, current_user)
    version = crud_proposal_version.get_latest_version(db, proposalId)
    if version is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Proposal has no versions yet"
        )
    return version


@router.post("/proposals/{proposalId}/versions/baseline", response_model=BaselineVersionResponse)
def ensure_baseline_version(
    proposalId: str,
    response: Response,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Create version 1 from the proposal's own fields if it has none."""
    get_proposal_or_404(db, proposalId, current_user)
    try:
        result = crud_proposal_version.ensure_baseline_version(db, proposalId)
    except NegotiationError as e:
        raise deps.http_error_for(e)
    if result.created:
        response.status_code = status.HTTP_201_CREATED
    return {"created": result.created, "version": result.version}


@router.get("/proposals/{proposalId}/versions/compare", response_model=VersionDiffResponse)
def compare_versions(
    proposalId: str,
    from_version: int = Query(..., alias="from", ge=1),
    to_version: int = Query(..., alias="to", ge=1),
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    get_proposal_or_404(db, proposalId, current_user)
    old = crud_proposal_version.get_by_number(db, proposalId, from_version)
    new = crud_proposal_version.get_by_number(db, proposalId, to_version)
    if old is None or new is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Version not found")

    diff = aggregation.diff_versions(old, new)
    return VersionDiffResponse(
        from_version=from_version,
        to_version=to_version,
        price_delta=diff.price_delta,
        percent_delta=diff.percent_delta,
        items=[
            ItemDiffResponse(
                change=d.change,
                item_id=d.item_id,
                description=d.description,
                old_total=d.old_total,
                new_total=d.new_total,
                delta=d.delta,
            )
            for d in diff.item_diffs
        ],
    )


# ── Totals & milestones ───────────────────────────────────────────────

@router.get("/proposals/{proposalId}/totals", response_model=TotalsResponse)
def get_totals(
    proposalId: str,
    version: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Mandatory / optional sums for a version plus milestone amounts."""
    proposal = get_proposal_or_404(db, proposalId, current_user)
    if version is not None:
        selected = crud_proposal_version.get_by_number(db, proposalId, version)
        if selected is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Version not found")
    else:
        selected = crud_proposal_version.get_latest_version(db, proposalId)

    totals = aggregation.summarize_line_items(selected.line_items if selected else [])
    base_total = selected.price if selected else proposal.price
    milestones = crud_proposal.list_milestones(db, proposalId)
    check = aggregation.validate_percentage_total(milestones)

    return TotalsResponse(
        version_number=selected.version_number if selected else None,
        mandatory_total=totals.mandatory,
        optional_total=totals.optional,
        grand_total=totals.grand_total,
        milestones=[
            MilestoneAmount(
                milestone_id=m.id,
                description=m.description,
                percentage=m.percentage,
                amount=aggregation.milestone_amount(m.percentage, base_total),
            )
            for m in milestones
        ],
        milestones_valid=check.valid,
        milestones_delta=check.delta,
    )


@router.post("/proposals/{proposalId}/milestones/validate", response_model=PercentageCheckResponse)
def validate_milestones(
    proposalId: str,
    body: MilestoneCheckRequest,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Live check for a milestone editor; reports how far off 100% the draft is."""
    get_proposal_or_404(db, proposalId, current_user)
    check = aggregation.validate_percentage_total(body.milestones)
    return PercentageCheckResponse(valid=check.valid, total=check.total, delta=check.delta)


# ── History ───────────────────────────────────────────────────────────

@router.get("/proposals/{proposalId}/timeline", response_model=TimelineResponse)
def get_timeline(
    proposalId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    get_proposal_or_404(db, proposalId, current_user)
    return TimelineResponse(
        proposal_id=proposalId, steps=timeline.build_timeline(db, proposalId)
    )


@router.get("/proposals/{proposalId}/timeline/versions", response_model=VersionStepsResponse)
def get_version_steps(
    proposalId: str,
    db: Session = Depends(get_db),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    get_proposal_or_404(db, proposalId, current_user)
    return VersionStepsResponse(
        proposal_id=proposalId, steps=timeline.build_version_steps(db, proposalId)
    )
