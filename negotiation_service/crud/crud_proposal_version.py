# negotiation_service/crud/crud_proposal_version.py
"""
Proposal & version store.

Versions are immutable and numbered 1..N per proposal with no gaps. The
(proposal_id, version_number) unique constraint is the authoritative guard
against concurrent writers; losing that race raises VersionConflictError
and the caller retries with a fresh max.
"""
import logging
from dataclasses import dataclass
from typing import Optional, List

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from negotiation_service.core.exceptions import NotFoundError, VersionConflictError
from negotiation_service.models.proposal import Proposal
from negotiation_service.models.proposal_version import ProposalVersion
from negotiation_service.models.proposal_line_item import ProposalLineItem
from negotiation_service.schemas.proposal import VersionSnapshot
from negotiation_service.services.negotiation.aggregation import (
    line_item_total,
    sum_line_items,
    to_money,
)

logger = logging.getLogger(__name__)

BASELINE_CHANGE_REASON = "initial version"


@dataclass(frozen=True)
class BaselineVersion:
    version: ProposalVersion
    created: bool


def get(db: Session, version_id: str) -> Optional[ProposalVersion]:
    return (
        db.query(ProposalVersion)
        .options(selectinload(ProposalVersion.line_items))
        .filter(ProposalVersion.id == version_id)
        .first()
    )


def get_by_number(
    db: Session, proposal_id: str, version_number: int
) -> Optional[ProposalVersion]:
    return (
        db.query(ProposalVersion)
        .options(selectinload(ProposalVersion.line_items))
        .filter(
            ProposalVersion.proposal_id == proposal_id,
            ProposalVersion.version_number == version_number,
        )
        .first()
    )


def list_for_proposal(db: Session, proposal_id: str) -> List[ProposalVersion]:
    return (
        db.query(ProposalVersion)
        .options(selectinload(ProposalVersion.line_items))
        .filter(ProposalVersion.proposal_id == proposal_id)
        .order_by(ProposalVersion.version_number.asc())
        .all()
    )


def get_latest_version(db: Session, proposal_id: str) -> Optional[ProposalVersion]:
    """Latest version, or None for a proposal that was never versioned."""
    return (
        db.query(ProposalVersion)
        .options(selectinload(ProposalVersion.line_items))
        .filter(ProposalVersion.proposal_id == proposal_id)
        .order_by(ProposalVersion.version_number.desc())
        .first()
    )


def next_version_number(db: Session, proposal_id: str) -> int:
    current = (
        db.query(func.max(ProposalVersion.version_number))
        .filter(ProposalVersion.proposal_id == proposal_id)
        .scalar()
    )
    return (current or 0) + 1


def create_version(
    db: Session,
    *,
    proposal: Proposal,
    snapshot: VersionSnapshot,
    created_by: Optional[str] = None,
) -> ProposalVersion:
    """
    Add version max+1 with its line items and flush. Does not commit.
    When the snapshot has no price, the mandatory line-item total is used.
    """
    version_number = next_version_number(db, proposal.id)

    price = snapshot.price
    if price is None:
        price = to_money(sum_line_items(snapshot.line_items))

    version = ProposalVersion(
        proposal_id=proposal.id,
        version_number=version_number,
        price=price,
        timeline_days=snapshot.timeline_days,
        scope_text=snapshot.scope_text,
        terms=snapshot.terms,
        change_reason=snapshot.change_reason,
        created_by=created_by,
    )
    for position, item in enumerate(snapshot.line_items):
        line = ProposalLineItem(
            proposal_id=proposal.id,
            version_number=version_number,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            total=to_money(line_item_total(item)),
            is_optional=item.is_optional,
            charge_type=item.charge_type.value,
            duration=item.duration,
            display_order=position,
        )
        if item.item_id:
            line.item_id = item.item_id
        version.line_items.append(line)

    db.add(version)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.warning(
            f"Version {version_number} of proposal {proposal.id} was taken by a concurrent writer"
        )
        raise VersionConflictError(proposal.id, version_number)

    proposal.current_version = version_number
    logger.info(f"Created version {version_number} of proposal {proposal.id}")
    return version


def ensure_baseline_version(db: Session, proposal_id: str) -> BaselineVersion:
    """
    Return version 1, synthesizing it from the proposal's own fields when the
    proposal predates version tracking. Idempotent; commits when it creates.
    """
    existing = get_by_number(db, proposal_id, 1)
    if existing:
        return BaselineVersion(version=existing, created=False)

    proposal = db.query(Proposal).filter(Proposal.id == proposal_id).first()
    if not proposal:
        raise NotFoundError(f"Proposal {proposal_id} not found")

    snapshot = VersionSnapshot(
        price=proposal.price,
        timeline_days=proposal.timeline_days,
        scope_text=proposal.scope_text,
        terms=proposal.terms,
        change_reason=BASELINE_CHANGE_REASON,
    )
    try:
        version = create_version(db, proposal=proposal, snapshot=snapshot)
        db.commit()
    except VersionConflictError:
        # A concurrent caller created it first; hand back theirs.
        existing = get_by_number(db, proposal_id, 1)
        if existing:
            return BaselineVersion(version=existing, created=False)
        raise

    db.refresh(version)
    logger.info(f"Synthesized baseline version for proposal {proposal_id}")
    return BaselineVersion(version=version, created=True)


def resolve_negotiation_baseline(db: Session, proposal_id: str) -> ProposalVersion:
    """Latest version, falling back to a synthesized version 1."""
    latest = get_latest_version(db, proposal_id)
    if latest is not None:
        return latest
    return ensure_baseline_version(db, proposal_id).version
