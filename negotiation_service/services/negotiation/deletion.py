"""
Ordered, leaf-first removal of a proposal's negotiation data.

Each step deletes one table's rows and commits on its own, so a failure
part-way leaves the earlier steps done and is reported as such instead of
relying on implicit FK cascades.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from negotiation_service.models.line_item_negotiation import LineItemNegotiation
from negotiation_service.models.milestone_adjustment import MilestoneAdjustment
from negotiation_service.models.milestone_payment import MilestonePayment
from negotiation_service.models.negotiation_comment import NegotiationComment
from negotiation_service.models.negotiation_session import NegotiationSession
from negotiation_service.models.proposal_line_item import ProposalLineItem
from negotiation_service.models.proposal_version import ProposalVersion

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletionStep:
    name: str
    model: type
    # "session" rows are keyed by session_id, "proposal" rows by proposal_id
    scope: str


# Leaf tables first
NEGOTIATION_DELETION_PLAN = (
    DeletionStep("negotiation_comments", NegotiationComment, "session"),
    DeletionStep("line_item_negotiations", LineItemNegotiation, "session"),
    DeletionStep("milestone_adjustments", MilestoneAdjustment, "session"),
    DeletionStep("negotiation_sessions", NegotiationSession, "proposal"),
    DeletionStep("proposal_line_items", ProposalLineItem, "proposal"),
    DeletionStep("proposal_versions", ProposalVersion, "proposal"),
    DeletionStep("milestone_payments", MilestonePayment, "proposal"),
)


@dataclass
class DeletionReport:
    proposal_id: str
    completed: List[str] = field(default_factory=list)
    deleted_rows: dict = field(default_factory=dict)
    failed_step: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.failed_step is None


def _query_for(db: Session, step: DeletionStep, proposal_id: str):
    if step.scope == "session":
        session_ids = db.query(NegotiationSession.id).filter(
            NegotiationSession.proposal_id == proposal_id
        )
        return db.query(step.model).filter(step.model.session_id.in_(session_ids.scalar_subquery()))
    return db.query(step.model).filter(step.model.proposal_id == proposal_id)


def execute_deletion_plan(
    db: Session, proposal_id: str, plan=NEGOTIATION_DELETION_PLAN
) -> DeletionReport:
    report = DeletionReport(proposal_id=proposal_id)
    for step in plan:
        try:
            deleted = _query_for(db, step, proposal_id).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            report.failed_step = step.name
            report.error = str(exc)
            logger.error(
                f"Deletion of {step.name} for proposal {proposal_id} failed after "
                f"{len(report.completed)} completed steps",
                exc_info=True,
            )
            return report
        report.completed.append(step.name)
        report.deleted_rows[step.name] = deleted
    logger.info(f"Removed negotiation data for proposal {proposal_id}")
    return report
