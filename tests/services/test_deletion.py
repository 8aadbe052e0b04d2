from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from negotiation_service.models.milestone_payment import MilestonePayment
from negotiation_service.models.negotiation_audit_log import NegotiationAuditLog
from negotiation_service.models.negotiation_comment import NegotiationComment
from negotiation_service.models.negotiation_session import NegotiationSession
from negotiation_service.models.proposal import Proposal
from negotiation_service.models.proposal_version import ProposalVersion
from negotiation_service.schemas.negotiation import CommentIn, NegotiationAsk
from negotiation_service.schemas.proposal import VersionSnapshot
from negotiation_service.services.negotiation import deletion, session_manager

from tests.utils.proposal import create_random_proposal


def _negotiated_proposal(db: Session, project_id="proj_1"):
    proposal = create_random_proposal(db, project_id=project_id)
    session = session_manager.create_session(
        db,
        proposal_id=proposal.id,
        ask=NegotiationAsk(target_reduction_percent=10, comments=[CommentIn(content="Trim travel")]),
    ).session
    session_manager.record_response(db, session_id=session.id, snapshot=VersionSnapshot(price=Decimal("72000")))
    return proposal


def test_plan_runs_leaf_tables_first(db: Session):
    proposal = _negotiated_proposal(db)
    other = _negotiated_proposal(db, project_id="proj_2")

    report = deletion.execute_deletion_plan(db, proposal.id)

    assert report.succeeded
    assert report.completed == [step.name for step in deletion.NEGOTIATION_DELETION_PLAN]
    assert report.deleted_rows["proposal_versions"] == 2
    assert report.deleted_rows["milestone_payments"] == 3
    assert db.query(NegotiationSession).filter_by(proposal_id=proposal.id).count() == 0
    assert db.query(ProposalVersion).filter_by(proposal_id=proposal.id).count() == 0
    # The proposal row, the audit trail and other proposals are untouched
    assert db.query(Proposal).filter_by(id=proposal.id).count() == 1
    assert db.query(NegotiationAuditLog).filter_by(proposal_id=proposal.id).count() == 2
    assert db.query(ProposalVersion).filter_by(proposal_id=other.id).count() == 2
    assert db.query(NegotiationComment).count() == 1


def test_partial_failure_reports_failed_step(db: Session):
    proposal = _negotiated_proposal(db)
    real_query_for = deletion._query_for

    def failing_query_for(db, step, proposal_id):
        if step.name == "line_item_negotiations":
            raise OperationalError("DELETE", {}, Exception("connection reset"))
        return real_query_for(db, step, proposal_id)

    with patch.object(deletion, "_query_for", side_effect=failing_query_for):
        report = deletion.execute_deletion_plan(db, proposal.id)

    assert not report.succeeded
    assert report.completed == ["negotiation_comments"]
    assert report.failed_step == "line_item_negotiations"
    assert "connection reset" in report.error
    # Earlier step stays done, later steps never ran
    assert db.query(NegotiationComment).count() == 0
    assert db.query(NegotiationSession).count() == 1
    assert db.query(MilestonePayment).count() == 3
