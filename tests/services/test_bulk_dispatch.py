import pytest
from decimal import Decimal
from unittest.mock import MagicMock, patch

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import ValidationError
from negotiation_service.crud import (
    crud_negotiation_audit_log,
    crud_negotiation_session,
    crud_proposal_version,
)
from negotiation_service.schemas.bulk import BulkProposalRef
from negotiation_service.schemas.negotiation import NegotiationAsk
from negotiation_service.schemas.proposal import VersionSnapshot
from negotiation_service.services.negotiation import bulk_dispatch, session_manager
from negotiation_service.services.negotiation.bulk_dispatch import (
    BulkDispatchResult,
    progress_percent,
    target_price,
)

from tests.utils.auth import INITIATOR_ORG
from tests.utils.proposal import create_legacy_proposal, create_random_proposal


def _ref(proposal) -> BulkProposalRef:
    return BulkProposalRef(id=proposal.id, price=proposal.price, project_id=proposal.project_id)


class TestTargetPrice:

    def test_percent(self):
        assert target_price(Decimal("100000"), "percent", 10) == pytest.approx(90000)

    def test_fixed(self):
        assert target_price(Decimal("50000"), "fixed", Decimal("7500")) == pytest.approx(42500)

    def test_progress(self):
        assert [progress_percent(i, 3) for i in range(3)] == [33, 67, 100]
        assert progress_percent(0, 0) == 100

    def test_result_accumulator_is_immutable(self):
        empty = BulkDispatchResult()
        skipped = empty.with_skip(bulk_dispatch.SkippedProposal("prp_1", "x"))
        assert empty.skipped == ()
        assert skipped.success_count == 0
        assert len(skipped.skipped) == 1


class TestDispatchBulk:

    def test_skips_proposal_already_in_progress(self, db: Session):
        first = create_legacy_proposal(db, price=Decimal("100000"), project_id="proj_a")
        busy = create_legacy_proposal(db, price=Decimal("200000"), project_id="proj_b")
        third = create_legacy_proposal(db, price=Decimal("50000"), project_id="proj_c")
        session_manager.create_session(
            db, proposal_id=busy.id, ask=NegotiationAsk(message="Earlier ask")
        )
        progress = []

        result = bulk_dispatch.dispatch_bulk(
            db,
            proposals=[_ref(first), _ref(busy), _ref(third)],
            reduction_type="percent",
            value=Decimal("10"),
            message="Budget cut across the board",
            initiator_id="user_initiator",
            organization_id=INITIATOR_ORG,
            on_progress=progress.append,
        )

        assert result.success_count == 2
        assert [(s.proposal_id, s.reason) for s in result.skipped] == [(busy.id, "already in progress")]
        targets = {d.proposal_id: d.target_price for d in result.dispatched}
        assert targets[first.id] == pytest.approx(90000)
        assert targets[third.id] == pytest.approx(45000)
        assert progress == [33, 67, 100]

    def test_creates_fallback_baseline(self, db: Session):
        proposal = create_legacy_proposal(db, price=Decimal("100000"))
        assert crud_proposal_version.get_latest_version(db, proposal.id) is None

        result = bulk_dispatch.dispatch_bulk(
            db, proposals=[_ref(proposal)], reduction_type="fixed", value=Decimal("15000")
        )

        baseline = crud_proposal_version.get_by_number(db, proposal.id, 1)
        assert baseline is not None
        dispatched = result.dispatched[0]
        assert dispatched.target_price == pytest.approx(85000)
        entries = crud_negotiation_audit_log.get_audit_log_for_session(db, dispatched.session_id)
        assert entries[0].action == "request"
        assert entries[0].action_metadata["action_source"] == "bulk_request"

    def test_percent_ask_stores_percent_basis(self, db: Session):
        proposal = create_random_proposal(db, price=Decimal("80000"))

        result = bulk_dispatch.dispatch_bulk(
            db, proposals=[_ref(proposal)], reduction_type="percent", value=Decimal("25")
        )

        session = crud_negotiation_session.get(db, result.dispatched[0].session_id)
        assert session.target_basis == "percent"
        assert session.target_reduction_percent == 25
        assert session.target_total == Decimal("60000.00")

    def test_percent_target_follows_quoted_price_after_rejected_round(self, db: Session):
        proposal = create_legacy_proposal(db, price=Decimal("100000"))
        earlier = session_manager.create_session(
            db, proposal_id=proposal.id, ask=NegotiationAsk(target_reduction_percent=5)
        ).session
        session_manager.record_response(
            db, session_id=earlier.id, snapshot=VersionSnapshot(price=Decimal("95000"))
        )
        session_manager.resolve(db, session_id=earlier.id, outcome="rejected")
        assert crud_proposal_version.get_latest_version(db, proposal.id).price == Decimal("95000.00")

        result = bulk_dispatch.dispatch_bulk(
            db, proposals=[_ref(proposal)], reduction_type="percent", value=Decimal("10")
        )

        dispatched = result.dispatched[0]
        session = crud_negotiation_session.get(db, dispatched.session_id)
        assert dispatched.target_price == pytest.approx(90000)
        assert session.target_total == Decimal("90000.00")
        assert session.target_basis == "percent"
        assert session.target_reduction_percent == 10

    def test_missing_and_foreign_proposals_are_skipped(self, db: Session):
        foreign = create_legacy_proposal(db, org_id="org_someone_else")
        missing = BulkProposalRef(id="prp_missing", price=Decimal("1000"), project_id="proj_x")

        result = bulk_dispatch.dispatch_bulk(
            db,
            proposals=[missing, _ref(foreign)],
            reduction_type="percent",
            value=Decimal("5"),
            organization_id=INITIATOR_ORG,
        )

        assert result.success_count == 0
        assert [s.reason for s in result.skipped] == ["proposal not found", "not authorized"]

    def test_fixed_reduction_larger_than_price_is_skipped(self, db: Session):
        proposal = create_legacy_proposal(db, price=Decimal("1000"))

        result = bulk_dispatch.dispatch_bulk(
            db, proposals=[_ref(proposal)], reduction_type="fixed", value=Decimal("5000")
        )

        assert result.success_count == 0
        assert "exceeds" in result.skipped[0].reason

    def test_one_failure_does_not_stop_the_batch(self, db: Session):
        first = create_legacy_proposal(db, project_id="proj_a")
        second = create_legacy_proposal(db, project_id="proj_b")
        real_create = session_manager.create_session

        def flaky(db, *, proposal_id, **kwargs):
            if proposal_id == first.id:
                raise ValidationError("bad ask")
            return real_create(db, proposal_id=proposal_id, **kwargs)

        with patch.object(session_manager, "create_session", side_effect=flaky):
            result = bulk_dispatch.dispatch_bulk(
                db, proposals=[_ref(first), _ref(second)], reduction_type="percent", value=Decimal("5")
            )

        assert result.success_count == 1
        assert result.skipped[0].reason == "bad ask"
        assert result.dispatched[0].proposal_id == second.id

    def test_lost_connection_propagates(self, db: Session):
        proposal = create_legacy_proposal(db)
        error = OperationalError("SELECT 1", {}, Exception("server closed the connection"))

        with patch.object(session_manager, "create_session", side_effect=error):
            with pytest.raises(OperationalError):
                bulk_dispatch.dispatch_bulk(
                    db, proposals=[_ref(proposal)], reduction_type="percent", value=Decimal("5")
                )

    def test_notifications_sent_per_dispatched_session(self, db: Session):
        proposals = [create_legacy_proposal(db, project_id=f"proj_{i}") for i in range(3)]
        notifier = MagicMock()

        bulk_dispatch.dispatch_bulk(
            db,
            proposals=[_ref(p) for p in proposals],
            reduction_type="percent",
            value=Decimal("5"),
            notifier=notifier,
        )

        assert notifier.call_count == 3
        assert {c[0][0] for c in notifier.call_args_list} == {"negotiation_requested"}
