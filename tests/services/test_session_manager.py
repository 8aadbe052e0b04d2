"""
Tests for the negotiation session lifecycle against a real (SQLite) database.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import ConflictError, InvalidTransitionError, ValidationError
from negotiation_service.crud import (
    crud_negotiation_audit_log,
    crud_negotiation_session,
    crud_proposal_version,
)
from negotiation_service.models.line_item_negotiation import LineItemNegotiation
from negotiation_service.models.milestone_adjustment import MilestoneAdjustment
from negotiation_service.models.negotiation_session import NegotiationSession
from negotiation_service.schemas.negotiation import (
    CommentIn,
    LineItemAdjustment,
    LineItemResponseIn,
    MilestoneAdjustmentDraft,
    NegotiationAsk,
)
from negotiation_service.schemas.proposal import VersionSnapshot
from negotiation_service.services.negotiation import session_manager

from tests.utils.proposal import create_legacy_proposal, create_random_proposal


def _open(db, proposal, notifier=None, **ask):
    ask.setdefault("message", "Please revisit the fee")
    return session_manager.create_session(
        db,
        proposal_id=proposal.id,
        ask=NegotiationAsk(**ask),
        initiator_id="user_initiator",
        notifier=notifier,
    )


class TestCreateSession:

    def test_opens_awaiting_response_against_latest_version(self, db: Session):
        proposal = create_random_proposal(db)
        notifier = MagicMock()

        result = _open(db, proposal, notifier=notifier, target_reduction_percent=10)

        session = result.session
        assert session.status == "awaiting_response"
        assert session.negotiated_version_id == crud_proposal_version.get_latest_version(db, proposal.id).id
        assert session.target_basis == "percent"
        assert session.target_total == Decimal("72000.00")
        db.refresh(proposal)
        assert proposal.status == "negotiating"
        notifier.assert_called_once()
        assert notifier.call_args[0][0] == "negotiation_requested"

    def test_target_total_derives_percent(self, db: Session):
        proposal = create_random_proposal(db)

        session = _open(db, proposal, target_total=Decimal("60000")).session

        assert session.target_basis == "total"
        assert session.target_reduction_percent == pytest.approx(25)

    def test_both_targets_rejected(self, db: Session):
        proposal = create_random_proposal(db)

        with pytest.raises(ValidationError):
            _open(db, proposal, target_total=Decimal("60000"), target_reduction_percent=10)

        assert db.query(NegotiationSession).count() == 0

    def test_empty_ask_rejected(self, db: Session):
        proposal = create_random_proposal(db)

        with pytest.raises(ValidationError):
            _open(db, proposal, message=None)

    def test_milestone_draft_summing_to_97_creates_nothing(self, db: Session):
        proposal = create_random_proposal(db)
        final = [m for m in proposal.milestones if m.description == "Final"][0]

        with pytest.raises(ValidationError) as exc_info:
            _open(
                db,
                proposal,
                milestone_adjustments=[
                    MilestoneAdjustmentDraft(milestone_id=final.id, target_percentage=37)
                ],
            )

        assert exc_info.value.current_sum == pytest.approx(97)
        assert exc_info.value.delta == pytest.approx(-3)
        assert db.query(NegotiationSession).count() == 0
        assert db.query(MilestoneAdjustment).count() == 0
        db.refresh(proposal)
        assert proposal.status == "submitted"

    def test_balanced_milestone_drafts_are_stored(self, db: Session):
        proposal = create_random_proposal(db)
        by_name = {m.description: m for m in proposal.milestones}

        session = _open(
            db,
            proposal,
            milestone_adjustments=[
                MilestoneAdjustmentDraft(milestone_id=by_name["Kick-off"].id, target_percentage=20),
                MilestoneAdjustmentDraft(milestone_id=by_name["Final"].id, target_percentage=50),
            ],
        ).session

        adjustments = {a.milestone_id: a for a in session.milestone_adjustments}
        assert adjustments[by_name["Kick-off"].id].original_percentage == 30
        assert adjustments[by_name["Final"].id].target_percentage == 50

    def test_line_item_adjustments_compute_targets(self, db: Session):
        proposal = create_random_proposal(db)

        session = _open(
            db,
            proposal,
            line_item_adjustments=[
                LineItemAdjustment(
                    line_item_id="itm_design",
                    adjustment_type="percentage_discount",
                    adjustment_value=Decimal("10"),
                ),
                LineItemAdjustment(
                    line_item_id="itm_build",
                    adjustment_type="flat_discount",
                    adjustment_value=Decimal("50000"),
                ),
            ],
        ).session

        rows = {n.line_item_id: n for n in session.line_item_negotiations}
        assert rows["itm_design"].original_price == Decimal("50000.00")
        assert rows["itm_design"].initiator_target_price == Decimal("45000.00")
        # Never below zero
        assert rows["itm_build"].initiator_target_price == Decimal("0.00")

    def test_unknown_line_item_rejected_before_writes(self, db: Session):
        proposal = create_random_proposal(db)

        with pytest.raises(ValidationError):
            _open(
                db,
                proposal,
                line_item_adjustments=[
                    LineItemAdjustment(
                        line_item_id="itm_nope", adjustment_type="price_change", adjustment_value=1
                    )
                ],
            )

        assert db.query(LineItemNegotiation).count() == 0
        assert db.query(NegotiationSession).count() == 0

    def test_second_session_returns_existing_conflict(self, db: Session):
        proposal = create_random_proposal(db)
        first = _open(db, proposal, target_reduction_percent=5).session

        result = _open(db, proposal, target_reduction_percent=10)

        assert isinstance(result, session_manager.ExistingSessionConflict)
        assert result.session_id == first.id
        assert result.message == "A negotiation is already in progress for this proposal."
        assert db.query(NegotiationSession).count() == 1

    def test_concurrent_open_is_stopped_by_unique_index(self, db: Session):
        proposal = create_random_proposal(db)
        first = _open(db, proposal, target_reduction_percent=5).session
        real_lookup = crud_negotiation_session.get_active_for_proposal
        lookups = []

        def missed_first_lookup(db, proposal_id):
            lookups.append(proposal_id)
            if len(lookups) == 1:
                return None
            return real_lookup(db, proposal_id)

        with patch.object(
            crud_negotiation_session, "get_active_for_proposal", side_effect=missed_first_lookup
        ):
            result = _open(db, proposal, target_reduction_percent=10)

        assert isinstance(result, session_manager.ExistingSessionConflict)
        assert result.session_id == first.id
        active = db.query(NegotiationSession).filter(
            NegotiationSession.proposal_id == proposal.id,
            NegotiationSession.status.in_(["open", "awaiting_response"]),
        ).all()
        assert [s.id for s in active] == [first.id]

    def test_legacy_proposal_gets_baseline(self, db: Session):
        proposal = create_legacy_proposal(db, price=Decimal("100000"))

        session = _open(db, proposal, target_reduction_percent=10).session

        baseline = crud_proposal_version.get_by_number(db, proposal.id, 1)
        assert session.negotiated_version_id == baseline.id
        assert session.target_total == Decimal("90000.00")

    def test_initial_comments_are_threaded(self, db: Session):
        proposal = create_random_proposal(db)

        session = _open(
            db,
            proposal,
            comments=[CommentIn(comment_type="scope", content="Drop phase 3", entity_reference="phase-3")],
        ).session

        assert len(session.comments) == 1
        assert session.comments[0].author_type == "initiator"
        assert session.comments[0].comment_type == "scope"

    def test_notifier_failure_keeps_session(self, db: Session):
        proposal = create_random_proposal(db)
        notifier = MagicMock(side_effect=RuntimeError("kafka down"))

        result = _open(db, proposal, notifier=notifier, target_reduction_percent=10)

        notifier.assert_called_once()
        stored = crud_negotiation_session.get(db, result.session.id)
        assert stored.status == "awaiting_response"

    def test_request_is_audited(self, db: Session):
        proposal = create_random_proposal(db)

        session = _open(db, proposal, target_reduction_percent=10).session

        entries = crud_negotiation_audit_log.get_audit_log_for_session(db, session.id)
        assert [e.action for e in entries] == ["request"]
        assert entries[0].user_id == "user_initiator"
        assert entries[0].new_state == "awaiting_response"

    def test_closed_proposal_cannot_be_negotiated(self, db: Session):
        proposal = create_random_proposal(db)
        proposal.status = "withdrawn"
        db.commit()

        with pytest.raises(ConflictError):
            _open(db, proposal, target_reduction_percent=10)


class TestRespondAndResolve:

    def test_fifteen_percent_round_accepted_updates_proposal_price(self, db: Session):
        proposal = create_random_proposal(db, price=Decimal("80000"))
        session = _open(db, proposal, target_reduction_percent=15).session
        assert session.target_total == Decimal("68000.00")

        responded = session_manager.record_response(
            db,
            session_id=session.id,
            snapshot=VersionSnapshot(price=Decimal("68000"), change_reason="Reduced fee"),
            message="Done",
            respondent_id="user_respondent",
        )
        assert responded.session.status == "responded"
        assert responded.session.responded_at is not None
        assert responded.version.version_number == 2

        resolved = session_manager.resolve(
            db, session_id=session.id, outcome="accepted", actor_id="user_initiator"
        )

        assert resolved.session.status == "resolved"
        assert resolved.session.outcome == "accepted"
        db.refresh(proposal)
        assert proposal.price == responded.version.price
        assert proposal.current_version == 2
        assert proposal.status == "approved"

    def test_line_item_responses_build_next_version(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(
            db,
            proposal,
            line_item_adjustments=[
                LineItemAdjustment(
                    line_item_id="itm_build", adjustment_type="price_change", adjustment_value=20000
                )
            ],
        ).session

        result = session_manager.record_response(
            db,
            session_id=session.id,
            line_item_responses=[
                LineItemResponseIn(line_item_id="itm_build", response_price=Decimal("24000"), note="Best we can do")
            ],
        )

        version = result.version
        items = {line.item_id: line for line in version.line_items}
        assert items["itm_build"].total == Decimal("24000.00")
        assert items["itm_build"].unit_price == Decimal("12000.00")
        # 50,000 design + 24,000 build; optional support excluded
        assert version.price == Decimal("74000.00")
        negotiation = result.session.line_item_negotiations[0]
        assert negotiation.respondent_response_price == Decimal("24000.00")
        assert negotiation.respondent_note == "Best we can do"

    def test_respond_twice_is_invalid(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session
        session_manager.record_response(db, session_id=session.id, snapshot=VersionSnapshot(price=Decimal("76000")))

        with pytest.raises(InvalidTransitionError):
            session_manager.record_response(db, session_id=session.id, snapshot=VersionSnapshot(price=Decimal("75000")))

    def test_resolve_before_response_is_invalid(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session

        with pytest.raises(InvalidTransitionError):
            session_manager.resolve(db, session_id=session.id, outcome="accepted")

    def test_rejected_keeps_price_and_allows_new_round(self, db: Session):
        proposal = create_random_proposal(db, price=Decimal("80000"))
        session = _open(db, proposal, target_reduction_percent=20).session
        session_manager.record_response(db, session_id=session.id, snapshot=VersionSnapshot(price=Decimal("78000")))

        session_manager.resolve(db, session_id=session.id, outcome="rejected", message="Too high")

        db.refresh(proposal)
        assert proposal.price == Decimal("80000.00")
        assert proposal.status == "submitted"
        second = _open(db, proposal, target_reduction_percent=10)
        assert not isinstance(second, session_manager.ExistingSessionConflict)
        # The new round negotiates against the rejected reply
        assert second.session.negotiated_version_id == crud_proposal_version.get_by_number(db, proposal.id, 2).id

    def test_full_round_audit_trail(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session
        session_manager.record_response(db, session_id=session.id, snapshot=VersionSnapshot(price=Decimal("76000")), respondent_id="user_respondent")
        session_manager.resolve(db, session_id=session.id, outcome="accepted", actor_id="user_initiator")

        actions = {e.action for e in crud_negotiation_audit_log.get_audit_log_for_session(db, session.id)}
        assert actions == {"request", "respond", "accept"}


class TestCancelAndExpire:

    def test_cancel_before_response(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session
        notifier = MagicMock()

        result = session_manager.cancel(
            db, session_id=session.id, actor_type="respondent", reason="Scope changed", notifier=notifier
        )

        assert result.session.status == "cancelled"
        assert result.session.resolved_at is not None
        assert result.session.comments[-1].content == "Scope changed"
        assert notifier.call_args[0][0] == "negotiation_cancelled"
        db.refresh(proposal)
        assert proposal.status == "submitted"

    def test_cancel_after_response_is_invalid(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session
        session_manager.record_response(db, session_id=session.id, snapshot=VersionSnapshot(price=Decimal("76000")))

        with pytest.raises(InvalidTransitionError):
            session_manager.cancel(db, session_id=session.id, actor_type="initiator")

    def test_expire_stale_sessions(self, db: Session):
        stale_proposal = create_random_proposal(db, project_id="proj_old")
        fresh_proposal = create_random_proposal(db, project_id="proj_new")
        stale = _open(db, stale_proposal, target_reduction_percent=5).session
        fresh = _open(db, fresh_proposal, target_reduction_percent=5).session
        stale.created_at = datetime.now(timezone.utc) - timedelta(days=31)
        db.commit()
        notifier = MagicMock()

        expired = session_manager.expire_stale_sessions(db, threshold_days=30, notifier=notifier)

        assert [s.id for s in expired] == [stale.id]
        assert crud_negotiation_session.get(db, stale.id).status == "cancelled"
        assert crud_negotiation_session.get(db, fresh.id).status == "awaiting_response"
        assert notifier.call_args[0][0] == "negotiation_expired"
        entry = crud_negotiation_audit_log.get_audit_log_for_session(db, stale.id)[0]
        assert entry.action == "expire"
        assert entry.user_id == "system"

    def test_expire_with_nothing_stale(self, db: Session):
        create_random_proposal(db)
        assert session_manager.expire_stale_sessions(db) == []


class TestComments:

    def test_add_comment(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session

        comment = session_manager.add_comment(
            db, session_id=session.id, author_type="respondent", content="Can we talk?"
        )

        assert comment.id.startswith("ngc_")
        assert comment.session_id == session.id

    def test_blank_comment_rejected(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session

        with pytest.raises(ValidationError):
            session_manager.add_comment(db, session_id=session.id, author_type="initiator", content="  ")

    def test_unknown_author_type_rejected(self, db: Session):
        proposal = create_random_proposal(db)
        session = _open(db, proposal, target_reduction_percent=5).session

        with pytest.raises(ValidationError):
            session_manager.add_comment(db, session_id=session.id, author_type="admin", content="hi")
