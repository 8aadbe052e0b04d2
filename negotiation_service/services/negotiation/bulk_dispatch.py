"""
Bulk dispatch: one negotiation ask fanned out across many proposals.

Proposals are processed one at a time, in order. Each proposal's failure is
recorded in ``skipped`` and the batch carries on; the batch itself never
raises for a single proposal. Losing the database connection is not a
per-proposal failure and propagates.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from negotiation_service.core.exceptions import NegotiationError
from negotiation_service.crud import crud_proposal, crud_proposal_version
from negotiation_service.schemas.bulk import BulkProposalRef, ReductionType
from negotiation_service.schemas.negotiation import NegotiationAsk
from negotiation_service.services.negotiation import session_manager
from negotiation_service.services.negotiation.aggregation import (
    reduce_by_amount,
    reduce_by_percent,
    to_float,
    to_money,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], object]

REASON_IN_PROGRESS = "already in progress"
REASON_NOT_FOUND = "proposal not found"
REASON_NOT_AUTHORIZED = "not authorized"


@dataclass(frozen=True)
class SkippedProposal:
    proposal_id: str
    reason: str


@dataclass(frozen=True)
class DispatchedSession:
    proposal_id: str
    session_id: str
    target_price: float


@dataclass(frozen=True)
class BulkDispatchResult:
    success_count: int = 0
    skipped: tuple = ()
    dispatched: tuple = ()

    def with_success(self, item: DispatchedSession) -> "BulkDispatchResult":
        return replace(
            self,
            success_count=self.success_count + 1,
            dispatched=self.dispatched + (item,),
        )

    def with_skip(self, item: SkippedProposal) -> "BulkDispatchResult":
        return replace(self, skipped=self.skipped + (item,))


def target_price(price, reduction_type, value) -> float:
    if ReductionType(reduction_type) == ReductionType.PERCENT:
        return reduce_by_percent(price, value)
    return reduce_by_amount(price, value)


def progress_percent(index: int, total: int) -> int:
    return round((index + 1) / total * 100) if total else 100


def _is_connection_failure(exc: SQLAlchemyError) -> bool:
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


def _dispatch_one(
    db: Session,
    ref: BulkProposalRef,
    *,
    reduction_type: ReductionType,
    value,
    message: Optional[str],
    initiator_id: Optional[str],
    organization_id: Optional[str],
    notifier,
):
    """Returns a DispatchedSession or a SkippedProposal."""
    proposal = crud_proposal.get(db, ref.id)
    if proposal is None:
        return SkippedProposal(proposal_id=ref.id, reason=REASON_NOT_FOUND)
    if organization_id is not None and proposal.organization_id != organization_id:
        return SkippedProposal(proposal_id=ref.id, reason=REASON_NOT_AUTHORIZED)

    try:
        latest = crud_proposal_version.resolve_negotiation_baseline(db, ref.id)
    except (NegotiationError, SQLAlchemyError) as exc:
        if isinstance(exc, SQLAlchemyError):
            if _is_connection_failure(exc):
                raise
            db.rollback()
        return SkippedProposal(
            proposal_id=ref.id,
            reason=f"baseline version could not be created: {exc}",
        )

    target = target_price(ref.price, reduction_type, value)
    if target < 0:
        return SkippedProposal(
            proposal_id=ref.id,
            reason=f"reduction exceeds the proposal price ({to_float(ref.price):g})",
        )

    if reduction_type == ReductionType.PERCENT:
        ask = NegotiationAsk(
            target_reduction_percent=float(value),
            negotiated_version_id=latest.id,
            message=message,
        )
    else:
        ask = NegotiationAsk(
            target_total=to_money(target),
            negotiated_version_id=latest.id,
            message=message,
        )

    result = session_manager.create_session(
        db,
        proposal_id=ref.id,
        ask=ask,
        initiator_id=initiator_id,
        notifier=notifier,
        audit_action="bulk_request",
        base_price=ref.price,
    )
    if isinstance(result, session_manager.ExistingSessionConflict):
        return SkippedProposal(proposal_id=ref.id, reason=REASON_IN_PROGRESS)
    return DispatchedSession(
        proposal_id=ref.id, session_id=result.session.id, target_price=target
    )


def dispatch_bulk(
    db: Session,
    *,
    proposals: Sequence[BulkProposalRef],
    reduction_type,
    value,
    message: Optional[str] = None,
    initiator_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    notifier=None,
    on_progress: Optional[ProgressCallback] = None,
) -> BulkDispatchResult:
    """
    Open a negotiation on every proposal in ``proposals``.

    ``percent`` asks target ``price * (1 - value/100)``; ``fixed`` asks
    target ``price - value``. ``on_progress`` receives a 0-100 integer after
    each proposal.
    """
    reduction_type = ReductionType(reduction_type)
    proposals = list(proposals)
    total = len(proposals)

    result = BulkDispatchResult()

    for index, ref in enumerate(proposals):
        try:
            outcome = _dispatch_one(
                db,
                ref,
                reduction_type=reduction_type,
                value=value,
                message=message,
                initiator_id=initiator_id,
                organization_id=organization_id,
                notifier=notifier,
            )
        except NegotiationError as exc:
            outcome = SkippedProposal(proposal_id=ref.id, reason=exc.message)
        except SQLAlchemyError as exc:
            if _is_connection_failure(exc):
                raise
            db.rollback()
            logger.error(f"Bulk negotiation failed for proposal {ref.id}", exc_info=True)
            outcome = SkippedProposal(proposal_id=ref.id, reason=f"database error: {exc.__class__.__name__}")

        if isinstance(outcome, SkippedProposal):
            logger.warning(f"Bulk negotiation skipped proposal {ref.id}: {outcome.reason}")
            result = result.with_skip(outcome)
        else:
            result = result.with_success(outcome)

        if on_progress is not None:
            on_progress(progress_percent(index, total))

    logger.info(
        f"Bulk negotiation sent to {result.success_count}/{total} proposals "
        f"({len(result.skipped)} skipped)"
    )
    return result
