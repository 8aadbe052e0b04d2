# negotiation_service/api/v1/endpoints/internals.py
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from kafka import KafkaProducer
from sqlalchemy.orm import Session

from negotiation_service.api import deps
from negotiation_service.core.kafka_producer import get_kafka_producer
from negotiation_service.crud import crud_proposal
from negotiation_service.db.session import get_db
from negotiation_service.schemas.negotiation import DeletionReportResponse, ExpireStaleResponse
from negotiation_service.services.negotiation import deletion, session_manager
from negotiation_service.utils.negotiation_notifications import make_notifier

router = APIRouter(tags=["Internal"])


@router.post("/internal/negotiations/expire-stale", response_model=ExpireStaleResponse)
def expire_stale_negotiations(
    threshold_days: Optional[int] = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    api_key: str = Depends(deps.get_internal_api_key),
    kafka_producer: Optional[KafkaProducer] = Depends(get_kafka_producer),
):
    """
    Cancels negotiations that have waited for a response longer than the
    threshold. Meant to be called by an external scheduler.
    """
    expired = session_manager.expire_stale_sessions(
        db, threshold_days=threshold_days, notifier=make_notifier(kafka_producer)
    )
    return ExpireStaleResponse(
        expired_count=len(expired), session_ids=[s.id for s in expired]
    )


@router.delete(
    "/internal/proposals/{proposalId}/negotiation-data",
    response_model=DeletionReportResponse,
)
def delete_negotiation_data(
    proposalId: str,
    db: Session = Depends(get_db),
    api_key: str = Depends(deps.get_internal_api_key),
):
    """Removes every version, session and milestone row of a proposal, leaf tables first."""
    if not crud_proposal.get(db, proposalId):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Proposal not found")

    report = deletion.execute_deletion_plan(db, proposalId)
    if not report.succeeded:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={
                "message": f"Deletion stopped at {report.failed_step}",
                "completed": report.completed,
            },
        )
    return DeletionReportResponse(
        proposal_id=report.proposal_id,
        succeeded=report.succeeded,
        completed=report.completed,
        deleted_rows=report.deleted_rows,
    )
