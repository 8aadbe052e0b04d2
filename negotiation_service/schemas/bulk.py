# negotiation_service/schemas/bulk.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from decimal import Decimal
from enum import Enum


class ReductionType(str, Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class BulkProposalRef(BaseModel):
    id: str
    price: Decimal = Field(..., ge=0)
    project_id: str


class BulkNegotiationRequest(BaseModel):
    proposals: List[BulkProposalRef] = Field(..., min_length=1)
    reduction_type: ReductionType = ReductionType.PERCENT
    value: Decimal = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=5000)

    @model_validator(mode="after")
    def validate_value(self):
        if self.reduction_type == ReductionType.PERCENT and self.value > 100:
            raise ValueError("Percent reduction cannot exceed 100")
        return self


class SkippedProposalResponse(BaseModel):
    proposal_id: str
    reason: str


class DispatchedSessionResponse(BaseModel):
    proposal_id: str
    session_id: str
    target_price: float


class BulkDispatchResponse(BaseModel):
    success_count: int
    skipped: List[SkippedProposalResponse]
    dispatched: List[DispatchedSessionResponse]
