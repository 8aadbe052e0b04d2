# negotiation_service/schemas/negotiation.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum

from negotiation_service.schemas.proposal import VersionSnapshot


# --- Enums ---

class AdjustmentType(str, Enum):
    PRICE_CHANGE = "price_change"
    FLAT_DISCOUNT = "flat_discount"
    PERCENTAGE_DISCOUNT = "percentage_discount"


class AuthorType(str, Enum):
    INITIATOR = "initiator"
    RESPONDENT = "respondent"


class CommentType(str, Enum):
    DOCUMENT = "document"
    SCOPE = "scope"
    MILESTONE = "milestone"
    PAYMENT = "payment"
    GENERAL = "general"


class ResolutionOutcome(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# --- Ask ---

class LineItemAdjustment(BaseModel):
    line_item_id: str  # stable item_id of the baseline version's line item
    adjustment_type: AdjustmentType
    adjustment_value: Decimal = Field(..., ge=0)
    initiator_note: Optional[str] = None

    @model_validator(mode="after")
    def validate_percentage(self):
        if (
            self.adjustment_type == AdjustmentType.PERCENTAGE_DISCOUNT
            and self.adjustment_value > 100
        ):
            raise ValueError("percentage_discount cannot exceed 100")
        return self


class MilestoneAdjustmentDraft(BaseModel):
    milestone_id: str
    original_percentage: Optional[float] = Field(None, ge=0, le=100)
    target_percentage: float = Field(..., ge=0, le=100)
    initiator_note: Optional[str] = None


class CommentIn(BaseModel):
    comment_type: CommentType = CommentType.GENERAL
    content: str = Field(..., min_length=1, max_length=5000)
    entity_reference: Optional[str] = None


class NegotiationAsk(BaseModel):
    """
    One initiator request. At most one of target_total / target_reduction_percent
    is given; the other is derived from the baseline version's price.
    """

    target_total: Optional[Decimal] = Field(None, ge=0)
    target_reduction_percent: Optional[float] = Field(None, gt=0, le=100)
    negotiated_version_id: Optional[str] = None
    message: Optional[str] = Field(None, max_length=5000)
    line_item_adjustments: List[LineItemAdjustment] = []
    milestone_adjustments: List[MilestoneAdjustmentDraft] = []
    comments: List[CommentIn] = []


# --- Respond / resolve / cancel / comment ---

class LineItemResponseIn(BaseModel):
    line_item_id: str
    response_price: Decimal = Field(..., ge=0)
    note: Optional[str] = None


class NegotiationRespondRequest(BaseModel):
    message: Optional[str] = Field(None, max_length=5000)
    snapshot: Optional[VersionSnapshot] = None
    line_item_responses: List[LineItemResponseIn] = []

    @model_validator(mode="after")
    def require_content(self):
        if self.snapshot is None and not self.line_item_responses:
            raise ValueError("Provide a version snapshot or line_item_responses")
        return self


class NegotiationResolveRequest(BaseModel):
    outcome: ResolutionOutcome
    message: Optional[str] = Field(None, max_length=5000)


class NegotiationCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class CommentCreate(CommentIn):
    pass


# --- Response shapes ---

class LineItemNegotiationResponse(BaseModel):
    id: str
    line_item_id: str
    adjustment_type: str
    adjustment_value: float
    original_price: float
    initiator_target_price: float
    initiator_note: Optional[str] = None
    respondent_response_price: Optional[float] = None
    respondent_note: Optional[str] = None

    model_config = {"from_attributes": True}


class MilestoneAdjustmentResponse(BaseModel):
    id: str
    milestone_id: str
    original_percentage: float
    target_percentage: float
    initiator_note: Optional[str] = None

    model_config = {"from_attributes": True}


class CommentResponse(BaseModel):
    id: str
    session_id: str
    author_id: Optional[str] = None
    author_type: AuthorType
    comment_type: str
    entity_reference: Optional[str] = None
    content: str
    created_at: datetime

    model_config = {"from_attributes": True}


class NegotiationSessionResponse(BaseModel):
    id: str
    proposal_id: str
    project_id: str
    status: str
    outcome: Optional[str] = None
    target_basis: Optional[str] = None
    target_total: Optional[float] = None
    target_reduction_percent: Optional[float] = None
    global_comment: Optional[str] = None
    respondent_message: Optional[str] = None
    negotiated_version_id: Optional[str] = None
    responded_version_id: Optional[str] = None
    created_at: datetime
    responded_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    line_item_negotiations: List[LineItemNegotiationResponse] = []
    milestone_adjustments: List[MilestoneAdjustmentResponse] = []
    comments: List[CommentResponse] = []

    model_config = {"from_attributes": True}


class ExistingSessionResponse(BaseModel):
    detail: str
    session_id: str


class AuditLogEntry(BaseModel):
    id: str
    session_id: Optional[str] = None
    proposal_id: str
    user_id: str
    action: str
    old_state: Optional[str] = None
    new_state: Optional[str] = None
    action_metadata: Optional[dict] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ExpireStaleResponse(BaseModel):
    expired_count: int
    session_ids: List[str]


class NegotiationRespondResult(BaseModel):
    session: NegotiationSessionResponse
    new_version_id: str
    new_version_number: int
    new_price: float


class DeletionReportResponse(BaseModel):
    proposal_id: str
    succeeded: bool
    completed: List[str]
    deleted_rows: dict
    failed_step: Optional[str] = None
    error: Optional[str] = None
