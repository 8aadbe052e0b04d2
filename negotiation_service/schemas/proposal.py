# negotiation_service/schemas/proposal.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum


# --- Enums ---

class ProposalStatus(str, Enum):
    SUBMITTED = "submitted"
    NEGOTIATING = "negotiating"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ChargeType(str, Enum):
    ONE_TIME = "one_time"
    MONTHLY = "monthly"
    HOURLY = "hourly"
    PER_UNIT = "per_unit"


# --- Snapshots (input) ---

class FeeLineItemSnapshot(BaseModel):
    item_id: Optional[str] = None  # keep the same id across versions
    description: str = Field(..., min_length=1, max_length=500)
    quantity: float = Field(1, ge=0)
    unit: Optional[str] = None
    unit_price: Decimal = Field(Decimal("0"), ge=0)
    total: Optional[Decimal] = Field(None, ge=0)
    is_optional: bool = False
    charge_type: ChargeType = ChargeType.ONE_TIME
    duration: Optional[int] = Field(None, ge=1)


class VersionSnapshot(BaseModel):
    """Contents of a new proposal version. Omitted price is derived from line items."""

    price: Optional[Decimal] = Field(None, ge=0)
    timeline_days: Optional[int] = Field(None, ge=0)
    scope_text: Optional[str] = None
    terms: Optional[str] = None
    change_reason: Optional[str] = Field(None, max_length=500)
    line_items: List[FeeLineItemSnapshot] = []


class MilestoneIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    percentage: float = Field(..., ge=0, le=100)


class MilestoneCheckItem(BaseModel):
    percentage: float = Field(..., ge=0, le=100)


class MilestoneCheckRequest(BaseModel):
    milestones: List[MilestoneCheckItem]


class ProposalSubmit(BaseModel):
    respondent_id: str
    respondent_name: Optional[str] = None
    rfp_id: Optional[str] = None
    rfp_invite_id: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    timeline_days: Optional[int] = Field(None, ge=0)
    scope_text: Optional[str] = None
    terms: Optional[str] = None
    declaration_text: Optional[str] = None
    signed_by: Optional[str] = None
    line_items: List[FeeLineItemSnapshot] = []
    milestones: List[MilestoneIn] = []

    @model_validator(mode="after")
    def validate_milestones(self):
        if self.milestones:
            total = sum(m.percentage for m in self.milestones)
            if abs(total - 100) > 0.01:
                raise ValueError(
                    f"milestone percentages must sum to 100 (got {total:g})"
                )
        return self


# --- Response shapes ---

class LineItemResponse(BaseModel):
    id: str
    item_id: str
    description: str
    quantity: float
    unit: Optional[str] = None
    unit_price: float
    total: Optional[float] = None
    is_optional: bool
    charge_type: str
    duration: Optional[int] = None

    model_config = {"from_attributes": True}


class ProposalVersionResponse(BaseModel):
    id: str
    proposal_id: str
    version_number: int
    price: float
    timeline_days: Optional[int] = None
    scope_text: Optional[str] = None
    terms: Optional[str] = None
    change_reason: Optional[str] = None
    created_at: datetime
    line_items: List[LineItemResponse] = []

    model_config = {"from_attributes": True}


class BaselineVersionResponse(BaseModel):
    created: bool
    version: ProposalVersionResponse


class MilestoneResponse(BaseModel):
    id: str
    description: str
    percentage: float

    model_config = {"from_attributes": True}


class ProposalResponse(BaseModel):
    id: str
    project_id: str
    organization_id: str
    respondent_id: str
    respondent_name: Optional[str] = None
    rfp_invite_id: Optional[str] = None
    price: float
    timeline_days: Optional[int] = None
    scope_text: Optional[str] = None
    terms: Optional[str] = None
    status: ProposalStatus
    current_version: int
    submitted_at: datetime
    milestones: List[MilestoneResponse] = []

    model_config = {"from_attributes": True}


class MilestoneAmount(BaseModel):
    milestone_id: str
    description: str
    percentage: float
    amount: float


class TotalsResponse(BaseModel):
    version_number: Optional[int] = None
    mandatory_total: float
    optional_total: float
    grand_total: float
    milestones: List[MilestoneAmount] = []
    milestones_valid: bool
    milestones_delta: float


class PercentageCheckResponse(BaseModel):
    valid: bool
    total: float
    delta: float


class ItemDiffResponse(BaseModel):
    change: str  # added, removed, changed, unchanged
    item_id: Optional[str] = None
    description: str
    old_total: float
    new_total: float
    delta: float


class VersionDiffResponse(BaseModel):
    from_version: int
    to_version: int
    price_delta: float
    percent_delta: float
    items: List[ItemDiffResponse]
