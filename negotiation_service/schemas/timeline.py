# negotiation_service/schemas/timeline.py
from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime
from enum import Enum


class TimelineStepKind(str, Enum):
    SESSION_CREATED = "session_created"
    RESPONSE_SUBMITTED = "response_submitted"
    RESOLVED = "resolved"
    CANCELLED = "cancelled"
    COMMENT = "comment"


class VersionStepKind(str, Enum):
    ORIGINAL_OFFER = "original_offer"
    CHANGE_REQUEST = "change_request"
    UPDATED_OFFER = "updated_offer"


class TimelineStep(BaseModel):
    kind: TimelineStepKind
    timestamp: datetime
    label: str
    session_id: str
    session_status: str
    author_type: Optional[str] = None
    message: Optional[str] = None
    target_total: Optional[float] = None
    target_reduction_percent: Optional[float] = None
    version_id: Optional[str] = None
    outcome: Optional[str] = None
    comment_id: Optional[str] = None


class StepView(BaseModel):
    type: str  # proposal, negotiation_session, version
    id: str


class VersionStep(BaseModel):
    kind: VersionStepKind
    date: datetime
    label: str
    version: Optional[int] = None
    status: Optional[str] = None
    view: StepView


class TimelineResponse(BaseModel):
    proposal_id: str
    steps: List[TimelineStep]


class VersionStepsResponse(BaseModel):
    proposal_id: str
    steps: List[VersionStep]
