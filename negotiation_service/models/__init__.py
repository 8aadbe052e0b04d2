# negotiation_service/models/__init__.py
# Import all models so SQLAlchemy can resolve string relationships.

from negotiation_service.db.base_class import Base
from negotiation_service.models.proposal import Proposal
from negotiation_service.models.proposal_version import ProposalVersion
from negotiation_service.models.proposal_line_item import ProposalLineItem
from negotiation_service.models.milestone_payment import MilestonePayment
from negotiation_service.models.negotiation_session import NegotiationSession
from negotiation_service.models.negotiation_comment import NegotiationComment
from negotiation_service.models.line_item_negotiation import LineItemNegotiation
from negotiation_service.models.milestone_adjustment import MilestoneAdjustment
from negotiation_service.models.rfp_invite import RFPInvite
from negotiation_service.models.negotiation_audit_log import NegotiationAuditLog
