# negotiation_service/core/exceptions.py
"""
Error taxonomy for the negotiation engine.

ValidationError  - bad input, raised before anything is persisted.
ConflictError    - duplicate version number, illegal state transition.
NotFoundError    - referenced record does not exist.

"A negotiation is already in progress" is not an exception: createSession
returns an ExistingSessionConflict value instead (see services.negotiation).
"""
from typing import Optional


class NegotiationError(Exception):
    """Base class for every error the engine raises on purpose."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(NegotiationError):
    def __init__(
        self,
        message: str,
        *,
        current_sum: Optional[float] = None,
        delta: Optional[float] = None,
    ):
        super().__init__(message)
        self.current_sum = current_sum
        self.delta = delta


class NotFoundError(NegotiationError):
    pass


class ConflictError(NegotiationError):
    pass


class VersionConflictError(ConflictError):
    """Another writer already took this (proposal_id, version_number) pair."""

    def __init__(self, proposal_id: str, version_number: int):
        super().__init__(
            f"Version {version_number} already exists for proposal {proposal_id}; "
            "retry with a fresh version number."
        )
        self.proposal_id = proposal_id
        self.version_number = version_number


class InvalidTransitionError(ConflictError):
    def __init__(self, from_status: str, to_status: Optional[str], event: str):
        target = f" to '{to_status}'" if to_status else ""
        super().__init__(
            f"Cannot {event} a negotiation with status '{from_status}'{target}."
        )
        self.from_status = from_status
        self.to_status = to_status
        self.event = event
