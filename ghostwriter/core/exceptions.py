"""
Domain exceptions for the sync and suggestion pipeline.

Rate-limit denials and missing credentials are not exceptions; they are
reported through result objects. These types cover programming errors
(illegal transitions, consuming a finished suggestion) and external service
failures that callers decide to degrade or propagate.
"""
from typing import Any, Dict, Optional


class GhostwriterError(Exception):
    """Base exception for the ghostwriter package"""


class InvalidSyncTransition(GhostwriterError):
    """Raised when a connected account is moved along an edge the state machine does not allow"""

    def __init__(self, current_status: str, new_status: str):
        super().__init__(f"Invalid sync status transition: {current_status} -> {new_status}")
        self.current_status = current_status
        self.new_status = new_status


class SuggestionStateError(GhostwriterError):
    """Raised when a suggestion is consumed from a non-pending or expired state"""

    def __init__(self, suggestion_id: int, status: str, reason: Optional[str] = None):
        message = reason or f"Suggestion {suggestion_id} cannot be consumed from status '{status}'"
        super().__init__(message)
        self.suggestion_id = suggestion_id
        self.status = status


class AIResponseError(GhostwriterError):
    """Raised when the AI text service returns output that does not match the expected contract"""

    def __init__(self, message: str, raw_response: Optional[str] = None):
        super().__init__(message)
        self.raw_response = raw_response


class NetworkAPIError(GhostwriterError):
    """Social network API specific exceptions"""

    def __init__(self, message: str, status_code: Optional[int] = None, response_data: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_data = response_data
