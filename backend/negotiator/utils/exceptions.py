"""
Custom business exceptions for the API layer.

WHAT: Domain-specific exceptions that map to HTTP status codes
WHY: Consistent error handling across all API endpoints
HOW: Custom exception classes with error codes and messages
"""

from typing import Optional, List, Dict, Any


class BusinessException(Exception):
    """Base class for business logic exceptions."""

    def __init__(self, message: str, code: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


class SessionNotFoundException(BusinessException):
    """Raised when no active negotiation session has the given id."""

    def __init__(self, session_id: str):
        super().__init__(
            message=f"Negotiation session not found: {session_id}",
            code="SESSION_NOT_FOUND",
            details={"session_id": session_id}
        )


class SavedSessionNotFoundException(BusinessException):
    """Raised when a saved session record does not exist."""

    def __init__(self, saved_id: str):
        super().__init__(
            message=f"Saved session not found: {saved_id}",
            code="SAVED_SESSION_NOT_FOUND",
            details={"saved_id": saved_id}
        )


class NegotiationAlreadyActiveException(BusinessException):
    """Raised when starting a negotiation would exceed the active session limit."""

    def __init__(self, active_count: int, max_allowed: int):
        super().__init__(
            message=f"Negotiation already in progress ({active_count}/{max_allowed} active sessions)",
            code="NEGOTIATION_ALREADY_ACTIVE",
            details={"active_count": active_count, "max_allowed": max_allowed}
        )


class InvalidPhaseException(BusinessException):
    """Raised when a command is not allowed in the session's current phase."""

    def __init__(self, session_id: str, command: str, current_phase: str):
        super().__init__(
            message=f"Cannot {command} session {session_id} in phase {current_phase}",
            code="INVALID_PHASE",
            details={"session_id": session_id, "command": command, "current_phase": current_phase}
        )


class ApprovalNotPendingException(BusinessException):
    """Raised when approve/reject does not match the pending approval request."""

    def __init__(self, session_id: str, request_id: str):
        super().__init__(
            message=f"No pending approval {request_id} for session {session_id}",
            code="APPROVAL_NOT_PENDING",
            details={"session_id": session_id, "request_id": request_id}
        )


class ValidationException(BusinessException):
    """Raised for validation errors."""

    def __init__(self, message: str, field_errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field_errors": field_errors} if field_errors else None
        )
