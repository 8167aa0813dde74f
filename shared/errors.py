"""
Shared error handling for the repository authorization service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for authorization services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(AccessLayerException):
    """A principal or resource is absent from the relationship store."""

    status_code = 404

    def __init__(self, kind: str, identifier: Any, details: Optional[Dict[str, Any]] = None):
        self.kind = kind
        self.identifier = identifier
        super().__init__(
            "NOT_FOUND",
            f"{kind} {identifier!r} not found",
            {"kind": kind, "identifier": identifier, **(details or {})}
        )


class StoreUnavailableError(AccessLayerException):
    """Transient failure (I/O or timeout) while reading the relationship store."""

    status_code = 503

    def __init__(self, message: str = "Relationship store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class InvalidRoleForResourceTypeError(AccessLayerException):
    """A stored role cannot be held over the resource type it was assigned to."""

    status_code = 500

    def __init__(self, role: str, resource_kind: str, details: Optional[Dict[str, Any]] = None):
        self.role = role
        self.resource_kind = resource_kind
        super().__init__(
            "INVALID_ROLE_FOR_RESOURCE_TYPE",
            f"role '{role}' cannot be assigned on a {resource_kind}",
            {"role": role, "resource_kind": resource_kind, **(details or {})}
        )


class UnknownRoleError(AccessLayerException):
    """A stored role label does not map to any known role."""

    status_code = 500

    def __init__(self, label: str, details: Optional[Dict[str, Any]] = None):
        self.label = label
        super().__init__(
            "UNKNOWN_ROLE",
            f"unable to decode role label '{label}'",
            {"label": label, **(details or {})}
        )


class PolicyEvaluationFailedError(AccessLayerException):
    """The policy evaluator could not parse or execute the fact set."""

    status_code = 502

    def __init__(self, message: str = "Policy evaluation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("POLICY_EVALUATION_FAILED", message, details)
