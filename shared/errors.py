"""
Shared error handling for the What Went Wrong API.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    error: str
    detail: Optional[str] = None


class ApiException(Exception):
    """Base exception for API services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None,
                 status_code: Optional[int] = None, expose_code: bool = False):
        self.code = code
        self.message = message
        self.details = details or {}
        self.expose_code = expose_code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response.

        Only the stable message (and the error code when ``expose_code`` is
        set) reaches the client; ``details`` stay server-side.
        """
        return ErrorResponse(
            error=self.message,
            detail=self.code if self.expose_code else None,
        )


class ConfigurationError(ApiException):
    """Fatal startup configuration errors."""

    status_code = 500

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("configuration_error", message, details)


class Unauthorized(ApiException):
    """Authentication failures. ``reason`` is a stable machine-readable code."""

    status_code = 401

    def __init__(self, reason: str = "unauthorized", message: str = "invalid token",
                 details: Optional[Dict[str, Any]] = None, expose_reason: bool = True):
        self.reason = reason
        super().__init__(reason, message, details, expose_code=expose_reason)


class ForbiddenError(ApiException):
    """Feature or limit not available on the caller's plan."""

    status_code = 403

    def __init__(self, reason: str, message: str = "forbidden", details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__(reason, message, details, expose_code=True)


class InvalidPlan(ApiException):
    """A plan change named a plan outside the known set."""

    status_code = 400

    def __init__(self, plan: Optional[str], details: Optional[Dict[str, Any]] = None):
        self.plan = plan
        super().__init__("invalid_plan", "invalid plan", {"plan": plan, **(details or {})}, expose_code=True)


class PlanStoreError(ApiException):
    """Storage failure in the plan store."""

    status_code = 500

    def __init__(self, message: str = "Plan storage failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("plan_store_error", message, details)


class EntitlementLookupFault(ApiException):
    """The plan backing a request's entitlements could not be loaded."""

    status_code = 500

    def __init__(self, message: str = "failed to load user plan", details: Optional[Dict[str, Any]] = None):
        super().__init__("entitlement_lookup_fault", message, details)
