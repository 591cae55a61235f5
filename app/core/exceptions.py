"""
Base exception classes for application-wide error handling.

Every domain error carries a human message, a machine-readable
``error_code`` and optional ``details``, and knows the HTTP status it
maps to so views and the DRF exception handler render them uniformly.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input (400)
    ├── PermissionDeniedError - Caller may not act on the resource (403)
    ├── NotFoundError - Resource not found (404)
    ├── ConflictError - Current state forbids the operation (409)
    └── ExternalServiceError - Payment provider or other upstream failed (502)

Usage:
    from core.exceptions import ValidationError

    raise ValidationError(
        "Base amount must be positive",
        error_code="INVALID_BASE_AMOUNT",
        details={"base_amount": "-5.00"},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, states)
        http_status: Status code used when rendered by the API layer
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 500

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Order is not in a startable status",
                "error_code": "INVALID_ORDER_STATUS",
                "details": {"status": "created"}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for service-layer checks (non-positive amounts, out-of-range
    extension days, malformed payment metadata). Request body shape is
    validated by DRF serializers before reaching the services.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource does not exist."""

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    Example:
        if order.seller_id != user.id:
            raise PermissionDeniedError(
                "Only the seller can deliver this order",
                error_code="SELLER_ONLY",
            )
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for invalid state transitions, optimistic locking failures and
    balance guards. HTTP 409 Conflict.
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but don't expose provider
    internals to clients.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
