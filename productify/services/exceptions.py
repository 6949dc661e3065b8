"""Domain-specific exceptions for service layer operations.

Structured exception hierarchy for jobs, the credit ledger and the work queues,
so that callers can log, map to HTTP responses and decide on retries without
string matching.

Architecture:
- ServiceError: Base exception with correlation ID and context support
- Category Base Classes: AuthError, BusinessError, InfrastructureError
- Specific Exceptions: Concrete exceptions for job, ledger and queue scenarios
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union
from http import HTTPStatus


class ErrorSeverity(Enum):
    """Error severity levels for logging and monitoring."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification and handling."""
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    VALIDATION = "validation"
    BUSINESS_RULE = "business_rule"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    EXTERNAL_SERVICE = "external_service"
    INFRASTRUCTURE = "infrastructure"
    SYSTEM = "system"


class ServiceError(Exception):
    """Base exception for all service layer errors.

    Subclasses set `severity`, `category` and `http_status` as class defaults;
    a keyword argument overrides them for a single instance.

    Attributes:
        message: Internal message, logged but never sent to clients as is
        error_code: Machine-readable code, stable across releases
        correlation_id: Request correlation ID for tracing
        details: Additional error context
        user_message: Text returned to the client
    """

    severity = ErrorSeverity.MEDIUM
    category = ErrorCategory.SYSTEM
    http_status = HTTPStatus.INTERNAL_SERVER_ERROR
    default_user_message: Optional[str] = None

    def __init__(
        self,
        message: str,
        error_code: str = "SERVICE_ERROR",
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        severity: Optional[ErrorSeverity] = None,
        category: Optional[ErrorCategory] = None,
        http_status: Optional[HTTPStatus] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.correlation_id = correlation_id
        self.details = details or {}
        self.user_message = user_message or self.default_user_message or message
        if severity is not None:
            self.severity = severity
        if category is not None:
            self.category = category
        if http_status is not None:
            self.http_status = http_status

    def to_dict(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """Serialize for an API response; `include_sensitive` adds details and the internal message."""
        result = {
            "error_code": self.error_code,
            "message": self.user_message,
            "severity": self.severity.value,
            "category": self.category.value,
            "http_status": self.http_status.value
        }

        if self.correlation_id:
            result["correlation_id"] = self.correlation_id

        if include_sensitive and self.details:
            result["details"] = self.details
            result["internal_message"] = self.message

        return result

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


# =============================================================================
# AUTHENTICATION & AUTHORIZATION ERRORS
# =============================================================================

class AuthError(ServiceError):
    """Base class for authentication and authorization errors."""

    category = ErrorCategory.AUTHENTICATION
    http_status = HTTPStatus.UNAUTHORIZED


class AuthenticationError(AuthError):
    """Bearer token missing, malformed or expired."""

    default_user_message = "Could not validate credentials."

    def __init__(
        self,
        message: str = "Authentication failed",
        correlation_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, "AUTH_FAILED", correlation_id, details)


class UserNotFoundError(AuthError):
    """User referenced by a token or a ledger operation does not exist."""

    category = ErrorCategory.RESOURCE_NOT_FOUND
    http_status = HTTPStatus.NOT_FOUND
    default_user_message = "User account not found."

    def __init__(self, user_id: int, correlation_id: Optional[str] = None):
        super().__init__("User not found", "USER_NOT_FOUND", correlation_id, {"user_id": user_id})


class UserInactiveError(AuthError):
    """User account is inactive."""

    category = ErrorCategory.AUTHORIZATION
    http_status = HTTPStatus.FORBIDDEN
    default_user_message = "Your account is inactive. Please contact support."

    def __init__(self, user_id: int, correlation_id: Optional[str] = None):
        super().__init__("User account is inactive", "USER_INACTIVE", correlation_id, {"user_id": user_id})


# =============================================================================
# VALIDATION ERRORS
# =============================================================================

class ValidationError(ServiceError):
    """Input validation failed. Nothing is queued and the ledger is untouched."""

    severity = ErrorSeverity.LOW
    category = ErrorCategory.VALIDATION
    http_status = HTTPStatus.BAD_REQUEST

    def __init__(
        self,
        field: str,
        message: str,
        correlation_id: Optional[str] = None,
        validation_errors: Optional[List[Dict[str, str]]] = None
    ):
        details = {"field": field, "validation_message": message}
        if validation_errors:
            details["validation_errors"] = validation_errors

        super().__init__(
            message=f"Validation failed for {field}: {message}",
            error_code="VALIDATION_ERROR",
            correlation_id=correlation_id,
            details=details,
            user_message=f"Invalid {field}: {message}"
        )


# =============================================================================
# BUSINESS DOMAIN ERRORS
# =============================================================================

class BusinessError(ServiceError):
    """Base class for business domain errors."""

    category = ErrorCategory.BUSINESS_RULE
    http_status = HTTPStatus.BAD_REQUEST


class ResourceNotFoundError(BusinessError):
    """Base class for resource not found errors."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Union[int, str],
        user_id: Optional[int] = None,
        correlation_id: Optional[str] = None
    ):
        details = {"resource_type": resource_type, "resource_id": resource_id}
        if user_id is not None:
            details["user_id"] = user_id

        super().__init__(
            message=f"{resource_type} not found",
            error_code=f"{resource_type.upper()}_NOT_FOUND",
            correlation_id=correlation_id,
            details=details,
            user_message=f"{resource_type} not found.",
            category=ErrorCategory.RESOURCE_NOT_FOUND,
            http_status=HTTPStatus.NOT_FOUND
        )


# =============================================================================
# JOB DOMAIN ERRORS
# =============================================================================

class JobNotFoundError(ResourceNotFoundError):
    """Job does not exist."""

    def __init__(
        self,
        job_id: str,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            resource_type="Job",
            resource_id=job_id,
            correlation_id=correlation_id
        )


class JobAccessDeniedError(BusinessError):
    """Job exists but belongs to another user."""

    def __init__(
        self,
        job_id: str,
        user_id: int,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"User {user_id} does not own job {job_id}",
            error_code="JOB_ACCESS_DENIED",
            correlation_id=correlation_id,
            details={"job_id": job_id, "user_id": user_id},
            user_message="You don't have permission to access this job.",
            category=ErrorCategory.AUTHORIZATION,
            http_status=HTTPStatus.FORBIDDEN
        )


class InvalidJobStateError(BusinessError):
    """Operation is not allowed in the job's current status."""

    def __init__(
        self,
        job_id: str,
        current_status: str,
        operation: str,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Cannot {operation} job {job_id} in status '{current_status}'",
            error_code="INVALID_JOB_STATE",
            correlation_id=correlation_id,
            details={"job_id": job_id, "status": current_status, "operation": operation},
            user_message=f"Only failed jobs can be retried (current status: {current_status}).",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.CONFLICT,
            http_status=HTTPStatus.CONFLICT
        )


# =============================================================================
# LEDGER ERRORS
# =============================================================================

class InsufficientCreditsError(BusinessError):
    """Debit refused because the balance is lower than the amount."""

    def __init__(
        self,
        user_id: int,
        required: int,
        available: int,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"User {user_id} needs {required} credits but has {available}",
            error_code="INSUFFICIENT_CREDITS",
            correlation_id=correlation_id,
            details={"user_id": user_id, "required": required, "available": available},
            user_message=f"Insufficient credits: {required} required, {available} available.",
            severity=ErrorSeverity.LOW,
            http_status=HTTPStatus.PAYMENT_REQUIRED
        )
        self.required = required
        self.available = available


# =============================================================================
# EXTERNAL SERVICE & INFRASTRUCTURE ERRORS
# =============================================================================

class InfrastructureError(ServiceError):
    """Base class for infrastructure-related errors."""

    severity = ErrorSeverity.HIGH
    category = ErrorCategory.INFRASTRUCTURE
    default_user_message = "A system error occurred. Please try again later."


class StageFailureError(InfrastructureError):
    """A generation collaborator reported a terminal error.

    Raise this from a generator when retrying cannot help (rejected input,
    content policy). Any other exception is treated as transient and retried
    by the queue.
    """

    def __init__(
        self,
        stage: str,
        reason: str,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Stage '{stage}' failed: {reason}",
            error_code="STAGE_FAILED",
            correlation_id=correlation_id,
            details={"stage": stage, "reason": reason},
            user_message="Generation failed for this item.",
            category=ErrorCategory.EXTERNAL_SERVICE,
            http_status=HTTPStatus.BAD_GATEWAY
        )
        self.stage = stage
        self.reason = reason


class QueueDeliveryExhaustedError(InfrastructureError):
    """A queue entry used up its attempts and was dead-lettered."""

    def __init__(
        self,
        queue_name: str,
        entry_id: int,
        attempts: int,
        last_error: Optional[str] = None,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Entry {entry_id} on '{queue_name}' exhausted {attempts} attempts: {last_error}",
            error_code="QUEUE_DELIVERY_EXHAUSTED",
            correlation_id=correlation_id,
            details={
                "queue_name": queue_name,
                "entry_id": entry_id,
                "attempts": attempts,
                "last_error": last_error,
            },
            user_message="Generation failed after several attempts."
        )
        self.queue_name = queue_name
        self.entry_id = entry_id
        self.attempts = attempts
        self.last_error = last_error


class UnknownQueueError(InfrastructureError):
    """Queue name is not registered."""

    def __init__(
        self,
        queue_name: str,
        correlation_id: Optional[str] = None
    ):
        super().__init__(
            message=f"Queue '{queue_name}' is not registered",
            error_code="QUEUE_NOT_FOUND",
            correlation_id=correlation_id,
            details={"queue_name": queue_name},
            user_message=f"Queue '{queue_name}' not found.",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.RESOURCE_NOT_FOUND,
            http_status=HTTPStatus.NOT_FOUND
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def create_error_response(
    error: ServiceError,
    include_details: bool = False
) -> Dict[str, Any]:
    """Create standardized error response dictionary."""
    return error.to_dict(include_sensitive=include_details)
