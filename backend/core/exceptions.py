"""Custom exceptions for the orchestration core."""

from typing import Any, Optional


class OrchestrationError(Exception):
    """Base exception for the orchestration core."""

    code: str = "ORCHESTRATION_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        """Initialize exception with message and status code.

        Args:
            message: Exception message
            status_code: HTTP status code a caller may map this error to
            code: Machine-readable error kind
            details: Structured context (limits, colliding values, ...)
        """
        self.message = message
        self.status_code = status_code
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(OrchestrationError):
    """Resource not found exception."""

    code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found", resource: Optional[str] = None, resource_id: Optional[str] = None):
        """Initialize NotFoundError with 404 status code."""
        super().__init__(
            message,
            404,
            details={"resource": resource, "id": resource_id},
        )


class ForbiddenError(OrchestrationError):
    """Forbidden operation exception."""

    code = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden", details: Optional[dict[str, Any]] = None):
        """Initialize ForbiddenError with 403 status code."""
        super().__init__(message, 403, details=details)


class ValidationError(OrchestrationError):
    """Validation error exception."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str = "Validation failed", details: Optional[dict[str, Any]] = None):
        """Initialize ValidationError with 422 status code."""
        super().__init__(message, 422, details=details)


class ConflictError(OrchestrationError):
    """Resource conflict exception."""

    code = "CONFLICT"

    def __init__(self, message: str = "Resource conflict", details: Optional[dict[str, Any]] = None):
        """Initialize ConflictError with 409 status code."""
        super().__init__(message, 409, details=details)


# ─── Uniqueness ───────────────────────────────────────────────

class DuplicateSlugError(ConflictError):
    code = "DUPLICATE_SLUG"

    def __init__(self, slug: str):
        self.slug = slug
        super().__init__(f"Tenant with slug '{slug}' already exists", details={"slug": slug})


class DuplicateEmailError(ConflictError):
    code = "DUPLICATE_EMAIL"

    def __init__(self, email: str, tenant_id: Optional[str] = None):
        self.email = email
        super().__init__(
            f"User with email '{email}' already exists",
            details={"email": email, "tenant_id": tenant_id},
        )


# ─── Quotas ───────────────────────────────────────────────────

class QuotaExceededError(OrchestrationError):
    """A tenant resource limit was reached or exceeded."""

    code = "QUOTA_EXCEEDED"
    resource: str = "resource"

    def __init__(self, tenant_id: str, limit: int, current: int, message: Optional[str] = None):
        self.tenant_id = tenant_id
        self.limit = limit
        self.current = current
        super().__init__(
            message or f"{self.resource} limit exceeded ({current}/{limit})",
            429,
            details={
                "tenant_id": tenant_id,
                "resource": self.resource,
                "limit": limit,
                "current": current,
            },
        )


class UserLimitExceededError(QuotaExceededError):
    code = "USER_LIMIT_EXCEEDED"
    resource = "users"


class ApiLimitExceededError(QuotaExceededError):
    code = "API_LIMIT_EXCEEDED"
    resource = "api_calls"


class StorageLimitExceededError(QuotaExceededError):
    code = "STORAGE_LIMIT_EXCEEDED"
    resource = "storage"


class ExecutionLimitExceededError(QuotaExceededError):
    code = "EXECUTION_LIMIT_EXCEEDED"
    resource = "concurrent_executions"


# ─── State ────────────────────────────────────────────────────

class AutomationDisabledError(ForbiddenError):
    code = "DISABLED"

    def __init__(self, automation_id: str):
        self.automation_id = automation_id
        super().__init__(
            f"Automation is disabled: {automation_id}",
            details={"automation_id": automation_id},
        )


class TenantInactiveError(ForbiddenError):
    code = "TENANT_INACTIVE"

    def __init__(self, tenant_id: str, status: str):
        self.tenant_id = tenant_id
        self.status = status
        super().__init__(
            f"Tenant {tenant_id} is {status}",
            details={"tenant_id": tenant_id, "status": status},
        )


class InvalidScheduleError(ValidationError):
    code = "INVALID_SCHEDULE"

    def __init__(self, expression: Optional[str], supported: list[str]):
        self.expression = expression
        super().__init__(
            f"Unsupported schedule expression: {expression!r}",
            details={"expression": expression, "supported": supported},
        )


class ConfigurationError(ValidationError):
    code = "CONFIGURATION_ERROR"


# ─── Boot / execution ─────────────────────────────────────────

class DependencyError(OrchestrationError):
    """Unresolved cross references found while booting.

    Carries every offending reference, not just the first one.
    """

    code = "DEPENDENCY_ERROR"

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        super().__init__(
            f"Invalid dependencies: {'; '.join(self.issues)}",
            500,
            details={"issues": self.issues},
        )


class ExecutionFailure(OrchestrationError):
    """An action executor raised while running an automation.

    Captured on the execution record; never raised to trigger sources.
    """

    code = "EXECUTION_FAILURE"

    def __init__(self, message: str, action_id: Optional[str] = None, action_type: Optional[str] = None):
        self.action_id = action_id
        self.action_type = action_type
        super().__init__(
            message,
            500,
            details={"action_id": action_id, "action_type": action_type},
        )
