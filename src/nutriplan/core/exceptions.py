"""Custom exception hierarchy for the NutriPlan backend.

Every domain error carries an HTTP ``status_code`` so that the API layer can
translate it into the JSON envelope without per-route try/except blocks.
Delivery errors never reach HTTP: they are recorded on the notification.
"""

from typing import Any


class NutriPlanBaseError(Exception):
    """Base exception for all NutriPlan specific errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def __str__(self) -> str:
        if self.error_code:
            return f"[{self.error_code}] {super().__str__()}"
        return super().__str__()


# ==============================================================================
# Authentication and Authorization Exceptions
# ==============================================================================


class AuthenticationError(NutriPlanBaseError):
    """Base class for authentication errors."""

    status_code = 401

    def __init__(
        self, message: str, *, error_code: str = "AUTHENTICATION_ERROR", **kwargs: Any
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class MissingCredentialError(AuthenticationError):
    """Raised when the Authorization header is missing or malformed."""

    def __init__(self, message: str = "Access token required") -> None:
        super().__init__(message, error_code="MISSING_CREDENTIAL")


class InvalidCredentialError(AuthenticationError):
    """Raised when a credential fails signature, shape or password checks."""

    def __init__(self, message: str = "Invalid token") -> None:
        super().__init__(message, error_code="INVALID_CREDENTIAL")


class CredentialExpiredError(AuthenticationError):
    """Raised when a credential is past its embedded expiry."""

    def __init__(self, message: str = "Token expired") -> None:
        super().__init__(message, error_code="CREDENTIAL_EXPIRED")


class AuthorizationError(NutriPlanBaseError):
    """Base class for authorization errors."""

    status_code = 403

    def __init__(
        self, message: str, *, error_code: str = "AUTHORIZATION_ERROR", **kwargs: Any
    ) -> None:
        super().__init__(message, error_code=error_code, **kwargs)


class InsufficientRoleError(AuthorizationError):
    """Raised when the principal's role is not among the allowed roles."""

    def __init__(
        self, allowed_roles: list[str] | None = None, role: str | None = None
    ) -> None:
        message = "Insufficient permissions"
        if allowed_roles:
            message += f": requires one of {', '.join(sorted(allowed_roles))}"
        super().__init__(
            message,
            error_code="INSUFFICIENT_ROLE",
            details={"required_roles": sorted(allowed_roles or []), "role": role},
        )
        self.allowed_roles = allowed_roles or []
        self.role = role


class AccountDisabledError(AuthorizationError):
    """Raised when user account is disabled."""

    def __init__(self, user_id: str | None = None) -> None:
        super().__init__("Account disabled", error_code="ACCOUNT_DISABLED")
        self.user_id = user_id


# ==============================================================================
# Request and Resource Exceptions
# ==============================================================================


class ValidationError(NutriPlanBaseError):
    """Raised when request data fails validation.

    ``errors`` aggregates every field-level violation so a client gets a single
    400 response listing all of them.
    """

    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        *,
        errors: list[dict[str, Any]] | None = None,
        field_name: str | None = None,
    ) -> None:
        super().__init__(
            message, error_code="VALIDATION_ERROR", details={"errors": errors or []}
        )
        self.errors = errors or []
        self.field_name = field_name


class NotFoundError(NutriPlanBaseError):
    """Raised when a resource does not exist or is outside the caller's scope."""

    status_code = 404

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        *,
        message: str | None = None,
    ) -> None:
        super().__init__(message or f"{resource} not found", error_code="NOT_FOUND")
        self.resource = resource
        self.resource_id = resource_id


class ConflictError(NutriPlanBaseError):
    """Raised on duplicate email registrations or duplicate pending invites."""

    status_code = 409

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code="CONFLICT")


class RateLimitExceededError(NutriPlanBaseError):
    """Raised when a client exceeds its request budget."""

    status_code = 429

    def __init__(self, retry_after: int) -> None:
        super().__init__(
            "Too many requests, please try again later",
            error_code="RATE_LIMITED",
        )
        self.retry_after = retry_after


# ==============================================================================
# Configuration and External Service Exceptions
# ==============================================================================


class ConfigurationError(NutriPlanBaseError):
    """Raised when configuration is invalid or missing."""

    status_code = 500

    def __init__(
        self, message: str, *, config_key: str | None = None, **kwargs: Any
    ) -> None:
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)
        self.config_key = config_key


class IdentityProviderNotConfiguredError(ConfigurationError):
    """Raised when a federated endpoint is hit without Firebase credentials."""

    status_code = 503

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(
            "Firebase not configured",
            error_code="IDENTITY_PROVIDER_NOT_CONFIGURED",
            details={"reason": reason} if reason else None,
        )


class IdentityProviderUnreachableError(NutriPlanBaseError):
    """Raised when the identity provider cannot be contacted."""

    status_code = 503

    def __init__(self, reason: str | None = None) -> None:
        message = "Identity provider is unavailable"
        if reason:
            message += f": {reason}"
        super().__init__(message, error_code="IDENTITY_PROVIDER_UNREACHABLE")
        self.reason = reason


class StorageError(NutriPlanBaseError):
    """Raised when the document store fails."""

    def __init__(self, message: str, *, collection: str | None = None) -> None:
        super().__init__(message, error_code="STORAGE_ERROR")
        self.collection = collection


class QueueError(NutriPlanBaseError):
    """Raised when the delivery queue backend fails."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code="QUEUE_ERROR")


# ==============================================================================
# Notification Delivery Exceptions
# ==============================================================================


class DeliveryError(NutriPlanBaseError):
    """Base class for channel delivery failures.

    ``retryable`` is False for failures that another attempt cannot fix.
    """

    retryable: bool = True

    def __init__(self, message: str, **kwargs: Any) -> None:
        kwargs.setdefault("error_code", "DELIVERY_ERROR")
        super().__init__(message, **kwargs)


class RecipientUnknownError(DeliveryError):
    """Raised when the notification's user has no deliverable address."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            f"Recipient {user_id} not found or has no email",
            error_code="RECIPIENT_UNKNOWN",
        )
        self.user_id = user_id


class SendError(DeliveryError):
    """Raised when the transport rejects or fails a send."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code="SEND_ERROR")


class ChannelNotImplementedError(DeliveryError):
    """Raised for channels accepted by the data model but without a sender."""

    retryable = False

    def __init__(self, channel: str) -> None:
        super().__init__("channel not implemented", error_code="CHANNEL_NOT_IMPLEMENTED")
        self.channel = channel
