"""Service error hierarchy for generation, billing and storage operations.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- TransientError: Retryable errors (network, rate limits, timeouts)
- PermanentError: Non-retryable errors (authentication, validation, business rules)
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    pass


class TransientError(ServiceError):
    """Transient error that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (5xx)
    """

    pass


class PermanentError(ServiceError):
    """Permanent error that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Malformed provider payloads
    - Configuration errors
    """

    pass


# Credit ledger errors
class InsufficientFundsError(PermanentError):
    """Pool balance is missing or lower than the requested debit."""

    def __init__(self, pool: str, required: float, available: float | None = None):
        self.pool = pool
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits in pool {pool}: required {required}, available {available or 0}"
        )


class UnknownPoolError(PermanentError):
    """Pool name is not a member of the closed CreditPool set."""

    pass


# Provider errors
class ProviderError(ServiceError):
    """Base exception for generation provider errors."""

    pass


class ProviderTransientError(ProviderError, TransientError):
    """Provider unreachable, rate limited or temporarily failing."""

    pass


class ProviderPermanentError(ProviderError, PermanentError):
    """Provider rejected the request or returned an unusable payload."""

    pass


class ProviderSubmissionError(ProviderError, PermanentError):
    """Submission to a provider did not produce a job handle."""

    pass


# Compositing errors (never escape the compositor)
class OutpaintError(ServiceError):
    """Outpainting request failed."""

    pass


class OutpaintTimeoutError(OutpaintError, TransientError):
    """Outpainting did not finish within the allowed attempts."""

    pass


# Storage errors
class StorageError(ServiceError):
    """Upload to durable asset storage failed."""

    pass


# Job lifecycle errors
class InvalidStateError(PermanentError):
    """Operation is not allowed in the job's current state."""

    pass


class JobNotFoundError(PermanentError):
    """No job exists with the given id."""

    pass
