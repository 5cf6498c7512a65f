"""
Custom exceptions for the visibility scanner.

This module provides a hierarchy of exceptions that enable type-safe error
handling throughout the application. All exceptions inherit from the base
VisibilityScannerError for consistent catching.

Exception Hierarchy:
    VisibilityScannerError (base)
    ├── ConfigurationError
    │   ├── ConfigFileNotFoundError
    │   ├── ConfigValidationError
    │   └── APIKeyMissingError
    ├── DatabaseError
    │   ├── DatabaseInitError
    │   ├── DatabaseMigrationError
    │   └── DatabaseQueryError
    ├── ProviderError
    │   ├── ProviderAuthenticationError
    │   ├── ProviderRateLimitError
    │   ├── ProviderTimeoutError
    │   ├── ProviderNetworkError
    │   ├── ProviderServerError
    │   ├── ProviderResponseError
    │   └── InsufficientCreditsError
    ├── CircuitOpenError
    └── BatchScanError
        ├── BatchScanNotFoundError
        └── InvalidTransitionError

Provider errors never escape a single iteration: the batch engine classifies
them (see batch.errors) and turns them into retry/skip/pause/fail decisions.
Database errors propagate to the caller so the workflow runner can retry the
unit of work.

Usage:
    from visibility_scanner.exceptions import ConfigurationError

    try:
        config = load_config(path)
    except ConfigFileNotFoundError as e:
        logger.error(f"Config file not found: {e}")
        sys.exit(1)
"""


class VisibilityScannerError(Exception):
    """
    Base exception for all visibility scanner errors.

    Example:
        try:
            engine_result = await engine.start(batch_id)
        except VisibilityScannerError as e:
            logger.error(f"Scanner error: {e}")
    """

    pass


# ============================================================================
# Configuration Errors
# ============================================================================


class ConfigurationError(VisibilityScannerError):
    """
    Base class for configuration-related errors.

    Should be caught and result in exit code 1 (configuration error).
    """

    pass


class ConfigFileNotFoundError(ConfigurationError):
    """Configuration file does not exist at the specified path."""

    pass


class ConfigValidationError(ConfigurationError):
    """
    Configuration file is invalid (schema validation failed).

    Example:
        raise ConfigValidationError("Field 'questions' must be a non-empty list")
    """

    pass


class APIKeyMissingError(ConfigurationError):
    """
    Required API key environment variable is not set.

    Example:
        raise APIKeyMissingError("GEMINI_API_KEY environment variable not set")
    """

    pass


# ============================================================================
# Database Errors
# ============================================================================


class DatabaseError(VisibilityScannerError):
    """
    Base class for database-related errors.

    Should be caught and result in exit code 2 (database error).
    """

    pass


class DatabaseInitError(DatabaseError):
    """SQLite database cannot be created or opened."""

    pass


class DatabaseMigrationError(DatabaseError):
    """
    Database schema migration failed.

    Example:
        raise DatabaseMigrationError("Failed to migrate from v0 to v1")
    """

    pass


class DatabaseQueryError(DatabaseError):
    """A SQL statement failed to execute."""

    pass


# ============================================================================
# Provider Errors
# ============================================================================


class ProviderError(VisibilityScannerError):
    """
    Base class for errors raised while querying an AI provider.

    Attributes:
        provider: Provider identifier (e.g. "openai"), if known
        status_code: HTTP status code returned by the provider, if any
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class ProviderAuthenticationError(ProviderError):
    """
    Provider rejected the credentials (HTTP 401/403).

    This error is NOT retried: the batch fails with reason auth_error.
    """

    pass


class ProviderRateLimitError(ProviderError):
    """
    Provider rate limit or quota exceeded (HTTP 429).

    Retried with a fixed 60s delay; exhaustion pauses the batch.
    """

    pass


class ProviderTimeoutError(ProviderError):
    """
    Provider call exceeded its wall-clock timeout.

    The iteration is skipped without retry.
    """

    pass


class ProviderNetworkError(ProviderError):
    """Connection, DNS or socket failure while reaching the provider."""

    pass


class ProviderServerError(ProviderError):
    """Provider returned a 5xx response."""

    pass


class ProviderResponseError(ProviderError):
    """
    Provider returned an invalid or malformed response.

    Example:
        raise ProviderResponseError("OpenAI response missing 'choices' field")
    """

    pass


class InsufficientCreditsError(ProviderError):
    """
    The billing layer reports an insufficient credit balance.

    Pauses the batch with reason insufficient_credits.
    """

    pass


# ============================================================================
# Circuit Breaker
# ============================================================================


class CircuitOpenError(VisibilityScannerError):
    """
    Raised when a call is short-circuited by an open circuit breaker.

    Attributes:
        key: Dependency key whose breaker is open
    """

    def __init__(self, key: str):
        super().__init__(f"Circuit breaker open for '{key}'")
        self.key = key


# ============================================================================
# Batch Scan Errors
# ============================================================================


class BatchScanError(VisibilityScannerError):
    """Base class for batch lifecycle errors."""

    pass


class BatchScanNotFoundError(BatchScanError):
    """No batch scan exists with the requested id."""

    pass


class InvalidTransitionError(BatchScanError):
    """
    Requested lifecycle transition is not allowed from the current status.

    Attributes:
        current_status: Status the batch was in
        requested: Name of the rejected transition

    Example:
        raise InvalidTransitionError(
            "Cannot resume batch in status 'completed'",
            current_status="completed",
            requested="resume",
        )
    """

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        requested: str | None = None,
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested = requested
