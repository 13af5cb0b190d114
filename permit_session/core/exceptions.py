# MERGED: 3 sections with separation comments
#│   │   ├── SECTION 1: Base exceptions
#│   │   ├── SECTION 2: Recoverable engine exceptions
#│   │   └── SECTION 3: Fatal exceptions
"""
================================================================================
FILE: permit_session/core/exceptions.py
================================================================================

PURPOSE:
    Exception hierarchy for the conversation session engine. Every failure
    raised by the store, the lock, the extraction collaborator or the outbound
    transport is one of these types, so the Recovery Policy can pick a
    recovery routine from the exception class before falling back to message
    pattern matching.

WORKFLOW:
    1. Define base exception class (SessionEngineException)
    2. Define exception categories:
       - RecoverableException: transient failure, the user gets a recovery
         message and the conversation continues
       - FatalException: programming/configuration error, fail fast
    3. Define specific exception types for each component

IMPORTS:
    - None (only Python builtins)

INPUTS:
    - Exception message (str)
    - Error code (str) for categorization
    - Optional context dict (for logging and recovery routines)

OUTPUTS:
    - Exception instances (raised by stores, providers, pipeline)

KEY FACTS:
    - NO imports from permit_session modules (prevents circular dependencies)
    - All exceptions inherit from SessionEngineException
    - InvalidStateError is FATAL: an invalid (type, context) pairing is a bug,
      never a user-facing condition, and the recovery classifier re-raises it
    - ValidationError is recoverable here: a bad field value is recovered by
      re-prompting the user

EXCEPTION CATEGORIES:
    - RECOVERABLE (transient, recover and continue):
        * StoreError: key-value store unreachable after local retries
        * CorruptedStateError: stored session could not be decoded
        * ValidationError: user input rejected for a field
        * RateLimitExceededError: quota exhausted, carries retry_after
        * ProcessingError: anything else during message handling
        * LockUnavailableError: per-identity lock busy past the wait limit
        * ExtractionError: extraction collaborator failed
        * DeliveryError: outbound transport rejected a message
        * CircuitBreakerOpenError: collaborator short-circuited

    - FATAL (fail fast):
        * InvalidStateError: invalid state type/context pairing
        * ConfigurationError: invalid configuration
        * ServiceInitializationError: component failed to start

TESTING ENVIRONMENT:
    - Raise specific exception types from fakes to drive recovery routines
    - Verify error codes are correctly assigned
"""

# ================================================================================
# IMPORTS
# ================================================================================

from typing import Optional, Dict, Any

# ================================================================================
# SECTION 1: BASE EXCEPTIONS
# ================================================================================

class SessionEngineException(Exception):
    """
    Root exception for all session engine errors.

    Attributes:
        message (str): Human-readable error message
        error_code (str): Machine-readable error code for categorization
        context (dict): Additional context (optional)
    """

    def __init__(
        self,
        message: str,
        error_code: str = "UNKNOWN_ERROR",
        context: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dict for JSON response"""
        return {
            "error": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context
        }


class RecoverableException(SessionEngineException):
    """
    Transient failure.

    The Recovery Policy turns these into a user-facing recovery message;
    the conversation is never left without a reply.
    """
    pass


class FatalException(SessionEngineException):
    """
    Failure that cannot be recovered at runtime.

    Propagates to the caller untouched (fail fast).
    """
    pass

# ================================================================================
# SECTION 2: RECOVERABLE ENGINE EXCEPTIONS
# ================================================================================

class StoreError(RecoverableException):
    """Key-value store operation failed after local retries"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="STORE_ERROR", context=context)


class CorruptedStateError(RecoverableException):
    """Stored session record could not be parsed"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="CORRUPTED_STATE", context=context)


class ValidationError(RecoverableException):
    """
    User input rejected for a field.

    Attributes:
        field: Field key the input was meant for (None for menu options)
        attempts: Attempts recorded for that field so far
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        attempts: int = 0,
        context: Optional[Dict] = None,
    ):
        context = dict(context or {})
        context.setdefault("field", field)
        context.setdefault("attempts", attempts)
        super().__init__(message, error_code="VALIDATION_ERROR", context=context)
        self.field = field
        self.attempts = attempts


class RateLimitExceededError(RecoverableException):
    """Rate limit exceeded; retry_after is in seconds"""

    def __init__(
        self,
        message: str,
        retry_after: float = 0.0,
        context: Optional[Dict] = None,
    ):
        context = dict(context or {})
        context.setdefault("retry_after", retry_after)
        super().__init__(message, error_code="RATE_LIMIT_EXCEEDED", context=context)
        self.retry_after = retry_after


class ProcessingError(RecoverableException):
    """Generic failure while handling a message"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="PROCESSING_ERROR", context=context)


class LockUnavailableError(RecoverableException):
    """Per-identity lock could not be acquired in time"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="LOCK_UNAVAILABLE", context=context)


class ExtractionError(RecoverableException):
    """Extraction collaborator call failed"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="EXTRACTION_ERROR", context=context)


class DeliveryError(RecoverableException):
    """Outbound transport failed to deliver a message"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="DELIVERY_ERROR", context=context)


class CircuitBreakerOpenError(RecoverableException):
    """Circuit breaker is open (fail fast, retry later)"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="CIRCUIT_BREAKER_OPEN", context=context)

# ================================================================================
# SECTION 3: FATAL EXCEPTIONS
# ================================================================================

class InvalidStateError(FatalException):
    """State type/context pairing outside the allowed set"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="INVALID_STATE", context=context)


class ConfigurationError(FatalException):
    """Invalid configuration (fatal)"""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="CONFIG_ERROR", context=context)


class ServiceInitializationError(FatalException):
    """Raised when a component/provider fails to initialize (fatal)."""

    def __init__(self, message: str, context: Optional[Dict] = None):
        super().__init__(message, error_code="SERVICE_INIT_ERROR", context=context)
