"""cipherproof error handling.

Exception hierarchy for the proof orchestration layer and the retry
policy used by callers that want automatic retries of transient failures.
"""

from .exceptions import (
    ArtifactLoadError,
    CipherProofError,
    ConfigurationError,
    EngineError,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    NotInitializedError,
    ProvingError,
    ValidationError,
    WitnessExecutionError,
    create_length_error,
)
from .recovery import RetryPolicy, execute_with_retry

__all__ = [
    # Exceptions
    "CipherProofError",
    "ConfigurationError",
    "ArtifactLoadError",
    "ValidationError",
    "NotInitializedError",
    "WitnessExecutionError",
    "EngineError",
    "ProvingError",
    "ErrorCategory",
    "ErrorContext",
    "ErrorSeverity",
    "create_length_error",
    # Recovery
    "RetryPolicy",
    "execute_with_retry",
]
