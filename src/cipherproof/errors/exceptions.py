"""Exception hierarchy for cipherproof.

This module defines the error taxonomy used by the proof orchestration
layer. Every error carries a machine readable code, a severity, a category
and a retryable flag so the transport layer can map failures onto wire
responses without inspecting messages.
"""

import time
import traceback
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """Error severity levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories."""

    CONFIGURATION = "configuration"
    ARTIFACT = "artifact"
    VALIDATION = "validation"
    LIFECYCLE = "lifecycle"
    WITNESS = "witness"
    ENGINE = "engine"
    SYSTEM = "system"


@dataclass
class ErrorContext:
    """Context information for an error."""

    timestamp: float = field(default_factory=time.time)
    component: Optional[str] = None
    operation: Optional[str] = None
    algorithm_id: Optional[str] = None
    request_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "timestamp": self.timestamp,
            "component": self.component,
            "operation": self.operation,
            "algorithm_id": self.algorithm_id,
            "request_id": self.request_id,
            "metadata": self.metadata,
        }


class CipherProofError(Exception):
    """Base exception for all cipherproof errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        retryable: bool = False,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.category = category
        self.context = context or ErrorContext()
        self.cause = cause
        self.retryable = retryable
        self.metadata = metadata or {}
        self.timestamp = time.time()
        self.traceback = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "severity": self.severity.value,
            "category": self.category.value,
            "context": self.context.to_dict(),
            "cause": str(self.cause) if self.cause else None,
            "retryable": self.retryable,
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    def __str__(self) -> str:
        parts = [f"{self.__class__.__name__}: {self.message}"]

        if self.error_code:
            parts.append(f"Code: {self.error_code}")

        if self.severity != ErrorSeverity.MEDIUM:
            parts.append(f"Severity: {self.severity.value}")

        if self.retryable:
            parts.append("Retryable: Yes")

        return " | ".join(parts)


class ConfigurationError(CipherProofError):
    """Unknown algorithm, unknown backend kind or malformed configuration."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        config_value: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, category=ErrorCategory.CONFIGURATION, **kwargs)
        self.config_key = config_key
        self.config_value = config_value

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "config_key": self.config_key,
                "config_value": str(self.config_value)
                if self.config_value is not None
                else None,
            }
        )
        return data


class ArtifactLoadError(CipherProofError):
    """Fetching or parsing a compiled circuit artifact failed."""

    def __init__(
        self,
        message: str,
        backend_name: Optional[str] = None,
        artifact_name: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "ARTIFACT_LOAD_ERROR")
        kwargs.setdefault("retryable", True)
        super().__init__(message, category=ErrorCategory.ARTIFACT, **kwargs)
        self.backend_name = backend_name
        self.artifact_name = artifact_name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {"backend_name": self.backend_name, "artifact_name": self.artifact_name}
        )
        return data


class ValidationError(CipherProofError):
    """Malformed caller input."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[Any] = None,
        actual: Optional[Any] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "VALIDATION_ERROR")
        super().__init__(
            message, category=ErrorCategory.VALIDATION, severity=ErrorSeverity.LOW, **kwargs
        )
        self.field = field
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "field": self.field,
                "expected": str(self.expected) if self.expected is not None else None,
                "actual": str(self.actual) if self.actual is not None else None,
            }
        )
        return data


class NotInitializedError(CipherProofError):
    """Operation requested against an algorithm with no ready binding."""

    def __init__(
        self,
        message: str,
        algorithm_id: Optional[str] = None,
        state: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "NOT_INITIALIZED")
        super().__init__(message, category=ErrorCategory.LIFECYCLE, **kwargs)
        self.algorithm_id = algorithm_id
        self.state = state

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"algorithm_id": self.algorithm_id, "state": self.state})
        return data


class WitnessExecutionError(CipherProofError):
    """The supplied inputs do not satisfy the circuit.

    This is the expected outcome for a false statement, e.g. a ciphertext
    that is not the encryption of the plaintext under the key.
    """

    def __init__(self, message: str, algorithm_id: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "WITNESS_EXECUTION_FAILED")
        super().__init__(
            message, category=ErrorCategory.WITNESS, severity=ErrorSeverity.LOW, **kwargs
        )
        self.algorithm_id = algorithm_id


class EngineError(CipherProofError):
    """Backend failure during engine setup, release or invocation."""

    def __init__(
        self,
        message: str,
        backend_kind: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("error_code", "ENGINE_ERROR")
        kwargs.setdefault("retryable", True)
        super().__init__(
            message,
            category=ErrorCategory.ENGINE,
            severity=ErrorSeverity.HIGH,
            **kwargs,
        )
        self.backend_kind = backend_kind
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update({"backend_kind": self.backend_kind, "operation": self.operation})
        return data


class ProvingError(EngineError):
    """The proving engine failed to construct a proof."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("error_code", "PROVING_FAILED")
        kwargs.setdefault("operation", "prove")
        super().__init__(message, **kwargs)


def create_length_error(
    field: str, expected: int, actual: int, message: Optional[str] = None
) -> ValidationError:
    """Create a validation error for a byte field of the wrong length."""
    if message is None:
        message = f"Field '{field}' must be {expected} bytes, got {actual}"

    return ValidationError(message=message, field=field, expected=expected, actual=actual)
