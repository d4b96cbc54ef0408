"""
SpecGate Error Hierarchy

Base error and specific error types for all SpecGate components.
Errors carry metadata for structured logging.

Rule violations are normal return values; only the gating operation turns
blocking violations into ConstitutionalViolationError.
"""

from typing import Any, Dict, List, Optional, TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from specgate.models.rules import Violation


class SpecGateError(RuntimeError):
    """
    Base error for SpecGate components. Carries metadata for structured logging.

    Attributes:
        category: Error category for classification (e.g., "input", "scoring")
        retryable: Whether the caller can correct the input and retry
        metadata: Additional context for logging and debugging
    """

    category: str = "runtime"
    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        metadata: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.metadata = metadata or {}
        if retryable is not None:
            self.retryable = retryable


# Validation Errors
class ValidationError(SpecGateError):
    """Raised when input validation fails."""

    category = "validation"
    retryable = False


# Configuration Errors
class ConfigError(SpecGateError):
    """Raised when configuration is invalid or missing."""

    category = "config"
    retryable = False


# Input Errors
class InputError(SpecGateError):
    """
    Raised for caller mistakes detected before any state is touched.

    The caller is expected to correct the request and retry.
    """

    category = "input"
    retryable = True


class SessionNotFoundError(InputError):
    """Raised when a session id is not registered."""


class QuestionNotFoundError(InputError):
    """Raised when an answer targets a question that is not open in the session."""


class SessionTerminalError(InputError):
    """Raised when an answer arrives for a COMPLETED or TIMED_OUT session."""

    retryable = False


class SessionPausedError(InputError):
    """Raised when an answer arrives for a PAUSED session."""


class InvalidTransitionError(InputError):
    """Raised when a status transition is not allowed from the current state."""

    retryable = False


# Rule Errors
class ConstitutionalViolationError(SpecGateError):
    """
    Raised by the rule gate when blocking critical violations exist.

    Attributes:
        violations: Every violation from the evaluation
        blocking: The blocking, critical subset that triggered the failure
    """

    category = "rules"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        violations: Optional[List["Violation"]] = None,
        blocking: Optional[List["Violation"]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, metadata=metadata)
        self.violations = list(violations or [])
        self.blocking = list(blocking or [])


# Scoring Errors
class ScoringAnomalyError(SpecGateError):
    """
    Raised when the scorer breaks its own invariants.

    Covers confidence regressions without a new critical gap and scores
    outside 0-100. Indicates a defect, never recoverable by the caller.
    """

    category = "scoring"
    retryable = False


class AmbiguityNotFoundError(InputError):
    """Raised when an ambiguity id is not known to the detector."""
