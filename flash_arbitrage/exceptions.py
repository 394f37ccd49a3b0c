"""
Exception hierarchy for the flash arbitrage pipeline.

Every runtime failure the pipeline can recover from derives from
FlashArbitrageError. A flash loan that is taken and not repaid is not a
runtime condition and is raised as UnrepaidLoanError (an AssertionError).
"""

from enum import Enum
from typing import Any, Dict, Optional


class ValidationKind(str, Enum):
    """Which security check rejected an evaluation."""

    INSUFFICIENT_SOURCES = "InsufficientSources"
    PRICE_DEVIATION = "PriceDeviation"
    SLIPPAGE_EXCEEDED = "SlippageExceeded"


class RevertReason(str, Enum):
    """Reasons the execution contract aborts an invocation."""

    UNAUTHORIZED_CALLER = "UnauthorizedCaller"
    INITIATOR_MISMATCH = "InitiatorMismatch"
    INSUFFICIENT_REPAYMENT = "InsufficientRepayment"
    UNSUPPORTED_VENUE = "UnsupportedVenue"
    SLIPPAGE_EXCEEDED = "SlippageExceeded"
    INVALID_PATH = "InvalidPath"
    NOT_OWNER = "NotOwner"
    NOT_AUTHORIZED = "NotAuthorized"
    EMERGENCY_STOPPED = "EmergencyStopped"
    REENTRANT_CALL = "ReentrantCall"
    FLASH_LOAN_NOT_REPAID = "FlashLoanNotRepaid"
    INSUFFICIENT_LIQUIDITY = "InsufficientLiquidity"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    DEADLINE_EXPIRED = "DeadlineExpired"


class FlashArbitrageError(Exception):
    """Base exception for all flash arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(FlashArbitrageError):
    """Raised when there are configuration-related issues."""

    pass


class StaleDataError(FlashArbitrageError):
    """Raised when a pool refresh fails and the cached state is kept."""

    def __init__(
        self,
        message: str,
        venue: Optional[str] = None,
        pair: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.venue = venue
        self.pair = pair


class NoViableCandidateError(FlashArbitrageError):
    """Raised when no cycle met the profit threshold."""

    pass


class ValidationFailedError(FlashArbitrageError):
    """Raised when the security validator rejects an evaluation."""

    def __init__(
        self,
        kind: ValidationKind,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message or kind.value, details)
        self.kind = kind


class EvaluationTimeoutError(FlashArbitrageError):
    """Raised when a single candidate evaluation exceeds its time budget."""

    def __init__(
        self,
        message: str,
        candidate: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.candidate = candidate


class FeeCeilingExceededError(FlashArbitrageError):
    """Raised when the minimum viable fee is above the configured ceiling."""

    def __init__(
        self,
        message: str,
        required_wei: Optional[int] = None,
        ceiling_wei: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.required_wei = required_wei
        self.ceiling_wei = ceiling_wei


class SubmissionRejectedError(FlashArbitrageError):
    """Raised when a transport refuses a signed request."""

    def __init__(
        self,
        message: str,
        channel: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.channel = channel


class ExecutionRevertedError(FlashArbitrageError):
    """Raised when an execution unit reverts."""

    def __init__(
        self,
        reason: RevertReason,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message or reason.value, details)
        self.reason = reason


class UnrepaidLoanError(AssertionError):
    """A flash loan left the lending pool without principal and premium returned."""

    pass
