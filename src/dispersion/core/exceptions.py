"""
Dispersion exception hierarchy.

Provides typed exceptions for pricing, vesting and distribution operations so
callers can tell "the input was wrong" apart from "numeric limits were
exceeded" and "the state does not allow this".
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class DispersionError(Exception):
    """Base exception for all dispersion errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the caller may retry after correcting input
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Validation Errors ====================


class ValidationError(DispersionError):
    """Raised when caller-supplied input fails validation rules.

    Validation errors are always correctable by the caller, so they default
    to recoverable.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message, details=details, recoverable=recoverable)


class InvalidParameterError(ValidationError):
    """Raised when a parameter is outside its configured bounds.

    Examples: alpha below -10, k above 250, beta above 1.0, zero fee.
    """
    pass


class ZeroAddressError(ValidationError):
    """Raised when an identity (buyer, asset) is empty or the zero address."""
    pass


class InsufficientPaymentError(ValidationError):
    """Raised when the payment does not cover token cost plus fee."""
    pass


class ExceedsMaxPurchaseError(ValidationError):
    """Raised when a single purchase exceeds the configured maximum."""
    pass


class InsufficientSupplyError(ValidationError):
    """Raised when a purchase asks for more than the remaining supply."""
    pass


class InvalidScheduleParamsError(ValidationError):
    """Raised when grant timing or amount parameters are invalid."""
    pass


class InvalidVestingConfigError(ValidationError):
    """Raised when an asset vesting policy is malformed."""
    pass


# ==================== Arithmetic Errors ====================


class MathError(DispersionError):
    """Raised when fixed-point arithmetic cannot produce an exact answer.

    Arithmetic errors never saturate or wrap; the whole operation aborts.
    """
    pass


class DivisionByZeroError(MathError, ZeroDivisionError):
    """Raised when a fixed-point division has a zero divisor."""
    pass


class MathOverflowError(MathError, OverflowError):
    """Raised when a result would exceed the representable range."""
    pass


class MathDomainError(MathError, ValueError):
    """Raised when an input is outside a function's domain (e.g. ln(0))."""
    pass


class ZeroSupplyError(MathError):
    """Raised when a price is requested with zero total or remaining supply."""
    pass


# ==================== State Errors ====================


class StateError(DispersionError):
    """Raised when the current state does not permit an operation."""
    pass


class AssetRegistrationError(StateError):
    """Raised for unregistered assets or duplicate registrations."""
    pass


class NoGrantsForBeneficiaryError(StateError):
    """Raised when consumption is recorded for a beneficiary with no grants."""
    pass


class GrantNotFoundError(StateError):
    """Raised when a grant id does not exist."""
    pass


class TransferNotAllowedError(StateError):
    """Raised when an outgoing amount exceeds the unlocked balance."""

    def __init__(
        self,
        message: str,
        requested: Optional[int] = None,
        unlocked: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.requested = requested
        self.unlocked = unlocked
