"""
Checked fixed-point arithmetic.

Every monetary and supply value in dispersion is an ``int`` scaled by
``WAD`` (10**18). This module provides:
- Checked integer primitives (add, sub, mul, div, mul_div)
- WAD multiply/divide with explicit rounding
- WAD power, exponential and logarithms computed with integers only

Results are bit-exact for identical inputs. Nothing here touches ``float``.
Failures are typed: ``DivisionByZeroError`` for a zero divisor,
``MathOverflowError`` when a value leaves the uint256 range or an exponent
is too large, and ``MathDomainError`` for inputs a function is not defined on.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Union

from ..exceptions import (
    DivisionByZeroError,
    InvalidParameterError,
    MathDomainError,
    MathOverflowError,
)

WAD = 10**18
MAX_UINT256 = 2**256 - 1

# Internal precision used by exp/log before truncating back to WAD
E36 = 10**36
LN2_E36 = 693_147180559945309417232121458176568

# exp(EXP_MAX_INPUT) is the largest result below 2**192 at WAD scale
EXP_MAX_INPUT = 133_084258667509499440
# exp(x) truncates to zero at WAD scale below this input
EXP_MIN_INPUT = -41_446531673892822312

Numeric = Union[int, str, Decimal, float]


def _require_uint(*values: int) -> None:
    for value in values:
        if not isinstance(value, int):
            raise MathDomainError(
                f"Expected integer operand, got {type(value).__name__}",
                details={"value": repr(value)},
            )
        if value < 0 or value > MAX_UINT256:
            raise MathDomainError(
                "Operand outside uint256 range",
                details={"value": value},
            )


def _exp_e36(x: int) -> int:
    """e**x for a non-negative x scaled by 1e36, result scaled by 1e36."""
    n, r = divmod(x, LN2_E36)
    term = E36
    total = E36
    i = 1
    while term:
        term = term * r // (E36 * i)
        total += term
        i += 1
    return total << n


def _log2_e36(x: int) -> int:
    """log2 of a positive WAD value, result scaled by 1e36 (signed)."""
    y = x * (E36 // WAD)
    n = y.bit_length() - E36.bit_length()
    y = y >> n if n >= 0 else y << -n
    if y < E36:
        y <<= 1
        n -= 1
    elif y >= 2 * E36:
        y >>= 1
        n += 1

    result = n * E36
    if y == E36:
        return result

    # One bit of the fractional part per squaring
    delta = E36 // 2
    while delta > 0:
        y = y * y // E36
        if y >= 2 * E36:
            result += delta
            y >>= 1
        delta >>= 1
    return result


class SafeMath:
    """Checked integer and WAD fixed-point operations."""

    # ==================== Integer primitives ====================

    @staticmethod
    def safe_add(a: int, b: int, max_value: int = MAX_UINT256) -> int:
        result = a + b
        if result > max_value:
            raise MathOverflowError(
                "Addition overflow",
                details={"a": a, "b": b, "max_value": max_value},
            )
        return result

    @staticmethod
    def safe_sub(a: int, b: int) -> int:
        if b > a:
            raise MathOverflowError("Subtraction underflow", details={"a": a, "b": b})
        return a - b

    @staticmethod
    def safe_mul(a: int, b: int) -> int:
        result = a * b
        if result > MAX_UINT256:
            raise MathOverflowError("Multiplication overflow", details={"a": a, "b": b})
        return result

    @staticmethod
    def safe_div(a: int, b: int) -> int:
        if b == 0:
            raise DivisionByZeroError("Division by zero", details={"a": a})
        return a // b

    @staticmethod
    def mul_div(a: int, b: int, denominator: int, round_up: bool = False) -> int:
        """
        Calculate (a * b) / denominator with controlled rounding.

        Args:
            a: First multiplicand
            b: Second multiplicand
            denominator: Divisor
            round_up: Round toward +inf instead of truncating

        Raises:
            DivisionByZeroError: If denominator is zero
            MathOverflowError: If a * b exceeds uint256
        """
        if denominator == 0:
            raise DivisionByZeroError("Division by zero", details={"a": a, "b": b})
        product = SafeMath.safe_mul(a, b)
        if round_up:
            return (product + denominator - 1) // denominator
        return product // denominator

    # ==================== WAD arithmetic ====================

    @staticmethod
    def wad_mul(a: int, b: int, round_up: bool = False) -> int:
        """Multiply two WAD values: a * b / 1e18."""
        _require_uint(a, b)
        return SafeMath.mul_div(a, b, WAD, round_up=round_up)

    @staticmethod
    def wad_div(a: int, b: int, round_up: bool = False) -> int:
        """Divide two WAD values: a * 1e18 / b."""
        _require_uint(a, b)
        if b == 0:
            raise DivisionByZeroError("Division by zero", details={"a": a})
        return SafeMath.mul_div(a, WAD, b, round_up=round_up)

    @staticmethod
    def wad_exp(x: int) -> int:
        """
        Natural exponential of a WAD value.

        Uses x = n*ln2 + r with 0 <= r < ln2 and a Taylor series for e**r at
        1e36 precision, then shifts by n. exp(0) is exactly WAD.

        Raises:
            MathOverflowError: If x > EXP_MAX_INPUT
        """
        if not isinstance(x, int):
            raise MathDomainError("Expected integer operand", details={"value": repr(x)})
        if x < 0:
            if x < EXP_MIN_INPUT:
                return 0
            return WAD * WAD // SafeMath.wad_exp(-x)
        if x > EXP_MAX_INPUT:
            raise MathOverflowError(
                "Exponent too large",
                details={"x": x, "max_input": EXP_MAX_INPUT},
            )
        return _exp_e36(x * (E36 // WAD)) // (E36 // WAD)

    @staticmethod
    def wad_log2(x: int) -> int:
        """Binary logarithm of a positive WAD value (signed WAD result)."""
        _require_uint(x)
        if x == 0:
            raise MathDomainError("log2 undefined for zero")
        return _log2_e36(x) // (E36 // WAD)

    @staticmethod
    def wad_ln(x: int) -> int:
        """Natural logarithm of a positive WAD value (signed WAD result)."""
        _require_uint(x)
        if x == 0:
            raise MathDomainError("ln undefined for zero")
        return _log2_e36(x) * LN2_E36 // E36 // (E36 // WAD)

    @staticmethod
    def wad_pow(base: int, exponent: int) -> int:
        """
        Raise a WAD base to a non-negative WAD exponent.

        Whole-number exponents use square-and-multiply, so 2.0 ** 2.0 is
        exactly 4.0. Fractional exponents are computed as exp(y * ln(x));
        bases below one are inverted first and the result inverted back.

        Raises:
            MathOverflowError: If the result leaves the representable range
        """
        _require_uint(base, exponent)
        if base == 0:
            return WAD if exponent == 0 else 0
        if base == WAD or exponent == 0:
            return WAD
        if exponent == WAD:
            return base

        if exponent % WAD == 0:
            return SafeMath._wad_pow_whole(base, exponent // WAD)

        if base < WAD:
            inverse = SafeMath.wad_div(WAD, base)
            return SafeMath.wad_div(WAD, SafeMath.wad_pow(inverse, exponent))

        product = _log2_e36(base) * LN2_E36 // E36 * exponent // WAD
        if product > EXP_MAX_INPUT * (E36 // WAD):
            raise MathOverflowError(
                "Power result too large",
                details={"base": base, "exponent": exponent},
            )
        return _exp_e36(product) // (E36 // WAD)

    @staticmethod
    def _wad_pow_whole(base: int, n: int) -> int:
        result = WAD
        while n:
            if n & 1:
                result = SafeMath.wad_mul(result, base)
            n >>= 1
            if n:
                base = SafeMath.wad_mul(base, base)
        return result


# Module-level aliases used by the pricing engine
wad_mul = SafeMath.wad_mul
wad_div = SafeMath.wad_div
wad_exp = SafeMath.wad_exp
wad_pow = SafeMath.wad_pow


# ==================== Unit conversion ====================

def to_wad(value: Numeric) -> int:
    """
    Convert a human-readable amount to WAD units.

    Integers are whole units; strings and Decimals may carry up to 18
    fractional digits (extra digits are truncated). Floats are converted
    through their shortest string form, never through binary arithmetic.
    """
    if isinstance(value, bool):
        raise InvalidParameterError("Boolean is not a numeric amount")
    if isinstance(value, int):
        if value < 0:
            raise InvalidParameterError("Amount cannot be negative", details={"value": value})
        return value * WAD
    try:
        decimal_value = Decimal(str(value).strip().replace("_", ""))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidParameterError(f"Invalid numeric amount: {value!r}") from exc
    if not decimal_value.is_finite() or decimal_value < 0:
        raise InvalidParameterError(f"Invalid numeric amount: {value!r}")
    return int((decimal_value * WAD).to_integral_value(rounding=ROUND_DOWN))


def from_wad(value: int) -> Decimal:
    """Convert WAD units to an exact Decimal for display."""
    return Decimal(value).scaleb(-18)
