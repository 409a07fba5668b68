"""
Values -- the precision decimal every commission amount is carried in.

Responsibility:
    ``DecimalValue`` is the only numeric type allowed for base amounts, rates,
    commissions, VAT and credit balances.  Native floats never enter a
    calculation: constructing a DecimalValue from a float raises TypeError.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Leaf dependency of
    every other module.

Invariants enforced:
    - Internal scale is fixed at ``INTERNAL_SCALE`` (9) fractional digits;
      every arithmetic result is quantized back to it with ROUND_HALF_UP.
    - Arithmetic runs under a private 50-digit context, independent of the
      thread's ambient ``decimal`` context.
    - Equality and hashing are value based (``1.5 == 1.50``).
    - Presentation rounding (``to_fixed``) happens only at the edges.

Failure modes:
    - TypeError on float input.
    - ValueError on unparseable strings.
    - DivisionByZeroError when dividing by zero.

Audit relevance:
    Because every intermediate is quantized identically, a replay on any
    machine reproduces the same digits, which is what makes export checksums
    comparable byte-for-byte.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Iterable, Union

from commission_kernel.exceptions import DivisionByZeroError

INTERNAL_SCALE = 9

_CONTEXT = Context(prec=50, rounding=ROUND_HALF_UP)
_QUANTUM = Decimal(1).scaleb(-INTERNAL_SCALE)

Operand = Union["DecimalValue", Decimal, int, str]


def _to_decimal(raw: Operand) -> Decimal:
    if isinstance(raw, DecimalValue):
        return raw.value
    if isinstance(raw, bool):
        raise TypeError("bool is not a valid decimal amount")
    if isinstance(raw, float):
        raise TypeError(
            "float is not allowed for commission amounts; pass str or Decimal"
        )
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, (int, str)):
        try:
            parsed = Decimal(str(raw).strip())
        except InvalidOperation as e:
            raise ValueError(f"Invalid decimal amount: {raw!r}") from e
        if not parsed.is_finite():
            raise ValueError(f"Invalid decimal amount: {raw!r}")
        return parsed
    raise TypeError(f"Cannot convert {type(raw).__name__} to DecimalValue")


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(_QUANTUM, rounding=ROUND_HALF_UP, context=_CONTEXT)


@dataclass(frozen=True, slots=True)
class DecimalValue:
    """
    Immutable arbitrary-precision decimal with controlled rounding.

    Contract:
        Wraps a ``Decimal`` held at exactly ``INTERNAL_SCALE`` fractional
        digits.  All operators return new instances.

    Guarantees:
        - Immutable and hashable (frozen dataclass with slots)
        - value is always a finite Decimal, never a float
        - Comparison operators accept DecimalValue, Decimal and int

    Non-goals:
        - Does NOT carry a currency; amounts in one run share a currency.
    """

    value: Decimal

    def __post_init__(self) -> None:
        quantized = _quantize(_to_decimal(self.value))
        if quantized.is_zero():
            # No negative zero
            quantized = _CONTEXT.abs(quantized)
        object.__setattr__(self, "value", quantized)

    @classmethod
    def of(cls, raw: Operand) -> DecimalValue:
        """Factory accepting DecimalValue, Decimal, int or str."""
        if isinstance(raw, DecimalValue):
            return raw
        return cls(_to_decimal(raw))

    @classmethod
    def zero(cls) -> DecimalValue:
        return cls(Decimal(0))

    @classmethod
    def sum(cls, values: Iterable[Operand]) -> DecimalValue:
        """Sum an iterable of operands; empty input sums to zero."""
        total = Decimal(0)
        for v in values:
            total = _CONTEXT.add(total, _to_decimal(v))
        return cls(total)

    def to_decimal(self) -> Decimal:
        return self.value

    @property
    def is_zero(self) -> bool:
        return self.value == 0

    @property
    def is_positive(self) -> bool:
        return self.value > 0

    @property
    def is_negative(self) -> bool:
        return self.value < 0

    def round_to(self, places: int) -> DecimalValue:
        """Round half-up to ``places`` fractional digits."""
        return DecimalValue(self._rounded(places))

    def to_fixed(self, places: int) -> str:
        """
        Render with exactly ``places`` fractional digits (half-up).

        This is the presentation boundary: exports and reports call it, the
        calculation pipeline never does.
        """
        return format(self._rounded(places), "f")

    def _rounded(self, places: int) -> Decimal:
        if places < 0:
            raise ValueError(f"places must be >= 0, got {places}")
        quantum = Decimal(1).scaleb(-places)
        return self.value.quantize(quantum, rounding=ROUND_HALF_UP, context=_CONTEXT)

    def max(self, other: Operand) -> DecimalValue:
        other_v = DecimalValue.of(other)
        return self if self >= other_v else other_v

    def min(self, other: Operand) -> DecimalValue:
        other_v = DecimalValue.of(other)
        return self if self <= other_v else other_v

    # Arithmetic

    def __add__(self, other: Operand) -> DecimalValue:
        try:
            rhs = _to_decimal(other)
        except TypeError:
            return NotImplemented
        return DecimalValue(_CONTEXT.add(self.value, rhs))

    def __radd__(self, other: Operand) -> DecimalValue:
        return self.__add__(other)

    def __sub__(self, other: Operand) -> DecimalValue:
        try:
            rhs = _to_decimal(other)
        except TypeError:
            return NotImplemented
        return DecimalValue(_CONTEXT.subtract(self.value, rhs))

    def __rsub__(self, other: Operand) -> DecimalValue:
        return DecimalValue.of(other).__sub__(self)

    def __mul__(self, other: Operand) -> DecimalValue:
        try:
            rhs = _to_decimal(other)
        except TypeError:
            return NotImplemented
        return DecimalValue(_CONTEXT.multiply(self.value, rhs))

    def __rmul__(self, other: Operand) -> DecimalValue:
        return self.__mul__(other)

    def __truediv__(self, other: Operand) -> DecimalValue:
        try:
            rhs = _to_decimal(other)
        except TypeError:
            return NotImplemented
        if rhs == 0:
            raise DivisionByZeroError(str(self))
        return DecimalValue(_CONTEXT.divide(self.value, rhs))

    def scale_by(self, multiplier: Operand, divisor: Operand) -> DecimalValue:
        """
        ``self x multiplier / divisor`` with a single final rounding.

        Raises:
            DivisionByZeroError: If divisor is zero.
        """
        num = _to_decimal(multiplier)
        den = _to_decimal(divisor)
        if den == 0:
            raise DivisionByZeroError(str(self))
        product = _CONTEXT.multiply(self.value, num)
        return DecimalValue(_CONTEXT.divide(product, den))

    def __neg__(self) -> DecimalValue:
        return DecimalValue(_CONTEXT.minus(self.value))

    def __abs__(self) -> DecimalValue:
        return DecimalValue(_CONTEXT.abs(self.value))

    # Comparison

    def __eq__(self, other: object) -> bool:
        if isinstance(other, DecimalValue):
            return self.value == other.value
        if isinstance(other, (Decimal, int)) and not isinstance(other, bool):
            return self.value == other
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)

    def __lt__(self, other: Operand) -> bool:
        try:
            return self.value < _to_decimal(other)
        except TypeError:
            return NotImplemented

    def __le__(self, other: Operand) -> bool:
        try:
            return self.value <= _to_decimal(other)
        except TypeError:
            return NotImplemented

    def __gt__(self, other: Operand) -> bool:
        try:
            return self.value > _to_decimal(other)
        except TypeError:
            return NotImplemented

    def __ge__(self, other: Operand) -> bool:
        try:
            return self.value >= _to_decimal(other)
        except TypeError:
            return NotImplemented

    def __str__(self) -> str:
        normalized = self.value.normalize(_CONTEXT)
        return format(normalized, "f")

    def __repr__(self) -> str:
        return f"DecimalValue('{self}')"
