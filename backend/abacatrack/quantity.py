"""Quantity — exact, non-negative amount of seedlings or fiber.

Backed by Decimal with a fixed scale of three fractional digits (grams when
the unit is kg).  Floats are refused: 0.1 + 0.2 must never leak into a
balance.  In the database a Quantity is stored as integer thousandths
(see QuantityType) so that ``remaining - :qty`` stays exact in SQL too.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from functools import total_ordering

from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator

SCALE = 3
_UNITS = 10 ** SCALE
_QUANT = Decimal(1).scaleb(-SCALE)


@total_ordering
class Quantity:
    __slots__ = ("_value",)

    def __init__(self, value: "Quantity | Decimal | int | str" = 0):
        if isinstance(value, Quantity):
            self._value = value._value
            return
        if isinstance(value, bool) or isinstance(value, float):
            raise ValueError(f"Quantity needs an exact value, got {value!r}")
        try:
            dec = Decimal(value)
        except (InvalidOperation, TypeError) as exc:
            raise ValueError(f"Not a quantity: {value!r}") from exc
        if not dec.is_finite():
            raise ValueError(f"Quantity must be finite, got {value!r}")
        if dec < 0:
            raise ValueError(f"Quantity cannot be negative, got {value!r}")
        if dec != dec.quantize(_QUANT):
            raise ValueError(
                f"Quantity supports at most {SCALE} decimal places, got {value!r}"
            )
        self._value = dec.quantize(_QUANT)

    # ── Conversions ─────────────────────────────────────────

    @classmethod
    def zero(cls) -> Quantity:
        return cls(0)

    @classmethod
    def from_units(cls, units: int) -> Quantity:
        """Build from integer thousandths (the storage representation)."""
        return cls(Decimal(int(units)).scaleb(-SCALE))

    def to_units(self) -> int:
        return int(self._value * _UNITS)

    def to_decimal(self) -> Decimal:
        return self._value

    def is_zero(self) -> bool:
        return self._value == 0

    # ── Arithmetic ──────────────────────────────────────────

    def __add__(self, other) -> Quantity:
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return Quantity(self._value + other._value)

    __radd__ = __add__

    def __sub__(self, other) -> Quantity:
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        if other._value > self._value:
            raise ValueError(f"{self} - {other} would be negative")
        return Quantity(self._value - other._value)

    # ── Comparison ──────────────────────────────────────────

    def __eq__(self, other) -> bool:
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return self._value == other._value

    def __lt__(self, other) -> bool:
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return self._value < other._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return not self.is_zero()

    def __str__(self) -> str:
        return format(self._value.normalize(), "f")

    def __repr__(self) -> str:
        return f"Quantity('{self}')"


def _coerce(value):
    if isinstance(value, Quantity):
        return value
    if isinstance(value, (int, Decimal)) and not isinstance(value, bool):
        try:
            return Quantity(value)
        except ValueError:
            return NotImplemented
    return NotImplemented


def total(quantities) -> Quantity:
    """Sum an iterable of quantities (empty → zero)."""
    result = Quantity.zero()
    for q in quantities:
        result = result + q
    return result


class QuantityType(TypeDecorator):
    """Persist a Quantity as a BigInteger count of thousandths."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return Quantity(value).to_units()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Quantity.from_units(value)
