"""
Conversion of serialized arbitrary-precision numbers into ``Decimal``.

The Ethereum index stores large token amounts as bignumber.js objects of the
shape ``{"s": sign, "e": exponent, "c": [coefficient chunks]}``. Only the first
coefficient chunk is significant for the amounts we read, and its digit count
determines where the decimal point falls relative to the exponent.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Context, Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

NumberLike = int | str | Decimal

# Wide enough for any 256-bit integer amount without rounding
PRECISE = Context(prec=100)


class SerializedBigNumber(BaseModel):
    """Sign / coefficient chunks / exponent triple as emitted by bignumber.js."""

    s: Literal[-1, 1] = 1
    c: list[str] = Field(default_factory=list)
    e: int = 0

    model_config = {"frozen": True}

    @field_validator("c", mode="before")
    @classmethod
    def validate_chunks(cls, v: Any) -> list[str]:
        if v is None:
            return []
        chunks = []
        for chunk in v:
            if isinstance(chunk, bool):
                raise ValueError("Coefficient chunk must be a digit string")
            # Chunks above int32 come back from BSON as doubles
            if isinstance(chunk, float):
                if not chunk.is_integer():
                    raise ValueError(f"Coefficient chunk must be integral, got {chunk!r}")
                chunk = int(chunk)
            text = str(chunk)
            if not text.isdigit():
                raise ValueError(f"Coefficient chunk must be a digit string, got {chunk!r}")
            chunks.append(text)
        return chunks

    @property
    def magnitude(self) -> Decimal:
        if not self.c:
            return Decimal(0)
        first = self.c[0]
        return Decimal(int(first)).scaleb(self.e - (len(first) - 1), context=PRECISE)

    def to_decimal(self) -> Decimal:
        magnitude = self.magnitude
        return magnitude if self.s == 1 else magnitude.copy_negate()


def _coerce_number(number: SerializedBigNumber | Mapping[str, Any] | NumberLike) -> Decimal:
    if isinstance(number, SerializedBigNumber):
        return number.to_decimal()
    if isinstance(number, Mapping):
        return SerializedBigNumber.model_validate(dict(number)).to_decimal()
    return Decimal(str(number))


def _coerce_decimals(decimals: SerializedBigNumber | Mapping[str, Any] | NumberLike | None) -> int:
    if decimals is None:
        return 0
    if isinstance(decimals, Mapping):
        decimals = SerializedBigNumber.model_validate(dict(decimals))
    if isinstance(decimals, SerializedBigNumber):
        # Decimal places are small integers: the first chunk holds the whole value
        return int(decimals.c[0]) if decimals.c else 0
    return int(decimals)


def _scale(
    number: SerializedBigNumber | Mapping[str, Any] | NumberLike,
    decimals: SerializedBigNumber | Mapping[str, Any] | NumberLike | None,
) -> Decimal:
    return _coerce_number(number).scaleb(-_coerce_decimals(decimals), context=PRECISE)


def format_decimal(value: Decimal) -> str:
    """Fixed-point text of a Decimal, without exponent or trailing zeros."""
    text = format(value.normalize(context=PRECISE), "f")
    return "0" if text in ("-0", "0") else text


def bignumber_to_decimal(
    number: SerializedBigNumber | Mapping[str, Any] | NumberLike,
    decimals: SerializedBigNumber | Mapping[str, Any] | NumberLike | None = 0,
    as_string: bool = False,
) -> Decimal | str:
    """
    Convert a serialized big number into a decimal value scaled down by ``decimals``.

    Args:
        number: bignumber.js object (model or mapping) or a plain integer/numeric string
        decimals: Decimal places, as an int or in the same serialized shape
        as_string: Return the exact fixed-point string instead of a Decimal

    Returns:
        ``sign * coefficient * 10**(e - (len(c[0]) - 1)) / 10**decimals``
    """
    value = _scale(number, decimals)
    if as_string:
        return format_decimal(value)
    return value


def raw_amount_to_decimal(
    value: SerializedBigNumber | Mapping[str, Any] | NumberLike | float,
    decimals: int,
) -> Decimal:
    """
    Scale a raw token amount from the index down to display units.

    The index stores amounts either as bignumber.js objects or as plain
    numbers/strings; the result is rounded half away from zero to ``decimals``.
    """
    if isinstance(value, float):
        value = Decimal(repr(value))
    return _scale(value, decimals).quantize(
        Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_UP, context=PRECISE
    )
