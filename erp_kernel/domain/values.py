"""
Values -- Decimal coercion and the single sanctioned rounding policy.

Responsibility:
    Converts inbound numeric values to ``Decimal`` (floats are rejected) and
    rounds monetary amounts.  ``round_money`` and ``round_to_unit`` are the
    ONLY rounding functions used by the engines, so every document type
    rounds the same way.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - No floats: ``to_decimal`` raises ``TypeError`` for ``float`` input.
    - No NaN or Infinity unless the caller asks for ``finite=False``.
    - Rounding is ROUND_HALF_UP, never truncation.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value: Decimal | int | str, *, finite: bool = True) -> Decimal:
    """
    Coerce ``value`` to ``Decimal``.

    With ``finite=False`` NaN and Infinity pass through, for value objects
    whose engine reports them with its own typed error.

    Raises:
        TypeError: if ``value`` is a float (binary floats are never money).
        ValueError: if ``value`` is not a valid number, or is NaN or
            infinite while ``finite`` is set.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Refusing to convert {type(value).__name__} to Decimal: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except InvalidOperation as e:
            raise ValueError(f"Invalid decimal value: {value!r}") from e
    if finite and not result.is_finite():
        raise ValueError(f"Decimal value must be finite, got {value!r}")
    return result


def quantum(decimal_places: int) -> Decimal:
    """Smallest currency unit for ``decimal_places`` (2 -> Decimal('0.01'))."""
    return Decimal(1).scaleb(-decimal_places)


def round_money(
    amount: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
) -> Decimal:
    """
    Round a monetary amount to ``decimal_places`` using ROUND_HALF_UP.

    >>> round_money(Decimal("10.545"))
    Decimal('10.55')
    """
    return amount.quantize(quantum(decimal_places), rounding=DEFAULT_ROUNDING)


def round_to_unit(amount: Decimal, unit: Decimal, decimal_places: int) -> Decimal:
    """
    Round ``amount`` to the nearest multiple of ``unit`` (half up).

    The result keeps ``decimal_places`` of scale so that adjustments such
    as ``1062.40 -> 1062.00`` compare and serialize consistently.

    >>> round_to_unit(Decimal("1062.50"), Decimal("1"), 2)
    Decimal('1063.00')
    """
    multiples = (amount / unit).quantize(Decimal(1), rounding=DEFAULT_ROUNDING)
    return round_money(multiples * unit, decimal_places)
