"""
Quantities -- exact decimal helpers for material quantities.

Responsibility:
    Coerces user-supplied quantities to ``Decimal`` and renders them for
    operator-facing messages.  Quantities are NEVER floats anywhere in the
    kernel; conservation checks rely on exact decimal equality.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from decimal import Decimal, InvalidOperation

ZERO = Decimal("0")

_DISPLAY_QUANTUM = Decimal("0.01")


def to_quantity(value: Decimal | int | str) -> Decimal:
    """
    Coerce a value into an exact ``Decimal`` quantity.

    Floats are rejected outright: a float has already lost precision
    before it gets here.

    Raises:
        TypeError: If ``value`` is a float or bool.
        ValueError: If ``value`` is not a finite decimal number.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Quantities must be Decimal, int or str, got {type(value).__name__}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a decimal quantity: {value!r}") from exc
    if not result.is_finite():
        raise ValueError(f"Not a finite quantity: {value!r}")
    return result


def format_quantity(value: Decimal | int | str | None) -> str:
    """
    Render a quantity with at least two decimal places.

    ``Decimal("250")`` and ``Decimal("250.000000000")`` both render as
    ``"250.00"``; extra significant places are preserved
    (``"0.125"`` stays ``"0.125"``).
    """
    if value is None:
        return "0.00"
    quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    if quantity == quantity.to_integral_value():
        return str(quantity.quantize(_DISPLAY_QUANTUM))
    normalized = quantity.normalize()
    if normalized.as_tuple().exponent > -2:
        normalized = normalized.quantize(_DISPLAY_QUANTUM)
    return f"{normalized:f}"


def quantity_sum(values) -> Decimal:
    """Exact sum of an iterable of quantities (``0`` for an empty iterable)."""
    total = ZERO
    for value in values:
        total += value
    return total
