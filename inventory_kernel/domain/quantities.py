"""Decimal quantity helpers.  Quantities are never floats."""

from decimal import Decimal, InvalidOperation, localcontext

ZERO = Decimal("0")

# Matches the Numeric(38, 9) column.
QUANTITY_PRECISION = 38
QUANTITY_QUANTUM = Decimal("0.000000001")


def to_quantity(value: Decimal | int | str) -> Decimal:
    """Coerce to a Decimal quantized to the storage scale.

    Floats are rejected outright: their binary representation would leak
    rounding error into the ledger.
    """
    if isinstance(value, float):
        raise TypeError("Quantities must be Decimal, int or str, not float")
    if isinstance(value, bool):
        raise TypeError("Quantities must be Decimal, int or str, not bool")
    try:
        qty = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Invalid quantity: {value!r}") from exc
    if not qty.is_finite():
        raise ValueError(f"Invalid quantity: {value!r}")
    with localcontext() as ctx:
        ctx.prec = QUANTITY_PRECISION
        try:
            return qty.quantize(QUANTITY_QUANTUM)
        except InvalidOperation as exc:
            raise ValueError(f"Quantity out of range: {value!r}") from exc


def positive_quantity(value: Decimal | int | str, what: str = "quantity") -> Decimal:
    qty = to_quantity(value)
    if qty <= ZERO:
        raise ValueError(f"{what} must be positive, got {qty.normalize()}")
    return qty
