from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

QUANTITY_PLACES = Decimal('0.0001')
UNIT_COST_PLACES = Decimal('0.000001')
CENT = Decimal('0.01')
ZERO = Decimal('0')


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # Go through repr so 0.1 stays 0.1
        value = repr(value)
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Not a number: {value!r}") from exc


def quantize_quantity(value) -> Decimal:
    return to_decimal(value).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def quantize_unit_cost(value) -> Decimal:
    return to_decimal(value).quantize(UNIT_COST_PLACES, rounding=ROUND_HALF_UP)


def line_cost_cents(quantity, unit_cost) -> int:
    """Cost of one layer line in integer cents, rounded half-up per line."""
    raw = to_decimal(quantity) * to_decimal(unit_cost) * 100
    return int(raw.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def cents_to_decimal(cents) -> Decimal:
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)


def unit_cost_from_cents(cents, quantity):
    quantity = to_decimal(quantity)
    if quantity == 0:
        return None
    return quantize_unit_cost(Decimal(int(cents)) / 100 / abs(quantity))
