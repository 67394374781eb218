from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(unit_price * quantity)


def unit_price_of(total: Decimal, quantity: int) -> Decimal:
    return to_money(total / quantity)


def money_sum(amounts) -> Decimal:
    return to_money(sum(amounts, Decimal("0")))


def to_minor_units(amount: Decimal) -> int:
    """Gateway amount: the value times 100 with no decimal part."""
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))
