"""
Fixed-point money arithmetic.

Amounts are Decimal in memory and integer cents at rest. Intermediate values
(line bases, discounts, tax) are never rounded; round_money() is the single
sanctioned rounding step and runs only when a total is finalized.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from .validation import InvalidAmount

CENT = Decimal("0.01")
HUNDRED = Decimal(100)
ZERO = Decimal(0)
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

# 9,999,999.99 keeps cents comfortably inside a 32-bit signed integer
MAX_AMOUNT_CENTS = 999_999_999


def to_decimal(value, field: str = "amount") -> Decimal:
    """
    Parse a caller-supplied number into Decimal.

    Floats are accepted only through their shortest repr ("45.5"), so a JSON
    number never drags binary noise into a total.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidAmount(f"{field} must be a number", details={"field": field, "value": value})
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise InvalidAmount(f"{field} must be a number", details={"field": field, "value": value})
    else:
        raise InvalidAmount(f"{field} must be a number", details={"field": field, "value": value})

    if not result.is_finite():
        raise InvalidAmount(f"{field} must be a finite number", details={"field": field, "value": str(value)})
    return result


def _decimal_places(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    return -exponent if exponent < 0 else 0


def to_cents(value, field: str = "amount") -> int:
    """Convert a money amount with at most 2 fractional digits to integer cents."""
    amount = to_decimal(value, field)
    if _decimal_places(amount) > MONEY_DECIMAL_PLACES:
        raise InvalidAmount(
            f"{field} cannot have more than {MONEY_DECIMAL_PLACES} decimal places",
            details={"field": field, "value": str(amount)},
        )
    cents = int(amount * HUNDRED)
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise InvalidAmount(f"{field} is too large", details={"field": field, "value": str(amount)})
    return cents


def from_cents(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / HUNDRED).quantize(CENT)


def format_cents(cents: int | None) -> str | None:
    """Cents -> "133.50" for JSON payloads."""
    if cents is None:
        return None
    return str(from_cents(cents))


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=DEFAULT_ROUNDING)


def check_amount_limit(amount: Decimal, field: str = "amount") -> Decimal:
    """Reject a computed amount whose cents would not fit MAX_AMOUNT_CENTS."""
    if abs(amount * HUNDRED) > MAX_AMOUNT_CENTS:
        raise InvalidAmount(
            f"{field} is too large",
            details={"field": field, "value": str(amount), "max": format_cents(MAX_AMOUNT_CENTS)},
        )
    return amount


def validate_percent(value, field: str = "percentage") -> Decimal:
    pct = to_decimal(value, field)
    if pct < ZERO or pct > HUNDRED:
        raise InvalidAmount(
            f"{field} must be between 0 and 100",
            details={"field": field, "value": str(pct)},
        )
    return pct


def pct_to_bps(value, field: str = "percentage") -> int:
    """12.5 -> 1250 basis points; at most two decimals."""
    pct = validate_percent(value, field)
    if _decimal_places(pct) > 2:
        raise InvalidAmount(f"{field} cannot have more than 2 decimal places", details={"field": field})
    return int(pct * HUNDRED)


def bps_to_pct(bps: int | None) -> Decimal:
    return (Decimal(bps or 0) / HUNDRED).quantize(CENT)


def multiply(quantity, unit_price) -> Decimal:
    quantity = to_decimal(quantity, "quantity")
    unit_price = to_decimal(unit_price, "unit_price")
    if quantity < ZERO:
        raise InvalidAmount("quantity cannot be negative", details={"value": str(quantity)})
    if unit_price < ZERO:
        raise InvalidAmount("unit_price cannot be negative", details={"value": str(unit_price)})
    return quantity * unit_price


def apply_percent_discount(amount: Decimal, pct) -> Decimal:
    """amount reduced by pct percent (unrounded)."""
    pct = validate_percent(pct, "discount")
    return amount * (HUNDRED - pct) / HUNDRED


def apply_tax(base: Decimal, rate_pct) -> Decimal:
    """Tax owed on `base` at `rate_pct` percent (the tax amount, unrounded)."""
    rate = validate_percent(rate_pct, "tax_rate")
    return base * rate / HUNDRED


def sum_amounts(*amounts: Decimal) -> Decimal:
    return sum(amounts, ZERO)


# =============================================================================
# INVOICE TOTALS
# =============================================================================

@dataclass(frozen=True)
class LineAmounts:
    quantity: Decimal
    unit_price: Decimal
    discount_pct: Decimal = ZERO

    @property
    def base(self) -> Decimal:
        return apply_percent_discount(multiply(self.quantity, self.unit_price), self.discount_pct)


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    discount_amount: Decimal
    taxable_base: Decimal
    tax_amount: Decimal
    total: Decimal

    def as_cents(self) -> dict:
        return {
            "subtotal_cents": int(self.subtotal * HUNDRED),
            "discount_amount_cents": int(self.discount_amount * HUNDRED),
            "taxable_base_cents": int(self.taxable_base * HUNDRED),
            "tax_amount_cents": int(self.tax_amount * HUNDRED),
            "total_cents": int(self.total * HUNDRED),
        }


def compute_totals(lines: Iterable[LineAmounts], tax_rate_pct, global_discount_pct) -> Totals:
    """
    Deterministic invoice totals.

    Line bases are summed unrounded. The subtotal and the taxable base are
    rounded once each; tax is charged on the finalized taxable base, so
    taxable_base + tax_amount == total and subtotal - discount_amount ==
    taxable_base hold exactly.

    Raises InvalidAmount when the subtotal or the total would not fit in
    MAX_AMOUNT_CENTS.
    """
    raw_subtotal = check_amount_limit(sum_amounts(*(line.base for line in lines)), "subtotal")
    raw_taxable = apply_percent_discount(raw_subtotal, global_discount_pct)

    subtotal = round_money(raw_subtotal)
    taxable_base = round_money(raw_taxable)
    discount_amount = subtotal - taxable_base
    tax_amount = round_money(apply_tax(taxable_base, tax_rate_pct))
    total = check_amount_limit(taxable_base + tax_amount, "total")

    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        taxable_base=taxable_base,
        tax_amount=tax_amount,
        total=total,
    )
