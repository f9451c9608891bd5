"""
Decimal helpers for amounts and split shares.

All amounts handled by the ledger are ``Decimal`` values quantized to the
currency unit (0.01). Supabase numeric columns come back as JSON numbers, so
they go through ``str`` before becoming ``Decimal``.
"""
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from typing import Dict, Iterable, List, Mapping, Optional

UNIT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(x) -> Decimal:
    if x is None:
        return ZERO
    if isinstance(x, Decimal):
        d = x
    elif isinstance(x, float):
        d = Decimal(str(x))
    else:
        d = Decimal(str(x).strip() or "0")
    return d.quantize(UNIT, rounding=ROUND_HALF_UP)


def parse_amount(x) -> Optional[Decimal]:
    """User-entered amount as money, or None if it is not a finite number."""
    try:
        d = to_money(x)
    except (InvalidOperation, ValueError, TypeError):
        return None
    return d if d.is_finite() else None


def sum_money(values: Iterable) -> Decimal:
    return sum((to_money(v) for v in values), ZERO)


def _quantize_down(x: Decimal) -> Decimal:
    return x.quantize(UNIT, rounding=ROUND_DOWN)


def allocate_even(amount, keys: List[str]) -> Dict[str, Decimal]:
    """
    Split amount evenly across keys with:
    - floor to currency unit
    - distribute remainder by +1 unit to first keys (stable order)
    Ensures sum == amount.
    """
    n = len(keys)
    if n <= 0:
        return {}

    amount = to_money(amount)
    base = _quantize_down(amount / Decimal(n))
    alloc = {k: base for k in keys}

    remainder = amount - base * Decimal(n)  # >= 0 and < n*unit
    steps = int((remainder / UNIT).to_integral_value(rounding=ROUND_DOWN))
    for i in range(steps):
        alloc[keys[i % n]] += UNIT

    return alloc


def allocate_fixed(amount, keys: List[str], shares: Mapping[str, object]) -> Dict[str, Decimal]:
    """
    Allocate using explicit shares. They must match the total exactly after
    rounding to the currency unit; a mismatch is the caller's error.
    """
    if not keys:
        return {}

    amount = to_money(amount)
    alloc = {k: to_money(shares.get(k, 0)) for k in keys}

    s = sum(alloc.values(), ZERO)
    if s != amount:
        raise ValueError(f"Share amounts do not sum to total. sum={s} total={amount}")
    if any(v < 0 for v in alloc.values()):
        raise ValueError("Share amounts cannot be negative")

    return alloc
