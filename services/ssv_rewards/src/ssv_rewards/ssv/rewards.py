from __future__ import annotations

"""Reward item registry and decimal-text balance arithmetic.

Idle-game balances grow far past 64-bit range, so balances are stored as
decimal text and added with an exact ``Decimal`` context.
"""

from dataclasses import dataclass
from decimal import MAX_EMAX, MIN_EMIN, Decimal, InvalidOperation, localcontext
from typing import Dict, Optional


@dataclass(frozen=True)
class RewardHandler:
    item: str
    column: str


_HANDLERS: Dict[str, RewardHandler] = {}


def register_reward_handler(item: str, column: str) -> RewardHandler:
    """Map a reward item name (case-insensitive) to a player_states column."""
    if not column.isidentifier():
        raise ValueError(f"invalid balance column: {column!r}")
    handler = RewardHandler(item=item, column=column)
    _HANDLERS[item.lower()] = handler
    return handler


def resolve_handler(item: str) -> Optional[RewardHandler]:
    return _HANDLERS.get((item or "").strip().lower())


register_reward_handler("GoldBars", "gold_bars")
register_reward_handler("Score", "current_score")


def parse_balance(text: Optional[str]) -> Decimal:
    """Parse a stored balance; empty or NULL counts as zero.

    Raises ``ValueError`` when the text is not a finite decimal.
    """
    if text is None or not str(text).strip():
        return Decimal(0)
    try:
        value = Decimal(str(text).strip())
    except InvalidOperation as exc:
        raise ValueError(f"unparseable balance: {text!r}") from exc
    if not value.is_finite():
        raise ValueError(f"non-finite balance: {text!r}")
    return value


def _exact_precision(*values: Decimal) -> int:
    hi = max(v.adjusted() for v in values)
    lo = min(int(v.as_tuple().exponent) for v in values)
    return max(28, hi - lo + 2)


def add_decimal_text(current: Optional[str], amount: Decimal) -> str:
    """Return ``current + amount`` as plain decimal text, without rounding."""
    base = parse_balance(current)
    with localcontext() as ctx:
        ctx.prec = _exact_precision(base, amount)
        ctx.Emax = MAX_EMAX
        ctx.Emin = MIN_EMIN
        total = base + amount
    return format(total, "f")
