"""Balance arithmetic for the transaction ledger.

A transaction contributes its signed amount to ``current`` and its magnitude
to exactly one of ``income`` (positive) or ``expenses`` (negative). Zero
amounts touch neither bucket. Every change to the transaction set is turned
into a ``BalanceDelta`` that the store applies relative to the stored row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import Update, update

from models import Balance


@dataclass(frozen=True)
class BalanceDelta:
    current_cents: int = 0
    income_cents: int = 0
    expenses_cents: int = 0

    def __add__(self, other: BalanceDelta) -> BalanceDelta:
        return BalanceDelta(
            self.current_cents + other.current_cents,
            self.income_cents + other.income_cents,
            self.expenses_cents + other.expenses_cents,
        )

    def __neg__(self) -> BalanceDelta:
        return BalanceDelta(
            -self.current_cents, -self.income_cents, -self.expenses_cents
        )

    def __sub__(self, other: BalanceDelta) -> BalanceDelta:
        return self + (-other)

    @property
    def is_zero(self) -> bool:
        return not (self.current_cents or self.income_cents or self.expenses_cents)


def contribution(amount_cents: int) -> BalanceDelta:
    if amount_cents > 0:
        return BalanceDelta(amount_cents, amount_cents, 0)
    if amount_cents < 0:
        return BalanceDelta(amount_cents, 0, -amount_cents)
    return BalanceDelta()


def on_create(amount_cents: int) -> BalanceDelta:
    return contribution(amount_cents)


def on_delete(amount_cents: int) -> BalanceDelta:
    return -contribution(amount_cents)


def on_update(old_amount_cents: int, new_amount_cents: int) -> BalanceDelta:
    # Same end state as delete(old) then create(new), applied as one delta.
    return contribution(new_amount_cents) - contribution(old_amount_cents)


def pot_transfer(amount_cents: int) -> BalanceDelta:
    """Delta for moving money into a pot; negate for a withdrawal."""
    return BalanceDelta(current_cents=-amount_cents)


def balance_update(
    user_id: int, delta: BalanceDelta, *, require_current_at_least: int | None = None
) -> Update:
    """Relative update of a user's balance row.

    With ``require_current_at_least`` the row only matches while ``current``
    covers that amount, so a row count of zero means the funds were short.
    """
    stmt = update(Balance).where(Balance.user_id == user_id)
    if require_current_at_least is not None:
        stmt = stmt.where(Balance.current_cents >= require_current_at_least)
    return (
        stmt.values(
            current_cents=Balance.current_cents + delta.current_cents,
            income_cents=Balance.income_cents + delta.income_cents,
            expenses_cents=Balance.expenses_cents + delta.expenses_cents,
        )
        .execution_options(synchronize_session=False)
    )


def expected_balance(
    amounts_cents: Iterable[int], pot_totals_cents: Iterable[int]
) -> BalanceDelta:
    """Balance implied by the ledger: transactions net of money held in pots."""
    total = BalanceDelta()
    for amount in amounts_cents:
        total = total + contribution(amount)
    return total + BalanceDelta(current_cents=-sum(pot_totals_cents))


def capped_percentage(part_cents: int, whole_cents: int) -> float:
    if whole_cents <= 0:
        return 0.0
    return max(0.0, min(100.0, part_cents / whole_cents * 100))
