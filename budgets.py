from typing import Iterable

from ledger import capped_percentage
from models import Budget, Category, Transaction
from periods import Period
from schemas import BudgetWithSpending, TransactionOut


def spent_by_category(
    transactions: Iterable[Transaction], period: Period
) -> dict[Category, int]:
    """Outflow per category within ``period``. Income never counts."""
    spent: dict[Category, int] = {}
    for txn in transactions:
        if txn.amount_cents >= 0 or not period.contains(txn.date):
            continue
        spent[txn.category] = spent.get(txn.category, 0) - txn.amount_cents
    return spent


def with_spending(
    budget: Budget,
    spent_cents: int,
    latest: Iterable[TransactionOut] = (),
) -> BudgetWithSpending:
    return BudgetWithSpending(
        id=budget.id,
        category=budget.category,
        maximum_cents=budget.maximum_cents,
        theme=budget.theme,
        created_at=budget.created_at,
        updated_at=budget.updated_at,
        spent_cents=spent_cents,
        remaining_cents=budget.maximum_cents - spent_cents,
        percentage=capped_percentage(spent_cents, budget.maximum_cents),
        latest_transactions=list(latest),
    )


def summarize_budgets(
    budgets: Iterable[Budget],
    transactions: Iterable[Transaction],
    period: Period,
    latest_by_category: dict[Category, list[TransactionOut]] | None = None,
) -> list[BudgetWithSpending]:
    spent = spent_by_category(transactions, period)
    latest_by_category = latest_by_category or {}
    return [
        with_spending(
            budget,
            spent.get(budget.category, 0),
            latest_by_category.get(budget.category, []),
        )
        for budget in budgets
    ]
