from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from budgets import spent_by_category
from database import Base
from errors import Conflict, NotFound
from models import Category, Transaction
from periods import month_period
from schemas import BudgetIn, BudgetUpdate, TransactionIn
from services import BudgetService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


TODAY = date(2025, 3, 15)


def _spend(session, amount_cents: int, category: Category, day: date, name: str = "Shop"):
    return TransactionService(session, 1).create(
        TransactionIn(name=name, category=category, date=day, amount_cents=amount_cents)
    )


def test_spent_counts_only_outflows_in_period() -> None:
    period = month_period(TODAY)
    txns = [
        Transaction(name="a", category=Category.groceries, date=date(2025, 3, 1), amount_cents=-1_000),
        Transaction(name="b", category=Category.groceries, date=date(2025, 3, 31), amount_cents=-500),
        Transaction(name="c", category=Category.groceries, date=date(2025, 2, 28), amount_cents=-9_999),
        Transaction(name="d", category=Category.groceries, date=date(2025, 3, 5), amount_cents=2_000),
        Transaction(name="e", category=Category.bills, date=date(2025, 3, 5), amount_cents=-700),
    ]

    assert spent_by_category(txns, period) == {
        Category.groceries: 1_500,
        Category.bills: 700,
    }


def test_duplicate_category_conflicts() -> None:
    session = make_session()
    budgets = BudgetService(session, 1)
    budgets.create(BudgetIn(category=Category.bills, maximum_cents=75_000, theme="#277C78"))

    with pytest.raises(Conflict):
        budgets.create(BudgetIn(category=Category.bills, maximum_cents=10_000, theme="#F2CDAC"))

    groceries = budgets.create(
        BudgetIn(category=Category.groceries, maximum_cents=10_000, theme="#F2CDAC")
    )
    assert groceries.id is not None


def test_same_category_allowed_for_different_users() -> None:
    session = make_session()
    BudgetService(session, 1).create(
        BudgetIn(category=Category.bills, maximum_cents=75_000, theme="#277C78")
    )
    other = BudgetService(session, 2).create(
        BudgetIn(category=Category.bills, maximum_cents=5_000, theme="#277C78")
    )
    assert other.user_id == 2


def test_update_to_taken_category_conflicts() -> None:
    session = make_session()
    budgets = BudgetService(session, 1)
    budgets.create(BudgetIn(category=Category.bills, maximum_cents=75_000, theme="#277C78"))
    dining = budgets.create(
        BudgetIn(category=Category.dining_out, maximum_cents=7_500, theme="#82C9D7")
    )

    with pytest.raises(Conflict):
        budgets.update(dining.id, BudgetUpdate(category=Category.bills))

    moved = budgets.update(dining.id, BudgetUpdate(category=Category.lifestyle))
    assert moved.category == Category.lifestyle
    same = budgets.update(dining.id, BudgetUpdate(category=Category.lifestyle, maximum_cents=8_000))
    assert same.maximum_cents == 8_000


def test_list_derives_spending_for_current_month() -> None:
    session = make_session()
    budgets = BudgetService(session, 1)
    budgets.create(BudgetIn(category=Category.dining_out, maximum_cents=5_000, theme="#82C9D7"))
    budgets.create(BudgetIn(category=Category.groceries, maximum_cents=20_000, theme="#F2CDAC"))
    _spend(session, -4_000, Category.dining_out, date(2025, 3, 2))
    _spend(session, -3_500, Category.dining_out, date(2025, 3, 12))
    _spend(session, -9_000, Category.dining_out, date(2025, 2, 27))
    _spend(session, 1_000, Category.dining_out, date(2025, 3, 3), name="Refund")
    _spend(session, -2_500, Category.groceries, date(2025, 3, 14))

    by_category = {b.category: b for b in budgets.list(today=TODAY)}

    dining = by_category[Category.dining_out]
    assert dining.spent_cents == 7_500
    assert dining.remaining_cents == -2_500
    assert dining.percentage == 100.0
    assert len(dining.latest_transactions) == 3
    assert dining.latest_transactions[0].date == date(2025, 3, 12)

    groceries = by_category[Category.groceries]
    assert groceries.spent_cents == 2_500
    assert groceries.remaining_cents == 17_500
    assert groceries.percentage == 12.5


def test_get_with_spending_and_missing_budget() -> None:
    session = make_session()
    budgets = BudgetService(session, 1)
    budget = budgets.create(
        BudgetIn(category=Category.shopping, maximum_cents=10_000, theme="#934F6F")
    )
    _spend(session, -2_000, Category.shopping, date(2025, 3, 1))

    view = budgets.get_with_spending(budget.id, today=TODAY)
    assert view.spent_cents == 2_000
    assert view.percentage == 20.0

    budgets.delete(budget.id)
    with pytest.raises(NotFound):
        budgets.get(budget.id)
    with pytest.raises(NotFound):
        BudgetService(session, 2).get_with_spending(budget.id, today=TODAY)
