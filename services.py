from __future__ import annotations

import logging
import math
from datetime import date
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from budgets import summarize_budgets, with_spending
from database import atomic
from errors import Conflict, InsufficientFunds, NotFound, ValidationError
from ledger import (
    BalanceDelta,
    balance_update,
    capped_percentage,
    expected_balance,
    on_create,
    on_delete,
    on_update,
    pot_transfer,
)
from models import Balance, Budget, Category, Pot, RecurringBill, Transaction
from periods import Period, local_today, month_period
from recurrence import bill_status, summarize_bills
from schemas import (
    BalanceAudit,
    BalanceOut,
    BillsSummary,
    BillWithStatus,
    BudgetIn,
    BudgetUpdate,
    BudgetWithSpending,
    PotIn,
    PotOut,
    PotUpdate,
    PotWithProgress,
    RecurringBillIn,
    RecurringBillUpdate,
    TransactionIn,
    TransactionOut,
    TransactionPage,
    TransactionUpdate,
)

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
LATEST_TRANSACTIONS = 3


def _reject_nulls(changes: dict[str, object], fields: tuple[str, ...]) -> None:
    for field in fields:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be null")


def _require_positive(amount_cents: int) -> None:
    if amount_cents <= 0:
        raise ValidationError("Amount must be greater than zero")


class BalanceService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _load(self) -> Optional[Balance]:
        stmt = (
            select(Balance)
            .where(Balance.user_id == self.user_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalar(stmt)

    def ensure(self) -> None:
        """Create the zeroed row if missing. Runs inside the caller's unit."""
        if self._load() is None:
            self.session.add(
                Balance(
                    user_id=self.user_id,
                    current_cents=0,
                    income_cents=0,
                    expenses_cents=0,
                )
            )
            self.session.flush()

    def get(self) -> Balance:
        balance = self._load()
        if balance is None:
            with atomic(self.session):
                self.ensure()
            balance = self._load()
        return balance

    def apply(self, delta: BalanceDelta) -> None:
        self.ensure()
        if delta.is_zero:
            return
        self.session.execute(balance_update(self.user_id, delta))

    def _expected(self) -> BalanceDelta:
        amounts = self.session.scalars(
            select(Transaction.amount_cents).where(
                Transaction.user_id == self.user_id
            )
        ).all()
        pot_totals = self.session.scalars(
            select(Pot.total_cents).where(Pot.user_id == self.user_id)
        ).all()
        return expected_balance(amounts, pot_totals)

    def audit(self) -> BalanceAudit:
        stored = self.get()
        expected = self._expected()
        consistent = (
            stored.current_cents == expected.current_cents
            and stored.income_cents == expected.income_cents
            and stored.expenses_cents == expected.expenses_cents
        )
        if not consistent:
            logger.warning(
                f"balance_drift: user_id={self.user_id} "
                f"stored={stored.current_cents} expected={expected.current_cents}"
            )
        return BalanceAudit(
            stored=BalanceOut.model_validate(stored),
            expected_current_cents=expected.current_cents,
            expected_income_cents=expected.income_cents,
            expected_expenses_cents=expected.expenses_cents,
            consistent=consistent,
        )

    def rebuild(self) -> Balance:
        with atomic(self.session):
            self.ensure()
            expected = self._expected()
            self.session.execute(
                update(Balance)
                .where(Balance.user_id == self.user_id)
                .values(
                    current_cents=expected.current_cents,
                    income_cents=expected.income_cents,
                    expenses_cents=expected.expenses_cents,
                )
                .execution_options(synchronize_session=False)
            )
        logger.info(
            f"balance_rebuilt: user_id={self.user_id} current={expected.current_cents}"
        )
        return self._load()


class TransactionService:
    SORTS = {
        "latest": (Transaction.date.desc(), Transaction.id.desc()),
        "oldest": (Transaction.date.asc(), Transaction.id.asc()),
        "atoz": (Transaction.name.asc(), Transaction.id.asc()),
        "ztoa": (Transaction.name.desc(), Transaction.id.desc()),
        "highest": (Transaction.amount_cents.desc(), Transaction.id.desc()),
        "lowest": (Transaction.amount_cents.asc(), Transaction.id.asc()),
    }

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.balances = BalanceService(session, user_id)

    def list(
        self,
        *,
        search: Optional[str] = None,
        category: Optional[Category] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        sort: str = "latest",
        page: int = 1,
        limit: int = 10,
    ) -> TransactionPage:
        if sort not in self.SORTS:
            raise ValidationError(f"Unknown sort option: {sort}")
        if start and end and start > end:
            raise ValidationError("Start date must be before end date")
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        filters = [Transaction.user_id == self.user_id]
        if search:
            filters.append(Transaction.name.ilike(f"%{search.strip()}%"))
        if category:
            filters.append(Transaction.category == category)
        if start:
            filters.append(Transaction.date >= start)
        if end:
            filters.append(Transaction.date <= end)

        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*filters)
            ).scalar_one()
        )
        items = self.session.scalars(
            select(Transaction)
            .where(*filters)
            .order_by(*self.SORTS[sort])
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()
        return TransactionPage(
            items=[TransactionOut.model_validate(t) for t in items],
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        )

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def _get_for_update(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(user_id=self.user_id, **data.model_dump())
        with atomic(self.session):
            self.session.add(txn)
            self.session.flush()
            self.balances.apply(on_create(txn.amount_cents))
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"amount_cents={txn.amount_cents}"
        )
        return txn

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, ("name", "category", "date", "amount_cents", "recurring"))
        with atomic(self.session):
            txn = self._get_for_update(transaction_id)
            old_amount = txn.amount_cents
            for field, value in changes.items():
                setattr(txn, field, value)
            self.session.flush()
            if txn.amount_cents != old_amount:
                self.balances.apply(on_update(old_amount, txn.amount_cents))
        return txn

    def delete(self, transaction_id: int) -> None:
        with atomic(self.session):
            txn = self._get_for_update(transaction_id)
            self.balances.apply(on_delete(txn.amount_cents))
            self.session.delete(txn)
        logger.info(
            f"transaction_deleted: user_id={self.user_id} id={transaction_id}"
        )

    def outflows_in(
        self,
        period: Period,
        *,
        categories: Optional[list[Category]] = None,
        names: Optional[list[str]] = None,
    ) -> list[Transaction]:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id,
            Transaction.amount_cents < 0,
            Transaction.date.between(period.start, period.end),
        )
        if categories is not None:
            stmt = stmt.where(Transaction.category.in_(categories))
        if names is not None:
            stmt = stmt.where(Transaction.name.in_(names))
        return self.session.scalars(stmt).all()

    def latest(self, category: Category, limit: int = LATEST_TRANSACTIONS) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.category == category,
            )
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)

    def list(self, today: Optional[date] = None) -> list[BudgetWithSpending]:
        period = month_period(today or local_today())
        budgets = self.session.scalars(
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        ).all()
        if not budgets:
            return []
        categories = [b.category for b in budgets]
        outflows = self.transactions.outflows_in(period, categories=categories)
        latest = {
            category: self.latest_transactions(category) for category in categories
        }
        return summarize_budgets(budgets, outflows, period, latest)

    def get(self, budget_id: int) -> Budget:
        budget = self.session.scalar(
            select(Budget).where(Budget.user_id == self.user_id, Budget.id == budget_id)
        )
        if not budget:
            raise NotFound("Budget not found")
        return budget

    def get_with_spending(
        self, budget_id: int, today: Optional[date] = None
    ) -> BudgetWithSpending:
        budget = self.get(budget_id)
        period = month_period(today or local_today())
        outflows = self.transactions.outflows_in(period, categories=[budget.category])
        spent = -sum(t.amount_cents for t in outflows)
        return with_spending(budget, spent, self.latest_transactions(budget.category))

    def latest_transactions(
        self, category: Category, limit: int = LATEST_TRANSACTIONS
    ) -> list[TransactionOut]:
        return [
            TransactionOut.model_validate(t)
            for t in self.transactions.latest(category, limit)
        ]

    def _category_taken(self, category: Category) -> bool:
        existing = self.session.scalar(
            select(Budget.id).where(
                Budget.user_id == self.user_id, Budget.category == category
            )
        )
        return existing is not None

    def create(self, data: BudgetIn) -> Budget:
        if self._category_taken(data.category):
            raise Conflict("Budget for this category already exists")
        budget = Budget(user_id=self.user_id, **data.model_dump())
        with atomic(self.session):
            self.session.add(budget)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise Conflict("Budget for this category already exists") from exc
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, ("category", "maximum_cents", "theme"))
        budget = self.get(budget_id)
        new_category = changes.get("category")
        if new_category and new_category != budget.category:
            if self._category_taken(new_category):
                raise Conflict("Budget for this category already exists")
        with atomic(self.session):
            for field, value in changes.items():
                setattr(budget, field, value)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise Conflict("Budget for this category already exists") from exc
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        with atomic(self.session):
            self.session.delete(budget)


def pot_with_progress(pot: Pot) -> PotWithProgress:
    return PotWithProgress(
        **PotOut.model_validate(pot).model_dump(),
        percentage=capped_percentage(pot.total_cents, pot.target_cents),
    )


class PotService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.balances = BalanceService(session, user_id)

    def list(self) -> list[PotWithProgress]:
        pots = self.session.scalars(
            select(Pot)
            .where(Pot.user_id == self.user_id)
            .order_by(Pot.created_at.desc(), Pot.id.desc())
        ).all()
        return [pot_with_progress(p) for p in pots]

    def get(self, pot_id: int) -> Pot:
        pot = self.session.scalar(
            select(Pot)
            .where(Pot.user_id == self.user_id, Pot.id == pot_id)
            .execution_options(populate_existing=True)
        )
        if not pot:
            raise NotFound("Pot not found")
        return pot

    def create(self, data: PotIn) -> Pot:
        pot = Pot(user_id=self.user_id, total_cents=0, **data.model_dump())
        with atomic(self.session):
            self.session.add(pot)
        return pot

    def update(self, pot_id: int, data: PotUpdate) -> Pot:
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(changes, ("name", "target_cents", "theme"))
        pot = self.get(pot_id)
        with atomic(self.session):
            for field, value in changes.items():
                setattr(pot, field, value)
        return pot

    def delete(self, pot_id: int) -> int:
        """Remove the pot, returning whatever it held to the balance."""
        with atomic(self.session):
            self.balances.ensure()
            returned = self.session.scalar(
                select(Pot.total_cents)
                .where(Pot.user_id == self.user_id, Pot.id == pot_id)
                .with_for_update()
            )
            if returned is None:
                raise NotFound("Pot not found")
            self.session.execute(balance_update(self.user_id, -pot_transfer(returned)))
            self.session.execute(
                delete(Pot).where(Pot.user_id == self.user_id, Pot.id == pot_id)
            )
        logger.info(
            f"pot_deleted: user_id={self.user_id} id={pot_id} returned_cents={returned}"
        )
        return returned

    def add_money(self, pot_id: int, amount_cents: int) -> Pot:
        _require_positive(amount_cents)
        self.get(pot_id)
        with atomic(self.session):
            self.balances.ensure()
            debited = self.session.execute(
                balance_update(
                    self.user_id,
                    pot_transfer(amount_cents),
                    require_current_at_least=amount_cents,
                )
            )
            if debited.rowcount != 1:
                logger.info(
                    f"pot_transfer_rejected: user_id={self.user_id} pot_id={pot_id} "
                    f"direction=add amount_cents={amount_cents}"
                )
                raise InsufficientFunds("Insufficient balance")
            credited = self.session.execute(
                update(Pot)
                .where(Pot.user_id == self.user_id, Pot.id == pot_id)
                .values(total_cents=Pot.total_cents + amount_cents)
                .execution_options(synchronize_session=False)
            )
            if credited.rowcount != 1:
                # Pot removed since the lookup; the debit rolls back with the unit.
                raise NotFound("Pot not found")
        return self.get(pot_id)

    def withdraw(self, pot_id: int, amount_cents: int) -> Pot:
        _require_positive(amount_cents)
        self.get(pot_id)
        with atomic(self.session):
            self.balances.ensure()
            drawn = self.session.execute(
                update(Pot)
                .where(
                    Pot.user_id == self.user_id,
                    Pot.id == pot_id,
                    Pot.total_cents >= amount_cents,
                )
                .values(total_cents=Pot.total_cents - amount_cents)
                .execution_options(synchronize_session=False)
            )
            if drawn.rowcount != 1:
                logger.info(
                    f"pot_transfer_rejected: user_id={self.user_id} pot_id={pot_id} "
                    f"direction=withdraw amount_cents={amount_cents}"
                )
                raise InsufficientFunds("Insufficient funds in pot")
            self.session.execute(
                balance_update(self.user_id, -pot_transfer(amount_cents))
            )
        return self.get(pot_id)


class RecurringBillService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.transactions = TransactionService(session, user_id)

    def _payments(self, bills: list[RecurringBill], today: date) -> list[Transaction]:
        if not bills:
            return []
        names = sorted({b.vendor_name for b in bills})
        return self.transactions.outflows_in(month_period(today), names=names)

    def list(
        self,
        *,
        search: Optional[str] = None,
        sort: str = "latest",
        today: Optional[date] = None,
    ) -> list[BillWithStatus]:
        if sort not in ("latest", "oldest"):
            raise ValidationError(f"Unknown sort option: {sort}")
        today = today or local_today()
        stmt = select(RecurringBill).where(RecurringBill.user_id == self.user_id)
        if search:
            stmt = stmt.where(RecurringBill.vendor_name.ilike(f"%{search.strip()}%"))
        if sort == "latest":
            stmt = stmt.order_by(RecurringBill.due_day.asc(), RecurringBill.id.asc())
        else:
            stmt = stmt.order_by(RecurringBill.due_day.desc(), RecurringBill.id.desc())
        bills = self.session.scalars(stmt).all()
        payments = self._payments(bills, today)
        return [bill_status(bill, payments, today) for bill in bills]

    def summary(self, today: Optional[date] = None) -> BillsSummary:
        today = today or local_today()
        bills = self.session.scalars(
            select(RecurringBill)
            .where(RecurringBill.user_id == self.user_id)
            .order_by(RecurringBill.due_day.asc(), RecurringBill.id.asc())
        ).all()
        return summarize_bills(bills, self._payments(bills, today), today)

    def get(self, bill_id: int) -> RecurringBill:
        bill = self.session.scalar(
            select(RecurringBill).where(
                RecurringBill.user_id == self.user_id, RecurringBill.id == bill_id
            )
        )
        if not bill:
            raise NotFound("Bill not found")
        return bill

    def get_with_status(
        self, bill_id: int, today: Optional[date] = None
    ) -> BillWithStatus:
        today = today or local_today()
        bill = self.get(bill_id)
        return bill_status(bill, self._payments([bill], today), today)

    def create(self, data: RecurringBillIn) -> RecurringBill:
        bill = RecurringBill(user_id=self.user_id, **data.model_dump())
        with atomic(self.session):
            self.session.add(bill)
        return bill

    def update(self, bill_id: int, data: RecurringBillUpdate) -> RecurringBill:
        changes = data.model_dump(exclude_unset=True)
        _reject_nulls(
            changes, ("vendor_name", "amount_cents", "due_day", "category", "theme")
        )
        bill = self.get(bill_id)
        with atomic(self.session):
            for field, value in changes.items():
                setattr(bill, field, value)
        return bill

    def delete(self, bill_id: int) -> None:
        bill = self.get(bill_id)
        with atomic(self.session):
            self.session.delete(bill)
