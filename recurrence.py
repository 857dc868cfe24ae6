from datetime import date
from typing import Iterable

from models import RecurringBill, Transaction
from periods import Period, clamp_day, days_in_month, month_period, next_month
from schemas import BillsSummary, BillWithStatus, RecurringBillOut

DUE_SOON_DAYS = 5


def next_due_date(due_day: int, today: date) -> date:
    """Nearest occurrence of ``due_day`` on or after ``today``.

    The day snaps to the end of shorter months, so ``due_day=31`` falls on
    the 30th in a 30-day month.
    """
    this_month = clamp_day(today.year, today.month, due_day)
    if this_month >= today:
        return this_month
    year, month = next_month(today.year, today.month)
    return clamp_day(year, month, due_day)


def days_until_due(due_day: int, today: date) -> int:
    """Day count to the next due day, rolling over once this month's has passed.

    Counted on day-of-month numbers, not on the clamped calendar date, so
    ``due_day=31`` on 10 April is 21 days away.
    """
    if due_day >= today.day:
        return due_day - today.day
    return days_in_month(today.year, today.month) - today.day + due_day


def is_paid(
    bill: RecurringBill, transactions: Iterable[Transaction], period: Period
) -> bool:
    # Exact vendor name and exact negated amount within the month. A payment
    # split across two transactions is not recognised.
    for txn in transactions:
        if (
            txn.name == bill.vendor_name
            and txn.amount_cents == -bill.amount_cents
            and period.contains(txn.date)
        ):
            return True
    return False


def bill_status(
    bill: RecurringBill, transactions: Iterable[Transaction], today: date
) -> BillWithStatus:
    base = RecurringBillOut.model_validate(bill)
    return BillWithStatus(
        **base.model_dump(),
        is_paid=is_paid(bill, transactions, month_period(today)),
        days_until_due=days_until_due(bill.due_day, today),
    )


def summarize_bills(
    bills: Iterable[RecurringBill],
    transactions: Iterable[Transaction],
    today: date,
    due_soon_days: int = DUE_SOON_DAYS,
) -> BillsSummary:
    txns = list(transactions)
    summary = BillsSummary()
    for bill in bills:
        status = bill_status(bill, txns, today)
        if status.is_paid:
            summary.paid_cents += bill.amount_cents
            summary.paid_bills.append(status)
            continue
        summary.total_upcoming_cents += bill.amount_cents
        summary.upcoming_bills.append(status)
        if status.days_until_due <= due_soon_days:
            summary.due_soon_cents += bill.amount_cents
            summary.due_soon_bills.append(status)
    return summary
