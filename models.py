from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Category(str, Enum):
    entertainment = "Entertainment"
    bills = "Bills"
    groceries = "Groceries"
    dining_out = "DiningOut"
    transportation = "Transportation"
    personal_care = "PersonalCare"
    education = "Education"
    lifestyle = "Lifestyle"
    shopping = "Shopping"
    general = "General"


CATEGORY_ENUM = SAEnum(
    Category,
    name="category",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(120))

    balance: Mapped[Optional["Balance"]] = relationship(
        "Balance", back_populates="user", cascade="all, delete-orphan", uselist=False
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", cascade="all, delete-orphan"
    )
    budgets: Mapped[list["Budget"]] = relationship(
        "Budget", cascade="all, delete-orphan"
    )
    pots: Mapped[list["Pot"]] = relationship(
        "Pot", cascade="all, delete-orphan"
    )
    recurring_bills: Mapped[list["RecurringBill"]] = relationship(
        "RecurringBill", cascade="all, delete-orphan"
    )
    sessions: Mapped[list["AuthSession"]] = relationship(
        "AuthSession", back_populates="user", cascade="all, delete-orphan"
    )


class Balance(Base, TimestampMixin):
    __tablename__ = "balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    current_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    income_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expenses_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    user: Mapped["User"] = relationship("User", back_populates="balance")


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    avatar: Mapped[Optional[str]] = mapped_column(String(255))
    category: Mapped[Category] = mapped_column(CATEGORY_ENUM, nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category", "date"),
        Index("ix_transactions_user_name_date", "user_id", "name", "date"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    category: Mapped[Category] = mapped_column(CATEGORY_ENUM, nullable=False)
    maximum_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    theme: Mapped[str] = mapped_column(String(7), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "category", name="uq_budget_user_category"),
        CheckConstraint("maximum_cents > 0", name="ck_budget_maximum_positive"),
    )


class Pot(Base, TimestampMixin):
    __tablename__ = "pots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    target_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    theme: Mapped[str] = mapped_column(String(7), nullable=False)

    __table_args__ = (
        CheckConstraint("total_cents >= 0", name="ck_pot_total_non_negative"),
        CheckConstraint("target_cents > 0", name="ck_pot_target_positive"),
        Index("ix_pots_user", "user_id"),
    )


class RecurringBill(Base, TimestampMixin):
    __tablename__ = "recurring_bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    vendor_name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_day: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Category] = mapped_column(CATEGORY_ENUM, nullable=False)
    theme: Mapped[str] = mapped_column(String(7), nullable=False)

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_bill_amount_positive"),
        CheckConstraint("due_day BETWEEN 1 AND 31", name="ck_bill_due_day_range"),
        Index("ix_recurring_bills_user_due_day", "user_id", "due_day"),
    )


class AuthSession(Base, TimestampMixin):
    """A stored refresh token. The row is the token's only proof of validity."""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped["User"] = relationship("User", back_populates="sessions")

    __table_args__ = (Index("ix_sessions_expires_at", "expires_at"),)
