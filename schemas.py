import datetime as dt
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import Category

EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
THEME_PATTERN = r"^#[0-9A-Fa-f]{6}$"
# Largest magnitude accepted for any money input, in cents.
MAX_CENTS = 2**53

TransactionSort = Literal["latest", "oldest", "atoz", "ztoa", "highest", "lowest"]
BillSort = Literal["latest", "oldest"]


class RegisterIn(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=72)
    name: Optional[str] = Field(default=None, max_length=120)


class LoginIn(BaseModel):
    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(..., min_length=8, max_length=72)


class RefreshIn(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class PasswordChangeIn(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: str = Field(..., min_length=8, max_length=72)


class TransactionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    avatar: Optional[str] = Field(default=None, max_length=255)
    category: Category
    date: dt.date
    amount_cents: int = Field(..., ge=-MAX_CENTS, le=MAX_CENTS)
    recurring: bool = False


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    avatar: Optional[str] = Field(default=None, max_length=255)
    category: Optional[Category] = None
    date: Optional[dt.date] = None
    amount_cents: Optional[int] = Field(default=None, ge=-MAX_CENTS, le=MAX_CENTS)
    recurring: Optional[bool] = None


class BudgetIn(BaseModel):
    category: Category
    maximum_cents: int = Field(..., gt=0, le=MAX_CENTS)
    theme: str = Field(..., pattern=THEME_PATTERN)


class BudgetUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[Category] = None
    maximum_cents: Optional[int] = Field(default=None, gt=0, le=MAX_CENTS)
    theme: Optional[str] = Field(default=None, pattern=THEME_PATTERN)


class PotIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    target_cents: int = Field(..., gt=0, le=MAX_CENTS)
    theme: str = Field(..., pattern=THEME_PATTERN)


class PotUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=50)
    target_cents: Optional[int] = Field(default=None, gt=0, le=MAX_CENTS)
    theme: Optional[str] = Field(default=None, pattern=THEME_PATTERN)


class PotTransferIn(BaseModel):
    amount_cents: int = Field(..., gt=0, le=MAX_CENTS)


class RecurringBillIn(BaseModel):
    vendor_name: str = Field(..., min_length=1, max_length=100)
    amount_cents: int = Field(..., gt=0, le=MAX_CENTS)
    due_day: int = Field(..., ge=1, le=31)
    category: Category
    theme: str = Field(..., pattern=THEME_PATTERN)


class RecurringBillUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vendor_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    amount_cents: Optional[int] = Field(default=None, gt=0, le=MAX_CENTS)
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    category: Optional[Category] = None
    theme: Optional[str] = Field(default=None, pattern=THEME_PATTERN)


# Response views. Storage rows and derived views are kept as separate types.


class Identity(BaseModel):
    user_id: int
    email: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: Optional[str]
    created_at: datetime
    updated_at: datetime


class BalanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    current_cents: int
    income_cents: int
    expenses_cents: int
    updated_at: datetime


class BalanceAudit(BaseModel):
    stored: BalanceOut
    expected_current_cents: int
    expected_income_cents: int
    expected_expenses_cents: int
    consistent: bool


class ProfileOut(BaseModel):
    user: UserOut
    balance: BalanceOut


class AuthResult(BaseModel):
    user: UserOut
    access_token: str
    refresh_token: str
    token_type: Literal["bearer"] = "bearer"


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    avatar: Optional[str]
    category: Category
    date: dt.date
    amount_cents: int
    recurring: bool
    created_at: datetime
    updated_at: datetime


class TransactionPage(BaseModel):
    items: list[TransactionOut]
    page: int
    limit: int
    total: int
    total_pages: int


class BudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category: Category
    maximum_cents: int
    theme: str
    created_at: datetime
    updated_at: datetime


class BudgetWithSpending(BudgetOut):
    spent_cents: int
    remaining_cents: int
    percentage: float
    latest_transactions: list[TransactionOut] = Field(default_factory=list)


class PotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    target_cents: int
    total_cents: int
    theme: str
    created_at: datetime
    updated_at: datetime


class PotWithProgress(PotOut):
    percentage: float


class RecurringBillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_name: str
    amount_cents: int
    due_day: int
    category: Category
    theme: str
    created_at: datetime
    updated_at: datetime


class BillWithStatus(RecurringBillOut):
    is_paid: bool
    days_until_due: int


class BillsSummary(BaseModel):
    paid_cents: int = 0
    total_upcoming_cents: int = 0
    due_soon_cents: int = 0
    paid_bills: list[BillWithStatus] = Field(default_factory=list)
    upcoming_bills: list[BillWithStatus] = Field(default_factory=list)
    due_soon_bills: list[BillWithStatus] = Field(default_factory=list)
