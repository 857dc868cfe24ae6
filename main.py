import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import AuthService
from config import AuthSettings, get_auth_settings
from database import SessionLocal, init_db
from errors import AuthenticationError, FinanceError, NotFound, error_payload
from models import Category
from scheduler import SchedulerManager
from schemas import (
    BalanceOut,
    BillSort,
    BudgetIn,
    BudgetOut,
    BudgetUpdate,
    Identity,
    LoginIn,
    PasswordChangeIn,
    PotIn,
    PotTransferIn,
    PotUpdate,
    RecurringBillIn,
    RecurringBillOut,
    RecurringBillUpdate,
    RefreshIn,
    RegisterIn,
    TransactionIn,
    TransactionOut,
    TransactionSort,
    TransactionUpdate,
)
from services import (
    BalanceService,
    BudgetService,
    PotService,
    RecurringBillService,
    TransactionService,
    pot_with_progress,
)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Finance Tracker")
bearer = HTTPBearer(auto_error=False)


def ok(data=None) -> dict:
    return {"success": True, "data": data}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_auth_config() -> AuthSettings:
    return get_auth_settings()


def get_auth_service(
    db: Session = Depends(get_db), settings: AuthSettings = Depends(get_auth_config)
) -> AuthService:
    return AuthService(db, settings)


def current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
    auth: AuthService = Depends(get_auth_service),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("No token provided")
    return auth.authenticate(credentials.credentials)


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    # Refuse to serve with missing or weak signing configuration.
    get_auth_settings()
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.exception_handler(FinanceError)
async def finance_error_handler(request: Request, exc: FinanceError):
    return JSONResponse(
        status_code=exc.status_code, content=error_payload(exc.code, exc.message)
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = "Invalid request"
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    return JSONResponse(status_code=400, content=error_payload("VALIDATION_ERROR", message))


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if exc.status_code == 404:
        return JSONResponse(
            status_code=404, content=error_payload(NotFound.code, "Route not found")
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload("HTTP_ERROR", str(exc.detail)),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"unhandled_error: path={request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_payload("INTERNAL_ERROR", "An unexpected error occurred"),
    )


@app.get("/health")
def health():
    return {"status": "ok"}


# Auth


@app.post("/api/auth/register", status_code=201)
def register(data: RegisterIn, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.register(data))


@app.post("/api/auth/login")
def login(data: LoginIn, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.login(data))


@app.post("/api/auth/refresh")
def refresh(data: RefreshIn, auth: AuthService = Depends(get_auth_service)):
    return ok(auth.refresh(data.refresh_token))


@app.post("/api/auth/logout")
def logout(data: RefreshIn, auth: AuthService = Depends(get_auth_service)):
    auth.logout(data.refresh_token)
    return ok({"message": "Logged out"})


@app.get("/api/auth/me")
def me(
    identity: Identity = Depends(current_identity),
    auth: AuthService = Depends(get_auth_service),
):
    return ok(auth.me(identity.user_id))


@app.put("/api/auth/password")
def change_password(
    data: PasswordChangeIn,
    identity: Identity = Depends(current_identity),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(identity.user_id, data)
    return ok({"message": "Password changed"})


@app.delete("/api/auth/me")
def delete_account(
    identity: Identity = Depends(current_identity),
    auth: AuthService = Depends(get_auth_service),
):
    auth.delete_account(identity.user_id)
    return ok({"message": "Account deleted"})


# Balance


@app.get("/api/balance")
def get_balance(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    balance = BalanceService(db, identity.user_id).get()
    return ok(BalanceOut.model_validate(balance))


@app.get("/api/balance/audit")
def audit_balance(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return ok(BalanceService(db, identity.user_id).audit())


# Transactions


@app.get("/api/transactions")
def list_transactions(
    search: Optional[str] = None,
    category: Optional[Category] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    sort: TransactionSort = "latest",
    page: int = 1,
    limit: int = 10,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    service = TransactionService(db, identity.user_id)
    return ok(
        service.list(
            search=search,
            category=category,
            start=start,
            end=end,
            sort=sort,
            page=page,
            limit=limit,
        )
    )


@app.get("/api/transactions/{transaction_id}")
def get_transaction(
    transaction_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, identity.user_id).get(transaction_id)
    return ok(TransactionOut.model_validate(txn))


@app.post("/api/transactions", status_code=201)
def create_transaction(
    data: TransactionIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, identity.user_id).create(data)
    return ok(TransactionOut.model_validate(txn))


@app.patch("/api/transactions/{transaction_id}")
def update_transaction(
    transaction_id: int,
    data: TransactionUpdate,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, identity.user_id).update(transaction_id, data)
    return ok(TransactionOut.model_validate(txn))


@app.delete("/api/transactions/{transaction_id}")
def delete_transaction(
    transaction_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    TransactionService(db, identity.user_id).delete(transaction_id)
    return ok({"message": "Transaction deleted"})


# Budgets


@app.get("/api/budgets")
def list_budgets(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return ok(BudgetService(db, identity.user_id).list())


@app.get("/api/budgets/{category}/latest")
def latest_for_category(
    category: Category,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(BudgetService(db, identity.user_id).latest_transactions(category))


@app.get("/api/budgets/{budget_id}")
def get_budget(
    budget_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(BudgetService(db, identity.user_id).get_with_spending(budget_id))


@app.post("/api/budgets", status_code=201)
def create_budget(
    data: BudgetIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    budget = BudgetService(db, identity.user_id).create(data)
    return ok(BudgetOut.model_validate(budget))


@app.patch("/api/budgets/{budget_id}")
def update_budget(
    budget_id: int,
    data: BudgetUpdate,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    budget = BudgetService(db, identity.user_id).update(budget_id, data)
    return ok(BudgetOut.model_validate(budget))


@app.delete("/api/budgets/{budget_id}")
def delete_budget(
    budget_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    BudgetService(db, identity.user_id).delete(budget_id)
    return ok({"message": "Budget deleted"})


# Pots


@app.get("/api/pots")
def list_pots(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return ok(PotService(db, identity.user_id).list())


@app.get("/api/pots/{pot_id}")
def get_pot(
    pot_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(pot_with_progress(PotService(db, identity.user_id).get(pot_id)))


@app.post("/api/pots", status_code=201)
def create_pot(
    data: PotIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(pot_with_progress(PotService(db, identity.user_id).create(data)))


@app.patch("/api/pots/{pot_id}")
def update_pot(
    pot_id: int,
    data: PotUpdate,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(pot_with_progress(PotService(db, identity.user_id).update(pot_id, data)))


@app.delete("/api/pots/{pot_id}")
def delete_pot(
    pot_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    returned = PotService(db, identity.user_id).delete(pot_id)
    return ok({"message": "Pot deleted", "returned_cents": returned})


@app.post("/api/pots/{pot_id}/add")
def add_to_pot(
    pot_id: int,
    data: PotTransferIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    pot = PotService(db, identity.user_id).add_money(pot_id, data.amount_cents)
    return ok(pot_with_progress(pot))


@app.post("/api/pots/{pot_id}/withdraw")
def withdraw_from_pot(
    pot_id: int,
    data: PotTransferIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    pot = PotService(db, identity.user_id).withdraw(pot_id, data.amount_cents)
    return ok(pot_with_progress(pot))


# Recurring bills


@app.get("/api/bills")
def list_bills(
    search: Optional[str] = None,
    sort: BillSort = "latest",
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(RecurringBillService(db, identity.user_id).list(search=search, sort=sort))


@app.get("/api/bills/summary")
def bills_summary(
    identity: Identity = Depends(current_identity), db: Session = Depends(get_db)
):
    return ok(RecurringBillService(db, identity.user_id).summary())


@app.get("/api/bills/{bill_id}")
def get_bill(
    bill_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    return ok(RecurringBillService(db, identity.user_id).get_with_status(bill_id))


@app.post("/api/bills", status_code=201)
def create_bill(
    data: RecurringBillIn,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    bill = RecurringBillService(db, identity.user_id).create(data)
    return ok(RecurringBillOut.model_validate(bill))


@app.patch("/api/bills/{bill_id}")
def update_bill(
    bill_id: int,
    data: RecurringBillUpdate,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    bill = RecurringBillService(db, identity.user_id).update(bill_id, data)
    return ok(RecurringBillOut.model_validate(bill))


@app.delete("/api/bills/{bill_id}")
def delete_bill(
    bill_id: int,
    identity: Identity = Depends(current_identity),
    db: Session = Depends(get_db),
):
    RecurringBillService(db, identity.user_id).delete(bill_id)
    return ok({"message": "Bill deleted"})
