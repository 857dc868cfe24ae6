from datetime import date

import pytest
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import InsufficientFunds, NotFound, ValidationError
from models import Category, Pot
from schemas import PotIn, PotUpdate, TransactionIn
from services import BalanceService, PotService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def _fund(session, amount_cents: int, user_id: int = 1) -> None:
    TransactionService(session, user_id).create(
        TransactionIn(
            name="Salary",
            category=Category.general,
            date=date(2025, 3, 1),
            amount_cents=amount_cents,
        )
    )


def _pot(session, user_id: int = 1, target_cents: int = 20_000):
    return PotService(session, user_id).create(
        PotIn(name="Savings", target_cents=target_cents, theme="#277C78")
    )


def _current(session, user_id: int = 1) -> int:
    return BalanceService(session, user_id).get().current_cents


def test_create_seeds_zero_total() -> None:
    session = make_session()
    pot = _pot(session)
    assert pot.total_cents == 0
    assert PotService(session, 1).list()[0].percentage == 0.0


def test_add_money_moves_from_balance() -> None:
    session = make_session()
    _fund(session, 10_000)
    pots = PotService(session, 1)
    pot = _pot(session)

    updated = pots.add_money(pot.id, 4_000)

    assert updated.total_cents == 4_000
    balance = BalanceService(session, 1).get()
    assert balance.current_cents == 6_000
    assert balance.income_cents == 10_000
    assert balance.expenses_cents == 0


def test_add_money_insufficient_balance_changes_nothing() -> None:
    session = make_session()
    _fund(session, 1_000)
    pots = PotService(session, 1)
    pot = _pot(session)

    with pytest.raises(InsufficientFunds):
        pots.add_money(pot.id, 1_001)

    assert pots.get(pot.id).total_cents == 0
    assert _current(session) == 1_000


def test_withdraw_whole_total_succeeds() -> None:
    session = make_session()
    _fund(session, 5_000)
    pots = PotService(session, 1)
    pot = _pot(session)
    pots.add_money(pot.id, 2_500)

    drained = pots.withdraw(pot.id, 2_500)

    assert drained.total_cents == 0
    assert _current(session) == 5_000


def test_withdraw_one_cent_over_total_fails_cleanly() -> None:
    session = make_session()
    _fund(session, 5_000)
    pots = PotService(session, 1)
    pot = _pot(session)
    pots.add_money(pot.id, 2_500)

    with pytest.raises(InsufficientFunds):
        pots.withdraw(pot.id, 2_501)

    assert pots.get(pot.id).total_cents == 2_500
    assert _current(session) == 2_500


def test_transfers_require_positive_amount() -> None:
    session = make_session()
    pots = PotService(session, 1)
    pot = _pot(session)
    with pytest.raises(ValidationError):
        pots.add_money(pot.id, 0)
    with pytest.raises(ValidationError):
        pots.withdraw(pot.id, -5)


def test_delete_returns_funds_to_balance() -> None:
    session = make_session()
    _fund(session, 8_000)
    pots = PotService(session, 1)
    pot = _pot(session)
    pots.add_money(pot.id, 3_000)
    assert _current(session) == 5_000

    returned = pots.delete(pot.id)

    assert returned == 3_000
    assert _current(session) == 8_000
    with pytest.raises(NotFound):
        pots.get(pot.id)
    assert BalanceService(session, 1).audit().consistent


def test_other_users_pot_is_not_found() -> None:
    session = make_session()
    _fund(session, 8_000, user_id=2)
    pot = _pot(session)

    intruder = PotService(session, 2)
    with pytest.raises(NotFound):
        intruder.add_money(pot.id, 1_000)
    with pytest.raises(NotFound):
        intruder.delete(pot.id)
    assert _current(session, user_id=2) == 8_000


def test_overfunded_progress_is_capped() -> None:
    session = make_session()
    _fund(session, 50_000)
    pots = PotService(session, 1)
    pot = _pot(session, target_cents=10_000)
    pots.add_money(pot.id, 15_000)

    view = pots.list()[0]
    assert view.total_cents == 15_000
    assert view.percentage == 100.0


def test_update_changes_descriptive_fields_only() -> None:
    session = make_session()
    pots = PotService(session, 1)
    pot = _pot(session)

    updated = pots.update(pot.id, PotUpdate(name="Holiday", target_cents=90_000))

    assert updated.name == "Holiday"
    assert updated.target_cents == 90_000
    assert updated.total_cents == 0


def test_add_money_to_pot_deleted_mid_transfer_keeps_balance(monkeypatch) -> None:
    session = make_session()
    _fund(session, 10_000)
    pots = PotService(session, 1)
    pot = _pot(session)
    found = PotService.get

    def get_then_remove(self, pot_id):
        row = found(self, pot_id)
        # Another request removes the row once the lookup has passed.
        self.session.execute(delete(Pot).where(Pot.id == pot_id))
        self.session.commit()
        return row

    monkeypatch.setattr(PotService, "get", get_then_remove)

    with pytest.raises(NotFound):
        pots.add_money(pot.id, 4_000)

    monkeypatch.undo()
    assert _current(session) == 10_000
    assert BalanceService(session, 1).audit().consistent
