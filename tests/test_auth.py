from datetime import date, timedelta

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from auth import AuthService
from config import AuthSettings
from database import Base
from errors import AuthenticationError, Conflict
from models import AuthSession, Balance, Category, Pot, Transaction, User, utcnow
from schemas import LoginIn, PasswordChangeIn, PotIn, RegisterIn, TransactionIn
from security import create_token
from services import PotService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_settings(**overrides) -> AuthSettings:
    values = {
        "access_secret": "access-secret-for-tests",
        "refresh_secret": "refresh-secret-for-tests",
        "bcrypt_rounds": 4,
    }
    values.update(overrides)
    return AuthSettings(**values)


def _register(auth: AuthService, email: str = "ada@example.com", password: str = "correct-horse"):
    return auth.register(RegisterIn(email=email, password=password, name="Ada"))


def _count(session, stmt) -> int:
    return int(session.execute(stmt).scalar_one())


def test_register_creates_user_balance_and_session() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())

    result = _register(auth)

    assert result.user.email == "ada@example.com"
    assert "password_hash" not in result.user.model_dump()
    balance = session.scalar(select(Balance).where(Balance.user_id == result.user.id))
    assert (balance.current_cents, balance.income_cents, balance.expenses_cents) == (0, 0, 0)
    assert session.scalar(select(AuthSession.token)) == result.refresh_token
    identity = auth.verify_access_token(result.access_token)
    assert identity.user_id == result.user.id
    assert identity.email == "ada@example.com"


def test_register_duplicate_email_conflicts() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    _register(auth)

    with pytest.raises(Conflict):
        _register(auth, email="ADA@example.com")
    assert _count(session, select(func.count(User.id))) == 1


def test_login_errors_do_not_reveal_which_part_failed() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    _register(auth)

    with pytest.raises(AuthenticationError) as unknown:
        auth.login(LoginIn(email="nobody@example.com", password="correct-horse"))
    with pytest.raises(AuthenticationError) as wrong:
        auth.login(LoginIn(email="ada@example.com", password="wrong-horse"))

    assert unknown.value.message == wrong.value.message


def test_login_opens_an_additional_session() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    _register(auth)

    result = auth.login(LoginIn(email="ada@example.com", password="correct-horse"))

    assert result.refresh_token
    assert _count(session, select(func.count(AuthSession.id))) == 2


def test_verify_rejects_wrong_type_and_foreign_signature() -> None:
    session = make_session()
    settings = make_settings()
    auth = AuthService(session, settings)
    result = _register(auth)

    with pytest.raises(AuthenticationError):
        auth.verify_access_token(result.refresh_token)
    with pytest.raises(AuthenticationError):
        auth.verify_access_token("not-a-token")

    forged, _ = create_token(
        make_settings(access_secret="someone-else"), "access", result.user.id, "ada@example.com"
    )
    with pytest.raises(AuthenticationError):
        auth.verify_access_token(forged)


def test_expired_access_token_rejected() -> None:
    session = make_session()
    auth = AuthService(session, make_settings(access_token_ttl=timedelta(seconds=-5)))
    result = _register(auth)

    with pytest.raises(AuthenticationError):
        auth.verify_access_token(result.access_token)


def test_refresh_rotates_and_old_token_is_single_use() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    first = _register(auth)

    second = auth.refresh(first.refresh_token)

    assert second.refresh_token != first.refresh_token
    assert auth.verify_access_token(second.access_token).user_id == first.user.id
    with pytest.raises(AuthenticationError):
        auth.refresh(first.refresh_token)
    third = auth.refresh(second.refresh_token)
    assert third.refresh_token not in (first.refresh_token, second.refresh_token)
    assert _count(session, select(func.count(AuthSession.id))) == 1


def test_refresh_with_expired_session_deletes_it() -> None:
    session = make_session()
    auth = AuthService(session, make_settings(refresh_token_ttl=timedelta(seconds=-5)))
    result = _register(auth)

    with pytest.raises(AuthenticationError):
        auth.refresh(result.refresh_token)

    assert _count(session, select(func.count(AuthSession.id))) == 0


def test_logout_is_idempotent() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    result = _register(auth)

    auth.logout(result.refresh_token)
    auth.logout(result.refresh_token)

    assert _count(session, select(func.count(AuthSession.id))) == 0
    with pytest.raises(AuthenticationError):
        auth.refresh(result.refresh_token)


def test_change_password_revokes_every_session() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    first = _register(auth)
    auth.login(LoginIn(email="ada@example.com", password="correct-horse"))

    with pytest.raises(AuthenticationError):
        auth.change_password(
            first.user.id,
            PasswordChangeIn(current_password="nope-nope", new_password="battery-staple"),
        )

    auth.change_password(
        first.user.id,
        PasswordChangeIn(current_password="correct-horse", new_password="battery-staple"),
    )

    assert _count(session, select(func.count(AuthSession.id))) == 0
    with pytest.raises(AuthenticationError):
        auth.login(LoginIn(email="ada@example.com", password="correct-horse"))
    assert auth.login(LoginIn(email="ada@example.com", password="battery-staple")).user.id == first.user.id


def test_me_returns_profile_and_balance() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    result = _register(auth)
    TransactionService(session, result.user.id).create(
        TransactionIn(name="Salary", category=Category.general, date=date(2025, 3, 1), amount_cents=9_000)
    )

    profile = auth.me(result.user.id)

    assert profile.user.email == "ada@example.com"
    assert profile.balance.current_cents == 9_000


def test_delete_account_cascades_to_owned_rows() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    result = _register(auth)
    user_id = result.user.id
    TransactionService(session, user_id).create(
        TransactionIn(name="Salary", category=Category.general, date=date(2025, 3, 1), amount_cents=9_000)
    )
    PotService(session, user_id).create(PotIn(name="Rainy day", target_cents=1_000, theme="#277C78"))

    auth.delete_account(user_id)

    assert session.get(User, user_id) is None
    for model in (Balance, Transaction, Pot, AuthSession):
        assert _count(session, select(func.count()).select_from(model).where(model.user_id == user_id)) == 0


def test_purge_removes_only_expired_sessions() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    result = _register(auth)
    session.add(
        AuthSession(
            user_id=result.user.id,
            token="stale-token",
            expires_at=utcnow() - timedelta(days=1),
        )
    )
    session.commit()

    assert auth.purge_expired_sessions() == 1
    remaining = session.scalars(select(AuthSession.token)).all()
    assert remaining == [result.refresh_token]


def test_authenticate_rejects_token_of_deleted_user() -> None:
    session = make_session()
    auth = AuthService(session, make_settings())
    result = _register(auth)
    assert auth.authenticate(result.access_token).user_id == result.user.id

    auth.delete_account(result.user.id)

    # The signature alone still verifies; the user lookup does not.
    assert auth.verify_access_token(result.access_token).user_id == result.user.id
    with pytest.raises(AuthenticationError):
        auth.authenticate(result.access_token)
