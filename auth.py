"""Session and token lifecycle.

Access tokens are stateless and verified by signature alone. Refresh tokens
are backed by a row in ``sessions``; a refresh token is valid only while its
row exists and has not expired, and every successful refresh rotates the row
to a new token so the old one can never be used again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import lru_cache

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import AuthSettings
from database import apply_atomically, atomic
from errors import AuthenticationError, Conflict, NotFound
from models import AuthSession, Balance, User, utcnow
from schemas import (
    AuthResult,
    BalanceOut,
    Identity,
    LoginIn,
    PasswordChangeIn,
    ProfileOut,
    RegisterIn,
    UserOut,
)
from security import create_token, decode_token, hash_password, verify_password
from services import BalanceService

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH = "Invalid or expired refresh token"


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    # Compared against on unknown emails so both failure paths cost a hash.
    return hash_password("not-a-real-password", rounds)


def _normalize_email(email: str) -> str:
    return email.strip().lower()


def _naive_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class AuthService:
    def __init__(self, session: Session, settings: AuthSettings) -> None:
        self.session = session
        self.settings = settings

    def register(self, data: RegisterIn) -> AuthResult:
        email = _normalize_email(data.email)
        existing = self.session.scalar(select(User.id).where(User.email == email))
        if existing is not None:
            raise Conflict("User already exists")

        password_hash = hash_password(data.password, self.settings.bcrypt_rounds)
        with atomic(self.session):
            user = User(email=email, password_hash=password_hash, name=data.name)
            user.balance = Balance(current_cents=0, income_cents=0, expenses_cents=0)
            self.session.add(user)
            try:
                self.session.flush()
            except IntegrityError as exc:
                raise Conflict("User already exists") from exc
            result = self._issue_tokens(user)
        logger.info(f"user_registered: user_id={user.id}")
        return result

    def login(self, data: LoginIn) -> AuthResult:
        email = _normalize_email(data.email)
        user = self.session.scalar(select(User).where(User.email == email))
        if user is None:
            verify_password(data.password, _dummy_hash(self.settings.bcrypt_rounds))
            logger.info("login_failed: reason=credentials")
            raise AuthenticationError(INVALID_CREDENTIALS)
        if not verify_password(data.password, user.password_hash):
            logger.info("login_failed: reason=credentials")
            raise AuthenticationError(INVALID_CREDENTIALS)

        with atomic(self.session):
            result = self._issue_tokens(user)
        logger.info(f"login_succeeded: user_id={user.id}")
        return result

    def verify_access_token(self, token: str) -> Identity:
        payload = decode_token(self.settings, token, "access")
        return Identity(user_id=payload["userId"], email=payload["email"])

    def authenticate(self, token: str) -> Identity:
        """Verify the token and require that its user still exists."""
        identity = self.verify_access_token(token)
        if self.session.get(User, identity.user_id) is None:
            logger.info(f"token_rejected: user_id={identity.user_id} reason=user_missing")
            raise AuthenticationError("User no longer exists")
        return identity

    def refresh(self, refresh_token: str) -> AuthResult:
        auth_session = self.session.scalar(
            select(AuthSession)
            .where(AuthSession.token == refresh_token)
            .execution_options(populate_existing=True)
        )
        if auth_session is None:
            raise AuthenticationError(INVALID_REFRESH)

        user_id = auth_session.user_id
        if auth_session.expires_at <= utcnow():
            apply_atomically(
                self.session,
                [delete(AuthSession).where(AuthSession.id == auth_session.id)],
            )
            logger.info(f"refresh_rejected: user_id={user_id} reason=expired")
            raise AuthenticationError(INVALID_REFRESH)

        user = auth_session.user
        access_token, _ = create_token(self.settings, "access", user.id, user.email)
        new_refresh, expires_at = create_token(
            self.settings, "refresh", user.id, user.email
        )
        with atomic(self.session):
            # Conditional on the old token so a concurrent refresh of the same
            # token cannot also succeed.
            rotated = self.session.execute(
                update(AuthSession)
                .where(
                    AuthSession.id == auth_session.id,
                    AuthSession.token == refresh_token,
                )
                .values(token=new_refresh, expires_at=_naive_utc(expires_at))
                .execution_options(synchronize_session=False)
            )
            if rotated.rowcount != 1:
                raise AuthenticationError(INVALID_REFRESH)
        logger.info(f"refresh_rotated: user_id={user.id}")
        return AuthResult(
            user=UserOut.model_validate(user),
            access_token=access_token,
            refresh_token=new_refresh,
        )

    def logout(self, refresh_token: str) -> None:
        apply_atomically(
            self.session,
            [delete(AuthSession).where(AuthSession.token == refresh_token)],
        )

    def me(self, user_id: int) -> ProfileOut:
        user = self._get_user(user_id)
        balance = BalanceService(self.session, user_id).get()
        return ProfileOut(
            user=UserOut.model_validate(user),
            balance=BalanceOut.model_validate(balance),
        )

    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        user = self._get_user(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect")
        password_hash = hash_password(data.new_password, self.settings.bcrypt_rounds)
        with atomic(self.session):
            user.password_hash = password_hash
            self.session.execute(
                delete(AuthSession).where(AuthSession.user_id == user_id)
            )
        logger.info(f"password_changed: user_id={user_id} sessions_revoked=all")

    def delete_account(self, user_id: int) -> None:
        user = self._get_user(user_id)
        with atomic(self.session):
            self.session.delete(user)
        logger.info(f"user_deleted: user_id={user_id}")

    def purge_expired_sessions(self) -> int:
        (result,) = apply_atomically(
            self.session,
            [delete(AuthSession).where(AuthSession.expires_at <= utcnow())],
        )
        count = result.rowcount or 0
        logger.info(f"sessions_purged: count={count}")
        return count

    def _get_user(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def _issue_tokens(self, user: User) -> AuthResult:
        access_token, _ = create_token(self.settings, "access", user.id, user.email)
        refresh_token, expires_at = create_token(
            self.settings, "refresh", user.id, user.email
        )
        self.session.add(
            AuthSession(
                user_id=user.id,
                token=refresh_token,
                expires_at=_naive_utc(expires_at),
            )
        )
        self.session.flush()
        return AuthResult(
            user=UserOut.model_validate(user),
            access_token=access_token,
            refresh_token=refresh_token,
        )
