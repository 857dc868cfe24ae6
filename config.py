import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path


class ConfigError(RuntimeError):
    pass


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        scheduler_enabled: bool,
        session_purge_minutes: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.scheduler_enabled = scheduler_enabled
        self.session_purge_minutes = session_purge_minutes


@dataclass(frozen=True)
class AuthSettings:
    """Signing keys and lifetimes handed to ``AuthService``.

    Access and refresh tokens are signed with different keys so that one
    leaked key cannot mint the other kind of token.
    """

    access_secret: str
    refresh_secret: str
    algorithm: str = "HS256"
    access_token_ttl: timedelta = timedelta(minutes=15)
    refresh_token_ttl: timedelta = timedelta(days=7)
    bcrypt_rounds: int = 12


MIN_BCRYPT_ROUNDS = 12


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("FINANCE_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "finance.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("FINANCE_TIMEZONE", "Europe/London")
    scheduler_enabled = _parse_bool(os.getenv("FINANCE_SCHEDULER_ENABLED"), True)
    session_purge_minutes = int(os.getenv("FINANCE_SESSION_PURGE_MINUTES", "60"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        scheduler_enabled=scheduler_enabled,
        session_purge_minutes=session_purge_minutes,
    )


def load_auth_settings(environ: dict[str, str]) -> AuthSettings:
    access_secret = (environ.get("FINANCE_JWT_ACCESS_SECRET") or "").strip()
    refresh_secret = (environ.get("FINANCE_JWT_REFRESH_SECRET") or "").strip()
    if not access_secret or not refresh_secret:
        raise ConfigError(
            "FINANCE_JWT_ACCESS_SECRET and FINANCE_JWT_REFRESH_SECRET must both be set"
        )
    if access_secret == refresh_secret:
        raise ConfigError("Access and refresh signing secrets must differ")

    bcrypt_rounds = int(environ.get("FINANCE_BCRYPT_ROUNDS", str(MIN_BCRYPT_ROUNDS)))
    if bcrypt_rounds < MIN_BCRYPT_ROUNDS:
        raise ConfigError(f"FINANCE_BCRYPT_ROUNDS must be at least {MIN_BCRYPT_ROUNDS}")

    return AuthSettings(
        access_secret=access_secret,
        refresh_secret=refresh_secret,
        algorithm=environ.get("FINANCE_JWT_ALGORITHM", "HS256"),
        access_token_ttl=timedelta(
            minutes=int(environ.get("FINANCE_ACCESS_TOKEN_MINUTES", "15"))
        ),
        refresh_token_ttl=timedelta(
            days=int(environ.get("FINANCE_REFRESH_TOKEN_DAYS", "7"))
        ),
        bcrypt_rounds=bcrypt_rounds,
    )


@lru_cache(maxsize=1)
def get_auth_settings() -> AuthSettings:
    return load_auth_settings(dict(os.environ))
