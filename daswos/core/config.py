from __future__ import annotations

import os
import json
from functools import lru_cache
from pathlib import Path, PurePosixPath
from typing import Annotated, Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


# ================================
# ВСПОМОГАТЕЛЬНЫЕ ХЕЛПЕРЫ
# ================================
def _under_pytest() -> bool:
    return "PYTEST_CURRENT_TEST" in os.environ


def _project_root() -> Path:
    return Path(__file__).resolve().parent.parent.parent


def _mask_secret(val: Any) -> Any:
    if val is None:
        return None
    s = str(val)
    if not s:
        return s
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def _is_secret_key_name(key: str) -> bool:
    lk = key.lower()
    if any(s in lk for s in ("secret", "password", "token", "dsn")):
        return True
    if "key" in lk and "public" not in lk:
        return True
    return False


def _parse_list_like(v):
    if isinstance(v, str):
        v = v.strip()
        if v.startswith("[") and v.endswith("]"):
            try:
                parsed = json.loads(v)
            except json.JSONDecodeError:
                parsed = None
            if isinstance(parsed, list):
                return [str(i).strip() for i in parsed if str(i).strip()]
        return [i.strip() for i in v.split(",") if i.strip()]
    return v


_INSECURE_SECRETS = {"changeme", "secret", "password", ""}


# ================================
# НАСТРОЙКИ ПРИЛОЖЕНИЯ (Pydantic v2)
# ================================
class Settings(BaseSettings):
    """
    Конфиг DasWos Coins.
    - В продакшене разрешён только PostgreSQL.
    - В девелопменте и тестах fallback на SQLite (aiosqlite).
    - Секреты маскируются в дампах.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- базовые
    PROJECT_NAME: str = Field(default="DasWos Coins", description="Project name")
    VERSION: str = Field(default="0.1.0", description="Application version")
    ENVIRONMENT: str = Field(default="development", description="Environment")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_V1_STR: str = Field(default="/api/v1", description="API v1 prefix")

    # ---- security/JWT
    SECRET_KEY: str = Field(default="changeme", description="JWT secret key")
    ALGORITHM: str = Field(default="HS256", description="JWT algorithm")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=30, description="Access token expiry")

    # ---- БД
    DATABASE_URL: Optional[str] = Field(default=None, description="Database URL")
    DB_POOL_SIZE: int = Field(default=10, description="Pool size")
    DB_MAX_OVERFLOW: int = Field(default=20, description="Max overflow")
    DB_POOL_TIMEOUT: int = Field(default=30, description="Pool timeout (s)")
    DB_POOL_RECYCLE: int = Field(default=1800, description="Pool recycle (s)")
    DB_ECHO: bool = Field(default=False, description="Echo SQL")
    SQLITE_BUSY_TIMEOUT: int = Field(default=30, description="SQLite busy timeout (s)")
    AUTO_CREATE_SCHEMA: bool = Field(default=True, description="create_all() on startup")

    # ---- логи
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="text", description="Logging format (json|text)")

    # ---- CORS
    # NoDecode: "a,b" из env не парсится как JSON, разбор в валидаторе
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(default=["*"], description="CORS origins")

    # ---- монеты
    SYSTEM_WALLET_USER_ID: int = Field(default=0, description="Reserved system wallet owner")
    COIN_TOTAL_SUPPLY: int = Field(default=1_000_000_000, description="Total coin supply")
    COIN_PRICE_CENTS: int = Field(default=1, description="Price of one coin in minor currency units")

    # ---- платежи
    PAYMENT_PROVIDER: str = Field(default="mock", description="Payment provider (mock|stripe)")
    STRIPE_SECRET_KEY: Optional[str] = Field(default=None, description="Stripe secret key")
    STRIPE_WEBHOOK_SECRET: Optional[str] = Field(default=None, description="Stripe webhook signing secret")
    STRIPE_CURRENCY: str = Field(default="usd", description="Checkout currency")
    CLIENT_URL: str = Field(default="http://localhost:3003", description="Frontend base URL")

    # --------- валидаторы ---------
    @field_validator("CORS_ORIGINS", mode="before")
    def _cors(cls, v):
        return _parse_list_like(v)

    @field_validator("ALGORITHM")
    def check_alg(cls, v):
        if v not in {"HS256", "HS384", "HS512"}:
            raise ValueError(f"Unsupported JWT algorithm: {v}")
        return v

    @field_validator("PAYMENT_PROVIDER")
    def normalize_payment_provider(cls, v):
        v = (v or "").strip().lower()
        if v not in {"mock", "stripe"}:
            raise ValueError(f"Unsupported payment provider: {v}")
        return v

    @field_validator("LOG_FORMAT")
    def check_log_format(cls, v):
        v = (v or "").strip().lower()
        if v not in {"json", "text"}:
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")
        return v

    @field_validator("CLIENT_URL")
    def strip_client_url(cls, v):
        return (v or "").strip().rstrip("/")

    # --------- удобные свойства ---------
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in {"prod", "production"}

    @property
    def is_testing(self) -> bool:
        return self.ENVIRONMENT.lower() == "test" or _under_pytest()

    @property
    def build_info(self) -> dict:
        return {
            "project": self.PROJECT_NAME,
            "version": self.VERSION,
            "environment": self.ENVIRONMENT,
        }

    # --------- проверки ---------
    def check_secret_key(self) -> None:
        if self.is_production and (self.SECRET_KEY or "").strip().lower() in _INSECURE_SECRETS:
            raise ValueError("Set a secure SECRET_KEY in .env for production!")

    def _is_postgres_url(self, url: str) -> bool:
        scheme = (urlparse(url).scheme or "").lower()
        return scheme in {"postgres", "postgresql"} or scheme.startswith("postgresql+")

    def check_database_url(self) -> None:
        if self.is_production:
            if not self.DATABASE_URL:
                raise ValueError("DATABASE_URL must be set in production!")
            if not self._is_postgres_url(self.DATABASE_URL):
                raise ValueError("In production, only PostgreSQL is allowed for DATABASE_URL!")

    def check_payment_provider(self) -> None:
        if self.PAYMENT_PROVIDER == "stripe" and not (self.STRIPE_SECRET_KEY and self.STRIPE_WEBHOOK_SECRET):
            raise ValueError("STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET are required for PAYMENT_PROVIDER=stripe")

    # --------- SQLAlchemy ---------
    @property
    def sqlalchemy_async_url(self) -> str:
        """async-DSN: postgresql+asyncpg://... либо sqlite+aiosqlite://..."""
        url = (self.DATABASE_URL or "").strip()
        if not url:
            path = "/" + PurePosixPath(_project_root() / "daswos.db").as_posix()
            return f"sqlite+aiosqlite://{path}"
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)
        if url.startswith("postgresql+"):
            return "postgresql+asyncpg://" + url.split("://", 1)[1]
        if url.startswith("postgresql://"):
            return url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def db_driver(self) -> str:
        return self.sqlalchemy_async_url.split("://", 1)[0].split("+", 1)[0]

    def sqlalchemy_engine_options(self) -> Dict[str, Any]:
        opts: Dict[str, Any] = {
            "pool_pre_ping": True,
            "echo": bool(self.DB_ECHO or self.DEBUG),
        }
        if self.db_driver == "sqlite":
            opts["connect_args"] = {"timeout": self.SQLITE_BUSY_TIMEOUT}
            return opts
        opts.update(
            pool_size=self.DB_POOL_SIZE,
            max_overflow=self.DB_MAX_OVERFLOW,
            pool_timeout=self.DB_POOL_TIMEOUT,
            pool_recycle=self.DB_POOL_RECYCLE,
        )
        return opts

    # --------- дампы ---------
    def dump_settings_safe(self) -> dict:
        return {k: (_mask_secret(v) if _is_secret_key_name(k) else v) for k, v in self.model_dump().items()}


# Глобальный объект настроек
@lru_cache
def get_settings() -> Settings:
    s = Settings()
    if not _under_pytest():
        s.check_secret_key()
        s.check_database_url()
        s.check_payment_provider()
    return s


__all__ = ["Settings", "get_settings"]
