import pytest
from pydantic import ValidationError

from daswos.core.config import Settings, get_settings


def test_defaults():
    s = Settings(_env_file=None)
    assert s.API_V1_STR == "/api/v1"
    assert s.PROJECT_NAME == "DasWos Coins"
    assert s.SYSTEM_WALLET_USER_ID == 0
    assert s.PAYMENT_PROVIDER == "mock"


def test_settings_singleton():
    """get_settings кэширует экземпляр"""
    assert get_settings() is get_settings()


def test_cors_origins_parsing():
    assert Settings(_env_file=None, CORS_ORIGINS="https://a.test, https://b.test").CORS_ORIGINS == [
        "https://a.test",
        "https://b.test",
    ]
    assert Settings(_env_file=None, CORS_ORIGINS='["https://c.test"]').CORS_ORIGINS == ["https://c.test"]


def test_database_url_normalisation():
    s = Settings(_env_file=None, DATABASE_URL="postgres://u:p@db:5432/daswos")
    assert s.sqlalchemy_async_url == "postgresql+asyncpg://u:p@db:5432/daswos"
    assert s.db_driver == "postgresql"
    assert s.sqlalchemy_engine_options()["pool_size"] == s.DB_POOL_SIZE

    s = Settings(_env_file=None, DATABASE_URL="sqlite:///./local.db")
    assert s.sqlalchemy_async_url == "sqlite+aiosqlite:///./local.db"
    assert s.sqlalchemy_engine_options()["connect_args"] == {"timeout": s.SQLITE_BUSY_TIMEOUT}


def test_default_database_is_sqlite_file(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    s = Settings(_env_file=None)
    assert s.sqlalchemy_async_url.startswith("sqlite+aiosqlite:///")
    assert s.sqlalchemy_async_url.endswith("daswos.db")


@pytest.mark.parametrize(
    "field,value",
    [("ALGORITHM", "RS256"), ("PAYMENT_PROVIDER", "paypal"), ("LOG_FORMAT", "xml")],
)
def test_invalid_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_production_checks():
    s = Settings(_env_file=None, ENVIRONMENT="production", SECRET_KEY="changeme", DATABASE_URL="sqlite:///x.db")
    with pytest.raises(ValueError):
        s.check_secret_key()
    with pytest.raises(ValueError):
        s.check_database_url()

    ok = Settings(
        _env_file=None,
        ENVIRONMENT="production",
        SECRET_KEY="a-real-secret-value",
        DATABASE_URL="postgresql://u:p@db/daswos",
    )
    ok.check_secret_key()
    ok.check_database_url()


def test_stripe_requires_secrets():
    with pytest.raises(ValueError):
        Settings(_env_file=None, PAYMENT_PROVIDER="stripe").check_payment_provider()


def test_dump_settings_masks_secrets():
    dump = Settings(_env_file=None, SECRET_KEY="super-secret-value", STRIPE_SECRET_KEY="sk_test_123456789").dump_settings_safe()
    assert dump["SECRET_KEY"] != "super-secret-value"
    assert "***" in dump["STRIPE_SECRET_KEY"]
    assert dump["PROJECT_NAME"] == "DasWos Coins"
