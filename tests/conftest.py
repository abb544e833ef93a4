# tests/conftest.py
"""
Pytest configuration and fixtures for async database testing.

Ключевые особенности:
- Отдельная SQLite-база (aiosqlite) на каждый тест в tmp_path: никаких общих состояний.
- Database/WalletLedger/CoinService создаются явно, как в lifespan приложения.
- HTTP-клиент: httpx.AsyncClient поверх ASGITransport, lifespan запускается явно.
- Фабрика JWT-заголовков для пользователя и администратора.
"""

from __future__ import annotations

import os
from collections.abc import AsyncIterator, Callable
from typing import Dict

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("ENVIRONMENT", "test")

from daswos.core.config import Settings  # noqa: E402
from daswos.core.db import Database  # noqa: E402
from daswos.core.security import create_access_token  # noqa: E402
from daswos.integrations.payments import MockPaymentProvider  # noqa: E402
from daswos.main import create_app  # noqa: E402
from daswos.services.coin_service import CoinService  # noqa: E402
from daswos.services.wallet_ledger import WalletLedger  # noqa: E402

TEST_SECRET_KEY = "test-secret-key-for-daswos-coins"
TEST_TOTAL_SUPPLY = 1_000_000


# ======================================================================================
# Настройки и БД
# ======================================================================================
@pytest.fixture
def settings(tmp_path) -> Settings:
    db_file = (tmp_path / "daswos_test.db").as_posix()
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{db_file}",
        SECRET_KEY=TEST_SECRET_KEY,
        PAYMENT_PROVIDER="mock",
        LOG_FORMAT="text",
        LOG_LEVEL="WARNING",
        CORS_ORIGINS=["*"],
        COIN_TOTAL_SUPPLY=TEST_TOTAL_SUPPLY,
        COIN_PRICE_CENTS=1,
        CLIENT_URL="http://shop.test",
    )


@pytest_asyncio.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    db = Database.from_settings(settings)
    await db.create_all()
    try:
        yield db
    finally:
        await db.dispose()


@pytest.fixture
def ledger(database: Database) -> WalletLedger:
    return WalletLedger(database)


@pytest.fixture
def service(database: Database, ledger: WalletLedger) -> CoinService:
    return CoinService(database, ledger, total_supply=TEST_TOTAL_SUPPLY)


@pytest_asyncio.fixture
async def provisioned(service: CoinService):
    """Эмиссия + системный кошелёк с полным объёмом."""
    return await service.provision()


# ======================================================================================
# Приложение и HTTP-клиент
# ======================================================================================
@pytest.fixture
def payment_provider(settings: Settings) -> MockPaymentProvider:
    return MockPaymentProvider(client_url=settings.CLIENT_URL)


@pytest.fixture
def app(settings: Settings, database: Database, payment_provider: MockPaymentProvider):
    return create_app(settings, database=database, payment_provider=payment_provider)


@pytest_asyncio.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    async with app.router.lifespan_context(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
            yield c


@pytest.fixture
def auth_headers(settings: Settings) -> Callable[..., Dict[str, str]]:
    def _make(user_id: int, *, is_admin: bool = False) -> Dict[str, str]:
        token = create_access_token(settings, user_id, is_admin=is_admin)
        return {"Authorization": f"Bearer {token}"}

    return _make
