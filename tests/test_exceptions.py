import warnings

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import IntegrityError, OperationalError

from daswos.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    InsufficientFundsError,
    InvalidArgumentError,
    NotFoundError,
    StoreUnavailableError,
    WalletNotFoundError,
    register_exception_handlers,
    status_for,
)


@pytest.mark.parametrize(
    "exc,expected",
    [
        (WalletNotFoundError(3), 404),
        (NotFoundError("nope"), 404),
        (InvalidArgumentError("bad"), 422),
        (StoreUnavailableError(), 503),
        (InsufficientFundsError("short"), 409),
        (ConflictError("dup"), 409),
        (ExternalServiceError("stripe down"), 502),
    ],
)
def test_status_mapping(exc, expected):
    assert status_for(exc)[0] == expected


def test_store_unavailable_is_distinct_from_not_found():
    exc = StoreUnavailableError(retry_after=5)
    assert not isinstance(exc, NotFoundError)
    assert exc.headers["Retry-After"] == "5"
    assert exc.code == "STORE_UNAVAILABLE"


def _app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/store-down")
    async def store_down():
        raise StoreUnavailableError()

    @app.get("/raw-operational")
    async def raw_operational():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    @app.get("/duplicate")
    async def duplicate():
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: daswos_transactions.reference_id"))

    @app.get("/boom")
    async def boom():
        raise RuntimeError("unexpected")

    return app


@pytest.mark.asyncio
async def test_problem_json_bodies():
    app = _app()
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        r = await c.get("/store-down")
        assert r.status_code == 503
        assert r.headers["retry-after"] == "1"
        assert r.headers["content-type"].startswith("application/problem+json")
        assert r.json()["title"] == "Service temporarily unavailable"

        r = await c.get("/raw-operational")
        assert r.status_code == 503
        assert r.json()["code"] == "DB_UNAVAILABLE"

        r = await c.get("/duplicate")
        assert r.status_code == 409
        assert r.json()["code"] == "DUPLICATE_VALUE"

        r = await c.get("/boom")
        assert r.status_code == 500
        assert r.json()["code"] == "INTERNAL_ERROR"


@pytest.mark.asyncio
async def test_unprocessable_responses_emit_no_deprecation_warnings():
    app = _app()

    @app.get("/bad-argument")
    async def bad_argument():
        raise InvalidArgumentError("bad")

    @app.get("/needs-int")
    async def needs_int(n: int):
        return {"n": n}

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            r = await c.get("/bad-argument")
            assert r.status_code == 422
            assert r.json()["code"] == "INVALID_ARGUMENT"

            r = await c.get("/needs-int", params={"n": "x"})
            assert r.status_code == 422
            assert r.json()["code"] == "REQUEST_VALIDATION_ERROR"

    assert not [w for w in caught if "HTTP_422" in str(w.message)]
