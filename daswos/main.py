from __future__ import annotations

"""
ASGI-приложение DasWos Coins.

- create_app(): фабрика; зависимости (Database, провайдеры) можно подменить в тестах.
- lifespan: логирование → Database → схема (AUTO_CREATE_SCHEMA) → сервисы в app.state;
  на shutdown: dispose движка.
- Служебные эндпоинты: /health (liveness), /ready (проверка БД), /metrics (Prometheus).
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from fastapi import Depends, FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from daswos.api.routes import mount_v1
from daswos.core import metrics
from daswos.core.config import Settings, get_settings
from daswos.core.db import Database, get_database
from daswos.core.exceptions import register_exception_handlers
from daswos.core.logging import LoggingContextMiddleware, get_logger, integrate_uvicorn_loggers, setup_logging
from daswos.integrations.payments import PaymentProvider, build_payment_provider
from daswos.integrations.recommendations import RecommendationProvider, StubRecommendationProvider
from daswos.services.coin_service import CoinService
from daswos.services.wallet_ledger import WalletLedger

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    database: Optional[Database] = None,
    payment_provider: Optional[PaymentProvider] = None,
    recommendation_provider: Optional[RecommendationProvider] = None,
) -> FastAPI:
    cfg = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ---- Startup
        setup_logging(cfg)
        integrate_uvicorn_loggers()
        logger.info("Application startup", env=cfg.ENVIRONMENT, version=cfg.VERSION)

        db = database or Database.from_settings(cfg)
        if cfg.AUTO_CREATE_SCHEMA:
            await db.create_all()

        ledger = WalletLedger(db, system_user_id=cfg.SYSTEM_WALLET_USER_ID)
        app.state.settings = cfg
        app.state.db = db
        app.state.ledger = ledger
        app.state.coin_service = CoinService(db, ledger, total_supply=cfg.COIN_TOTAL_SUPPLY)
        app.state.payment_provider = payment_provider or build_payment_provider(cfg)
        app.state.recommendation_provider = recommendation_provider or StubRecommendationProvider()

        try:
            yield
        finally:
            # ---- Shutdown
            if database is None:
                await db.dispose()
            logger.info("Application shutdown complete")

    app = FastAPI(
        title=cfg.PROJECT_NAME,
        version=cfg.VERSION,
        debug=cfg.DEBUG,
        lifespan=lifespan,
    )
    app.state.settings = cfg

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.CORS_ORIGINS or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )
    app.add_middleware(LoggingContextMiddleware)
    register_exception_handlers(app)
    mount_v1(app, base_prefix=cfg.API_V1_STR)

    # ==================================================================================
    # Служебные эндпоинты
    # ==================================================================================
    @app.get("/health", tags=["service"])
    async def health() -> dict[str, Any]:
        return {"status": "healthy", "build_info": cfg.build_info}

    @app.get("/ready", tags=["service"])
    async def readiness(db: Database = Depends(get_database)) -> JSONResponse:
        report = await db.health_check()
        status_code = 200 if report["ok"] else 503
        body = {"status": "ready" if report["ok"] else "not_ready", "database": report}
        headers = {} if report["ok"] else {"Retry-After": "1"}
        return JSONResponse(status_code=status_code, content=body, headers=headers)

    @app.get("/metrics", tags=["service"], include_in_schema=False)
    async def prometheus_metrics() -> Response:
        payload, content_type = metrics.render_latest()
        return Response(content=payload, media_type=content_type)

    return app


app = create_app()

__all__ = ["create_app", "app"]
