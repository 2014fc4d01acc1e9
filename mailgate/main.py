# mailgate/main.py
import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from mailgate.core.config import settings
from mailgate.core.logging import setup_logging
from mailgate.core.errors import register_error_handlers
from mailgate.api.v1.router import api_router
from mailgate.db.session import engine
from mailgate.services.scheduler import lifespan_scheduler

# Monitoring
import sentry_sdk
from prometheus_fastapi_instrumentator import Instrumentator

logger = setup_logging()
log = logging.getLogger(__name__)

PROD_LIKE_ENVS = {"prod", "production", "staging", "preview"}


def _validate_secrets() -> None:
    """
    正式環境不允許弱 SECRET_KEY，也不允許缺少 Google OAuth client secret。
    """
    if (settings.ENV or "").lower() not in PROD_LIKE_ENVS:
        return
    problems = []
    if not settings.SECRET_KEY or len(settings.SECRET_KEY) < 32:
        problems.append("SECRET_KEY")
    if not settings.GOOGLE_CLIENT_SECRET:
        problems.append("GOOGLE_CLIENT_SECRET")
    if problems:
        raise RuntimeError(
            f"Insecure config for {', '.join(problems)} in ENV={settings.ENV}. "
            "Please set them via environment variables."
        )


def _init_sentry() -> None:
    dsn = settings.SENTRY_DSN or os.getenv("SENTRY_DSN")
    if not dsn:
        return
    sentry_sdk.init(
        dsn=dsn,
        traces_sample_rate=float(settings.SENTRY_TRACES_SAMPLE_RATE),
        environment=settings.SENTRY_ENV or settings.ENV,
    )


def _mount_ops_routes(app: FastAPI) -> None:
    @app.get("/", summary="Root")
    async def root():
        return {"app": settings.APP_NAME, "env": settings.ENV}

    @app.get("/healthz", tags=["ops"])
    async def healthz():
        return {"ok": True}

    @app.get("/readyz", tags=["ops"])
    async def readyz():
        # 資料庫連不上就回 503，讓負載平衡器先不導流量
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Readiness probe failed: {}", e)
            return JSONResponse(status_code=503, content={"ready": False})
        return {"ready": True}


def create_app() -> FastAPI:
    _validate_secrets()
    _init_sentry()

    # lifespan 內含 APScheduler：session 過期、Gmail watch 續訂
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan_scheduler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---- Prometheus /metrics ----
    Instrumentator().instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    register_error_handlers(app)
    app.include_router(api_router, prefix=settings.API_V1_PREFIX)
    _mount_ops_routes(app)

    log.info("Application initialized (env=%s)", settings.ENV)
    return app


# Uvicorn 進入點
app = create_app()
