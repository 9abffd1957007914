#main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from db import close_pool
from middleware import RequestContextMiddleware
from routes.admin_payments import router as admin_payments_router
from routes.cron import router as cron_router
from routes.health import router as health_router
from routes.metrics import router as metrics_router
from services.transition_ledger import shutdown_ledger
from settings import settings, validate_env_settings


logger = logging.getLogger("fundrelease.app")


def _configure_logging() -> None:
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(
            level=(settings.LOG_LEVEL or "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    shutdown_ledger()
    close_pool()


def create_app() -> FastAPI:
    _configure_logging()
    validate_env_settings()

    app = FastAPI(title="Fund Release Engine", version="1.0.0", lifespan=_lifespan)

    app.add_middleware(RequestContextMiddleware)

    # -----------------------------
    # ROUTERS
    # -----------------------------
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(cron_router)
    app.include_router(admin_payments_router)

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("unhandled error path=%s", request.url.path)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app


app = create_app()
