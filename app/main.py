from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from app.api.routes.admin_billing import router as admin_billing_router
from app.api.routes.billing import router as billing_router
from app.api.routes.health import router as health_router
from app.api.routes.stripe_webhook import router as stripe_webhook_router
from app.billing.services import build_billing_services
from app.core.config import get_settings
from app.core.logging import configure_logging
from app.db.session import dispose_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.app_env != "dev")

    app = FastAPI(
        title="GlowUp Billing API",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.billing_services = build_billing_services(settings)
    app.include_router(health_router)
    app.include_router(billing_router)
    app.include_router(admin_billing_router)
    app.include_router(stripe_webhook_router)
    return app


app = create_app()


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_env == "dev",
    )


if __name__ == "__main__":
    run()
