"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from bcard_gateway.api.middleware import MetricsMiddleware, RequestIDMiddleware
from bcard_gateway.api.v1 import cards, funding_sources, history, settlements, users
from bcard_gateway.config import settings
from bcard_gateway.infrastructure.observability.logging import setup_logging

setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="bcard Gateway",
        description="Split payment settlement and single-use virtual card issuing",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Last added runs first
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name, "vendor": settings.vendor}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(settlements.router, prefix="/v1", tags=["settlements"])
    app.include_router(funding_sources.router, prefix="/v1", tags=["funding-sources"])
    app.include_router(cards.router, prefix="/v1", tags=["cards"])
    app.include_router(history.router, prefix="/v1", tags=["history"])
    app.include_router(users.router, prefix="/v1", tags=["users"])

    return app


app = create_app()
