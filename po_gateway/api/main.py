"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from po_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from po_gateway.api.v1 import broker, operations, repo_fees, sync
from po_gateway.infrastructure.observability.logging import setup_logging
from po_gateway.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Portfolio Operations Gateway",
        description="Broker operations sync and caucion fee service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Last added = first executed
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(broker.router, prefix="/v1", tags=["broker"])
    app.include_router(sync.router, prefix="/v1", tags=["sync"])
    app.include_router(operations.router, prefix="/v1", tags=["operations"])
    app.include_router(repo_fees.router, prefix="/v1", tags=["repo"])

    return app


app = create_app()
