# backend/booking_core/main.py
from __future__ import annotations

import logging

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.responses import JSONResponse

from .core.config import settings
from .core.exceptions import RepositoryException
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes import bookings, stripe_webhooks

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(
        title="Booking Core",
        description="Slot reservation, checkout and payment settlement for tutor bookings",
        version="1.0.0",
    )

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings.router)
    app.include_router(api_v1)
    app.include_router(stripe_webhooks.router)

    @app.exception_handler(RepositoryException)
    async def repository_exception_handler(request: Request, exc: RepositoryException) -> JSONResponse:
        logger.error(f"Repository error on {request.method} {request.url.path}: {str(exc)}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy", "environment": settings.environment}

    @app.get("/metrics")
    def metrics() -> Response:
        return Response(
            content=prometheus_metrics.get_metrics(),
            media_type=prometheus_metrics.get_content_type(),
        )

    return app


app = create_app()
