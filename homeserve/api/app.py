"""
FastAPI application entry point.

`create_app()` builds the process-wide collaborators (location relay,
notification dispatcher, payment gateway) once and keeps them on
`app.state` for the dependency layer.
"""
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from homeserve.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from homeserve.api.routes import analytics, bookings, payments, reviews, tracking
from homeserve.lib.logging import get_logger, set_correlation_id
from homeserve.lib.metrics import get_metrics_collector
from homeserve.lib.settings import Settings, settings as default_settings
from homeserve.services.location_relay import LocationRelay
from homeserve.services.notification_service import build_notification_dispatcher
from homeserve.services.payment_gateway import RazorpayGateway

logger = get_logger(__name__)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Accepts X-Correlation-ID from incoming requests or generates a new one,
    and echoes it on the response.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        request.state.correlation_id = correlation_id
        set_correlation_id(correlation_id)

        logger.info(
            "Incoming request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "client": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        finally:
            set_correlation_id(None)

        response.headers["X-Correlation-ID"] = correlation_id
        logger.info(
            "Response sent",
            extra={"correlation_id": correlation_id, "status_code": response.status_code},
        )
        return response


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"{app.title} starting up...")
    yield
    await app.state.payment_gateway.aclose()
    logger.info(f"{app.title} shutting down...")


def create_app(config: Optional[Settings] = None) -> FastAPI:
    config = config or default_settings

    app = FastAPI(
        title=config.app_name,
        version="1.0.0",
        description="Home-services bookings, payments and live worker tracking",
        lifespan=lifespan,
        debug=config.debug,
    )

    app.state.settings = config
    app.state.location_relay = LocationRelay()
    app.state.notification_dispatcher = build_notification_dispatcher(config)
    app.state.payment_gateway = RazorpayGateway(config)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(bookings.router, prefix=config.api_prefix)
    app.include_router(payments.router, prefix=config.api_prefix)
    app.include_router(reviews.router, prefix=config.api_prefix)
    app.include_router(analytics.router, prefix=config.api_prefix)
    app.include_router(tracking.router)

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "ok"}

    @app.get("/metrics", include_in_schema=False)
    def metrics_endpoint():
        """Prometheus text-format counters."""
        return PlainTextResponse(
            content=get_metrics_collector().export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app


app = create_app()
