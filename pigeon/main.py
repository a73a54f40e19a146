"""Main FastAPI application for the Pigeon SMS wallet service."""

from contextlib import asynccontextmanager
from datetime import datetime

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pigeon.config import settings
from pigeon.api.sms_webhook import router as sms_webhook_router
from pigeon.api.wallet import router as wallet_router
from pigeon.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    MetricsMiddleware,
    RateLimitMiddleware,
    get_metrics
)
from pigeon.models.api_models import HealthResponse
from pigeon.observability import (
    setup_observability,
    instrument_fastapi_app,
    TracingContextMiddleware
)
from pigeon.services.intent_service import close_intent_classifier
from pigeon.services.sms_dispatcher import close_sms_dispatcher
from pigeon.services.wallet_service import close_wallet_registry
from pigeon.utils.scheduler import get_task_scheduler


# Configure structured logging
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    logger.info("Starting Pigeon SMS wallet service",
                port=settings.port,
                host=settings.host)

    setup_observability(
        service_name="pigeon-sms-wallet",
        service_version="1.0.0",
        otlp_endpoint=settings.otlp_endpoint,
        enable_console_export=settings.enable_console_telemetry
    )

    instrument_fastapi_app(app)

    get_task_scheduler().start()

    # Secrets are optional at boot; report which ones are missing
    logger.info(
        "Configuration loaded",
        account_store=settings.account_store_backend,
        default_chain=settings.default_chain,
        classifier_configured=bool(settings.gemini_api_key),
        sms_gateway_configured=bool(settings.httpsms_api_key and settings.httpsms_owner_phone),
        webhook_signing_enabled=bool(settings.httpsms_webhook_signing_key),
        algorand_admin_configured=bool(settings.algorand_admin_private_key),
        solana_admin_configured=bool(settings.solana_admin_private_key)
    )

    yield

    # Shutdown
    logger.info("Shutting down Pigeon SMS wallet service")
    await close_sms_dispatcher()
    await close_intent_classifier()
    await close_wallet_registry()


# Create FastAPI application
app = FastAPI(
    title="Pigeon SMS Wallet",
    description="SMS-controlled custodial wallet for Algorand and Solana testnets",
    version="1.0.0",
    lifespan=lifespan
)

# Add middleware (order matters - last added is executed first)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(
    RateLimitMiddleware,
    max_requests=100,
    window_seconds=60,
    exempt_paths=("/api/sms-webhook", "/api/esp32-sms-webhook")
)
app.add_middleware(TracingContextMiddleware)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(sms_webhook_router)
app.include_router(wallet_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed bodies as 400 in the service's error shape."""
    fields = [".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()]
    return JSONResponse(
        status_code=400,
        content={
            "ok": False,
            "error": f"Invalid request: {', '.join(fields) or 'malformed body'}",
            "correlation_id": getattr(request.state, "correlation_id", None) or request.headers.get("X-Request-ID", "unknown")
        }
    )


@app.get("/healthz", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow()
    )


@app.get("/metrics")
async def metrics_endpoint():
    """Application metrics endpoint."""
    return {
        "timestamp": datetime.utcnow().isoformat(),
        "metrics": get_metrics()
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "pigeon.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=False
    )
