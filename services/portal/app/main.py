from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .database import init_db, engine
from .routes import admin, health, public

# Import centralized configuration
from app.config import settings

# Import observability components
from app.obs.logging import setup_logging, get_logger
from app.obs.tracing import setup_tracing, instrument_fastapi, instrument_sqlalchemy
from app.obs.middleware import ObservabilityMiddleware
from app.obs.errors import register_error_handlers
from app.obs.metrics import metrics as metrics_collector
from app.obs.sentry import setup_sentry

from app.middleware.rate_limiter import build_rate_limiter
from app.middleware.security import SecurityHeadersMiddleware, SecurityTracker

# Setup observability
setup_logging()
setup_tracing()
setup_sentry()  # Initialize Sentry for error tracking
instrument_sqlalchemy(engine)

logger = get_logger(__name__)

app = FastAPI(title="PAL Course Material API")

# Instrument FastAPI with OpenTelemetry
instrument_fastapi(app)

# Process-local abuse-control state, shared by every request
app.state.rate_limiter = build_rate_limiter(settings)
app.state.security_tracker = SecurityTracker.from_settings(settings)

# Register error handlers
register_error_handlers(app)

# CORS middleware configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-Id", "Retry-After"],
)

# Security headers on every /api/ response
app.add_middleware(SecurityHeadersMiddleware)

# Observability middleware (added last so it wraps everything else)
app.add_middleware(ObservabilityMiddleware)

# Include routers
app.include_router(health.router)  # Health checks first
app.include_router(public.router)  # Catalog, download and material requests
app.include_router(admin.router)  # Admin console


# Initialize database tables on startup
@app.on_event("startup")
async def startup_event():
    init_db()
    logger.info(
        "PAL API started",
        extra={'details': {
            "environment": settings.ENVIRONMENT,
            "rate_limiter": type(app.state.rate_limiter).__name__,
        }},
    )


@app.get("/metrics")
async def metrics_endpoint():
    """Prometheus metrics endpoint."""
    return metrics_collector.get_metrics_response()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
