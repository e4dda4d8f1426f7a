"""FastAPI application setup"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from deoglory.api.routes import router, health_router
from deoglory.api.metrics_routes import router as metrics_router
from deoglory.api.middleware import setup_cors, setup_rate_limiting
from deoglory.config import LOG_LEVEL, validate_config
from deoglory.db.connection import db
from deoglory.exceptions import DeoGloryError
from deoglory.observability import metrics
from deoglory.observability.metrics_middleware import setup_metrics_middleware
from deoglory.observability.sentry_config import init_sentry, shutdown_sentry
from deoglory.services.container import init_container

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifecycle manager for FastAPI application"""
    # Startup
    logger.info("Starting study engine API...")
    validate_config()
    init_sentry()
    metrics.init_metrics()

    await db.init_pool()
    logger.info("Database pool initialized")

    container = init_container(db)
    seeded = await container.study_service.seed_achievement_catalog()
    logger.info(f"Achievement catalog ready ({seeded} new entries)")

    yield

    # Shutdown
    logger.info("Shutting down study engine API...")
    await db.close_pool()
    logger.info("Database pool closed")
    shutdown_sentry()


def create_api_application() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="DeoGlory Study Engine API",
        description="Study progression engine: levels, lesson stages, unlocks, streaks and Final Challenges",
        version="1.0.0",
        lifespan=lifespan
    )

    # Setup middleware
    setup_cors(app)
    setup_rate_limiting(app)
    setup_metrics_middleware(app)

    # Include routes
    app.include_router(router)
    app.include_router(health_router)
    app.include_router(metrics_router)

    @app.exception_handler(DeoGloryError)
    async def engine_exception_handler(request: Request, exc: DeoGloryError):
        metrics.errors_total.labels(error_type=exc.__class__.__name__).inc()
        return JSONResponse(
            status_code=exc.http_status,
            content=jsonable_encoder(exc.to_dict())
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        metrics.errors_total.labels(error_type=exc.__class__.__name__).inc()
        return JSONResponse(
            status_code=500,
            content={"error": "Internal server error", "detail": str(exc)}
        )

    logger.info("FastAPI application created")

    return app
