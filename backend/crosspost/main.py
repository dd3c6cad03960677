"""FastAPI application entry point"""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from crosspost.api import oauth, posts
from crosspost.core import otel
from crosspost.core.config import settings
from crosspost.core.exceptions import (
    ContentValidationError,
    CrosspostError,
    InvalidStateError,
    NotConfiguredError,
    NotConnectedError,
    ProviderError,
    ReauthenticationRequired,
)
from crosspost.core.logging import setup_logging
from crosspost.db import redis as redis_module
from crosspost.db.session import engine, init_db
from crosspost.services.oauth.state import get_state_cache
from crosspost.tasks.publish_worker import start_publish_workers, stop_publish_workers

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown"""
    if otel.initialize_otel():
        otel.setup_otel_logging()
        otel.instrument_httpx()
        otel.instrument_sqlalchemy(engine)
        logger.info("OpenTelemetry initialized")
    else:
        logger.info("OpenTelemetry not configured - running without distributed tracing")

    logger.info("Initializing database...")
    try:
        init_db()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise

    logger.info("Testing Redis connection...")
    if not redis_module.ping():
        raise RuntimeError("Redis connection failed")
    logger.info("Redis connection successful")

    state_cache = get_state_cache()
    state_cache.start_sweeper()
    workers = start_publish_workers()
    logger.info(f"Started {len(workers)} publish workers")

    yield

    logger.info("Shutting down...")
    await stop_publish_workers(workers)
    await state_cache.stop_sweeper()


app = FastAPI(
    title="Crosspost Backend",
    description="Social account connections and multi-platform publishing",
    version="1.0.0",
    lifespan=lifespan
)

if settings.OTEL_EXPORTER_OTLP_ENDPOINT:
    otel.instrument_fastapi(app)

allowed_origins = [settings.FRONTEND_URL]
if settings.ENVIRONMENT == "development":
    allowed_origins.extend(["http://localhost:3000", "http://127.0.0.1:3000"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(oauth.router)
app.include_router(posts.router)


_STATUS_CODES = (
    (NotConfiguredError, 503),
    (InvalidStateError, 400),
    (ContentValidationError, 422),
    (NotConnectedError, 404),
    (ReauthenticationRequired, 401),
    (ProviderError, 502),
)


@app.exception_handler(CrosspostError)
async def crosspost_exception_handler(request: Request, exc: CrosspostError):
    """Map domain errors to HTTP responses"""
    status_code = next((code for kind, code in _STATUS_CODES if isinstance(exc, kind)), 500)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"error": type(exc).__name__, "detail": str(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"}
    )


@app.get("/metrics")
def metrics_endpoint():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "redis": redis_module.ping()}
