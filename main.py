import json
import logging
import logging.config
import os
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.openapi.utils import get_openapi
from pydantic import ValidationError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import get_settings
from app.db.session import engine
from app.api.v1 import router as v1_router
from app.middleware.rate_limit import RateLimitMiddleware


# ============================================================================
# CONFIGURATION & SETTINGS
# ============================================================================

settings = get_settings()

LOG_DIR = "logs"
_file_logging = settings.is_production

if _file_logging:
    os.makedirs(LOG_DIR, exist_ok=True)

# Configure structured logging
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
        "detailed": {
            "format": "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "default",
            "stream": "ext://sys.stdout",
        },
    },
    "loggers": {
        "": {  # root logger
            "handlers": ["console", "file"] if _file_logging else ["console"],
            "level": "INFO",
            "propagate": False,
        },
        "app": {
            "handlers": ["console", "file", "error_file"] if _file_logging else ["console"],
            "level": "DEBUG",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["console", "file"] if _file_logging else ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}

if _file_logging:
    LOGGING_CONFIG["handlers"].update({
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "DEBUG",
            "formatter": "detailed",
            "filename": f"{LOG_DIR}/app.log",
            "maxBytes": 10485760,  # 10MB
            "backupCount": 10,
        },
        "error_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "ERROR",
            "formatter": "detailed",
            "filename": f"{LOG_DIR}/error.log",
            "maxBytes": 10485760,  # 10MB
            "backupCount": 10,
        },
    })

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)


# ============================================================================
# LIFECYCLE EVENTS
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle - startup and shutdown events.
    """
    logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    import app.models  # noqa: F401  registers every table on Base.metadata

    try:
        from app.db.base import Base

        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection established")
            await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables created/verified")

    except SQLAlchemyError as e:
        logger.error(f"Database connection failed: {str(e)}")
        raise

    if settings.smtp_configured:
        logger.info("Email notifications configured")
    else:
        logger.info("SMTP not configured; invoice e-mail is disabled")

    if settings.paymongo_configured:
        logger.info("PayMongo online payments configured")
    else:
        logger.info("PAYMONGO_SECRET_KEY not set; online payments are disabled")

    yield

    # Shutdown
    logger.info("Shutting down application")
    await engine.dispose()
    logger.info("All resources cleaned up")


# ============================================================================
# FASTAPI APP INITIALIZATION
# ============================================================================

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    description="Dental clinic back office: inventory, purchasing, billing and online payments",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ============================================================================
# MIDDLEWARE CONFIGURATION
# ============================================================================

# CORS Middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS if settings.CORS_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

if settings.RATE_LIMIT_ENABLED:
    app.add_middleware(RateLimitMiddleware)

# ============================================================================
# CUSTOM MIDDLEWARE
# ============================================================================

@app.middleware("http")
async def log_requests_middleware(request: Request, call_next):
    """
    Log all HTTP requests and responses.
    """
    start_time = time.time()
    request_id = getattr(request.state, "request_id", "unknown")

    response = await call_next(request)

    process_time = time.time() - start_time
    logger.info(
        f"[{request_id}] {request.method} {request.url.path} - "
        f"Status: {response.status_code} - Duration: {process_time:.3f}s"
    )

    response.headers["X-Process-Time"] = str(process_time)
    return response


@app.middleware("http")
async def add_request_id_middleware(request: Request, call_next):
    """
    Add request ID to all requests for tracing and logging.
    An incoming X-Request-ID from the gateway is kept.
    """
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id

    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _json_safe(value):
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Business errors raised by the services.
    Keeps FastAPI's `detail` body and adds the request ID.
    """
    request_id = _request_id(request)

    if exc.status_code >= 500:
        logger.error(f"[{request_id}] {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")
    else:
        logger.info(f"[{request_id}] {request.method} {request.url.path} -> {exc.status_code}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "request_id": request_id},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle validation errors with detailed error information.
    Every value is made JSON-serializable before it is returned.
    """
    request_id = _request_id(request)

    logger.warning(
        f"[{request_id}] Validation error on {request.method} {request.url.path}"
    )

    formatted_errors = []
    for error in exc.errors():
        clean_error = {
            "loc": list(error.get("loc", [])),
            "msg": str(error.get("msg", "")),
            "type": error.get("type", "validation_error"),
        }

        if "input" in error:
            input_val = error["input"]
            if hasattr(input_val, '__dict__'):
                clean_error["input"] = f"<{type(input_val).__name__} object>"
            else:
                clean_error["input"] = _json_safe(input_val)

        if "ctx" in error and isinstance(error["ctx"], dict):
            clean_error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}

        formatted_errors.append(clean_error)

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": formatted_errors,
            "request_id": request_id,
        },
    )


@app.exception_handler(ValidationError)
async def pydantic_validation_exception_handler(request: Request, exc: ValidationError):
    """
    Handle Pydantic ValidationError (from model validation).
    """
    request_id = _request_id(request)

    logger.warning(
        f"[{request_id}] Pydantic validation error on {request.method} {request.url.path}"
    )

    formatted_errors = []
    for error in exc.errors():
        formatted_errors.append({
            "loc": list(error.get("loc", [])),
            "msg": str(error.get("msg", "")),
            "type": error.get("type", "validation_error"),
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation error",
            "errors": formatted_errors,
            "request_id": request_id,
        },
    )


@app.exception_handler(ValueError)
async def value_error_exception_handler(request: Request, exc: ValueError):
    """
    Handle ValueError (e.g., from field validators).
    """
    request_id = _request_id(request)

    logger.warning(
        f"[{request_id}] ValueError on {request.method} {request.url.path}: {str(exc)}"
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": str(exc),
            "request_id": request_id,
            "type": "ValueError"
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """
    Handle unexpected exceptions with proper logging.
    """
    request_id = _request_id(request)

    logger.error(
        f"[{request_id}] Unhandled exception on {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
    )

    error_response = {
        "detail": "Internal server error" if settings.is_production else str(exc),
        "request_id": request_id,
    }

    if not settings.is_production:
        error_response["type"] = type(exc).__name__

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_response,
    )


# ============================================================================
# ROUTES & ENDPOINTS
# ============================================================================

# API v1 routes
app.include_router(
    v1_router,
    prefix=settings.API_PREFIX,
)


# ============================================================================
# HEALTH CHECK ENDPOINTS
# ============================================================================

@app.get("/health", tags=["System"])
async def health_check():
    """
    Basic health check endpoint.
    Returns 200 OK if the service is running.
    """
    return {
        "status": "ok",
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/health/deep", tags=["System"])
async def deep_health_check():
    """
    Deep health check including database connectivity.
    """
    health_status = {
        "status": "ok",
        "service": settings.PROJECT_NAME,
        "version": settings.VERSION,
        "environment": settings.ENVIRONMENT,
        "checks": {
            "database": "unknown",
            "paymongo": "configured" if settings.paymongo_configured else "not configured",
            "smtp": "configured" if settings.smtp_configured else "not configured",
        },
    }

    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        health_status["checks"]["database"] = "healthy"
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {str(e)}")
        health_status["status"] = "degraded"
        health_status["checks"]["database"] = f"unhealthy: {str(e)}"

    return health_status


# ============================================================================
# OPENAPI CUSTOMIZATION
# ============================================================================

def custom_openapi():
    """
    Customize OpenAPI schema with additional metadata.
    """
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=app.description,
        routes=app.routes,
    )

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi


# ============================================================================
# ROOT ENDPOINT
# ============================================================================

@app.get("/", tags=["System"])
async def root():
    """
    Root endpoint providing API information.
    """
    return {
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "version": settings.VERSION,
        "docs": "/docs",
        "redoc": "/redoc",
        "health": "/health",
        "deep_health": "/health/deep",
    }


# ============================================================================
# APPLICATION ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    host = "0.0.0.0" if settings.is_production else "127.0.0.1"
    port = int(os.getenv("PORT", "9000"))

    reload = not settings.is_production

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info" if settings.is_production else "debug",
        access_log=True,
        workers=1 if reload else 4,
    )
