"""
UGC Ad Studio API.

Wires the service container into FastAPI and adds API key checks, request
logging with a per-request id, and JSON error responses.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse

import auth
from config import settings
from dependencies import build_services
from dynamodb_config import init_dynamodb_tables
from pipeline.error_handler import PipelineError
from routers import ugc, usage

REQUEST_ID_HEADER = "X-Request-Id"


def configure_logging(level: int = logging.INFO) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


configure_logging(logging.DEBUG if settings.DEBUG else logging.INFO)
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("application_startup", service="ugc-ad-studio")
    settings.validate_dynamodb_config()

    # An unreachable table is not fatal: the failover store serves from memory
    try:
        init_dynamodb_tables()
    except Exception as e:
        logger.error("dynamodb_init_failed", error=str(e))

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    services = app.state.services
    services.usage_counter.load()

    yield

    logger.info("application_shutdown", pending_tasks=services.tracker.pending)
    await services.tracker.shutdown()
    if services.redis_client is not None:
        services.redis_client.close()


app = FastAPI(
    title="UGC Ad Studio API",
    description="Generates UGC-style video ads: script, character, product shots, scene clips and the stitched video",
    version="1.0.0",
    lifespan=lifespan,
    swagger_ui_parameters={"persistAuthorization": True},
)


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    schema = get_openapi(title=app.title, version=app.version, description=app.description, routes=app.routes)
    schema.setdefault("components", {})["securitySchemes"] = {
        "ApiKeyAuth": {"type": "apiKey", "in": "header", "name": auth.API_KEY_HEADER},
        "UserId": {"type": "apiKey", "in": "header", "name": auth.OWNER_HEADER},
    }
    schema["security"] = [{"ApiKeyAuth": [], "UserId": []}]
    app.openapi_schema = schema
    return schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=401,
        content={"error": "Unauthorized", "message": message},
        headers={"WWW-Authenticate": "ApiKey"},
    )


@app.middleware("http")
async def api_key_middleware(request: Request, call_next):
    """Require a valid API key on /api/ routes when API_KEY is configured."""
    if not settings.API_KEY or request.method == "OPTIONS" or not request.url.path.startswith("/api/"):
        return await call_next(request)

    api_key = request.headers.get(auth.API_KEY_HEADER) or request.query_params.get(auth.API_KEY_QUERY)
    if not api_key:
        return _unauthorized(f"API key missing. Provide {auth.API_KEY_HEADER} header or ?{auth.API_KEY_QUERY}=")
    if not auth.check_api_key(api_key):
        return _unauthorized("Invalid API key")
    return await call_next(request)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind a request id to every log line emitted while handling the request."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, path=request.url.path, method=request.method)

    started = time.monotonic()
    logger.info("request_started")
    try:
        response = await call_next(request)
    except Exception as e:
        logger.error("request_failed", error=str(e), elapsed=f"{time.monotonic() - started:.3f}s")
        raise
    logger.info("request_completed", status_code=response.status_code, elapsed=f"{time.monotonic() - started:.3f}s")
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    exc.log_error()
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("unhandled_exception", error=str(exc), exc_type=type(exc).__name__)
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again later.",
            "details": {"reason": str(exc)} if settings.DEBUG else {},
        },
    )


app.include_router(ugc.router)
app.include_router(usage.router)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    services = getattr(request.app.state, "services", None)
    return {
        "status": "healthy",
        "service": "ugc-ad-studio",
        "version": app.version,
        "backgroundTasks": services.tracker.pending if services is not None else 0,
    }


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": app.title,
        "version": app.version,
        "docs": "/docs",
        "sessions": f"{ugc.router.prefix}/sessions",
        "usage": f"{usage.router.prefix}/stats",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.API_HOST, port=settings.API_PORT, reload=settings.DEBUG)
