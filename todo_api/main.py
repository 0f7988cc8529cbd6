import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from todo_api.cache.index import CacheIndex, cache_index, get_cache_index
from todo_api.core.config import SettingsDep, get_settings
from todo_api.core.errors import CODE_BAD_REQUEST, TodoError
from todo_api.core.logging_setup import setup_logging, trace_id_var
from todo_api.database import create_db_and_tables
from todo_api.models import ErrorDetail, ErrorEnvelope
from todo_api.routers import tasks

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    await create_db_and_tables()
    await cache_index.init_cache()
    logger.info(f"{settings.app_name} started")
    yield
    await cache_index.close()
    logger.info(f"{settings.app_name} shut down")


app = FastAPI(
    title=settings.app_name,
    description="Task list API backed by a database with a ranked Redis index",
    swagger_ui_parameters={"displayRequestDuration": True},
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.swagger_enabled else None,
    redoc_url="/redoc" if settings.swagger_enabled else None,
)

allow_origins = [settings.ui_url]
if settings.swagger_enabled:
    allow_origins.append(f"http://localhost:{settings.api_port}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Origin", "Content-Type", "Accept", "Authorization"],
)


@app.middleware("http")
async def trace_requests(request: Request, call_next):
    trace_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    token = trace_id_var.set(trace_id)
    try:
        response = await call_next(request)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}"
        )
        response.headers["X-Request-ID"] = trace_id
        return response
    finally:
        trace_id_var.reset(token)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    body = ErrorEnvelope(errors=[ErrorDetail(code=code, message=message)])
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.exception_handler(TodoError)
async def handle_todo_error(request: Request, exc: TodoError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(exc.status_code, exc.code, str(exc))


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    return _error_response(400, CODE_BAD_REQUEST, str(exc))


# Include routers
app.include_router(tasks.router)


@app.get("/")
async def root():
    return {
        "message": f"Welcome to {settings.app_name}",
        "docs": "/docs" if settings.swagger_enabled else None,
        "version": "1.0.0",
    }


@app.get("/api/v1/healthz")
async def health_check(
    app_settings: SettingsDep, cache: CacheIndex = Depends(get_cache_index)
):
    return {
        "status": "healthy",
        "app": app_settings.app_name,
        "cache": cache.get_stats(),
    }
