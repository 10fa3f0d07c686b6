from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from rtocomply.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from rtocomply.apps.api.response import API_VERSION
from rtocomply.apps.api.routes.credits import router as credits_router
from rtocomply.apps.api.routes.dashboard import router as dashboard_router
from rtocomply.apps.api.routes.documents import router as documents_router
from rtocomply.apps.api.routes.health import router as health_router
from rtocomply.apps.api.routes.lookups import router as lookups_router
from rtocomply.apps.api.routes.operations import router as operations_router
from rtocomply.apps.api.routes.validations import router as validations_router
from rtocomply.core.config import get_settings
from rtocomply.core.errors import RtoComplyError
from rtocomply.core.logging import configure_logging
from rtocomply.services.rto_cache import build_rto_cache


logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="RTO Comply API", version=API_VERSION)
    app.state.rto_cache = build_rto_cache()

    origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(RtoComplyError)
    async def _domain_exception_handler(request: Request, exc: RtoComplyError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(documents_router, prefix=f"/{API_VERSION}")
    # Polling endpoints for file search indexing progress.
    app.include_router(operations_router, prefix=f"/{API_VERSION}")
    app.include_router(validations_router, prefix=f"/{API_VERSION}")
    app.include_router(credits_router, prefix=f"/{API_VERSION}")
    app.include_router(dashboard_router, prefix=f"/{API_VERSION}")
    app.include_router(lookups_router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
