"""
FastAPI Application Entry Point.

This module creates and configures the FastAPI application instance for
relay-api. It sets up logging, the application container, routing,
CORS/preflight handling and the error envelope for framework errors.

Usage:
    # Run with uvicorn
    uvicorn relay_api.main:app --host 0.0.0.0 --port 8000

    # Or use the module directly
    python -m uvicorn relay_api.main:app --reload
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from relay_api import __version__
from relay_api.api.relay import router as relay_router
from relay_api.api.routes import router
from relay_api.container import RelayContainer
from relay_api.core.config import Settings, load_settings
from relay_api.core.errors import RelayError, classify, to_envelope
from relay_api.core.logging import apply_level, configure_logging, fail, get_logger, set_request_id
from relay_api.utils.timeit import iso_now

_LOG = get_logger("relay.app")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Authorization, Content-Type, X-API-Key",
    "Access-Control-Max-Age": "86400",
}


def _method_not_allowed(exc: StarletteHTTPException) -> JSONResponse:
    allow = (exc.headers or {}).get("Allow", "POST")
    methods = [m.strip() for m in allow.split(",") if m.strip() and m.strip() != "HEAD"]
    return JSONResponse(
        status_code=405,
        content={
            "error": "Method Not Allowed",
            "message": f"Only {' or '.join(methods) or 'POST'} requests are allowed",
            "timestamp": iso_now(),
        },
        headers={"Allow": allow},
    )


def create_app(settings: Optional[Settings] = None, container: Optional[RelayContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This factory function:
        1. Configures structured logging
        2. Builds the RelayContainer unless one is given, then applies its
           logging level (RELAY_LOG_LEVEL or settings)
        3. Registers operational and relayed routers
        4. Installs request-id, CORS and error-envelope handling

    Args:
        settings: Loaded settings; load_settings() when omitted.
        container: Prebuilt container (tests inject one with mock
            transports).

    Returns:
        FastAPI: Configured application instance ready to serve requests.
    """
    configure_logging()

    if container is None:
        container = RelayContainer.build(settings or load_settings())
    apply_level(container.config.logging.level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        container.close()

    # Built-in docs are disabled: /api/docs serves the hand-written document
    app = FastAPI(
        title="relay-api",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.container = container

    app.include_router(router)
    app.include_router(relay_router)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        rid = uuid.uuid4().hex[:12]
        set_request_id(rid)
        # Preflight is answered here; nothing downstream runs
        if request.method == "OPTIONS":
            return Response(status_code=200, headers={**CORS_HEADERS, "X-Request-Id": rid})
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        response.headers["X-Request-Id"] = rid
        return response

    development = container.config.app.is_development

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError):
        return JSONResponse(status_code=exc.status, content=to_envelope(exc, development=development))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 405:
            return _method_not_allowed(exc)
        if exc.status_code == 404:
            return JSONResponse(status_code=404, content=to_envelope(RelayError.not_found("Endpoint not found")))
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "message": str(exc.detail), "timestamp": iso_now()},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        err = classify(exc)
        fail(_LOG, "unhandled_error", path=request.url.path, code=err.code, error=err.cause or err.message,
             exc_info=True)
        return JSONResponse(status_code=err.status, content=to_envelope(err, development=development))

    return app


# Global application instance for ASGI servers (uvicorn, gunicorn, etc.)
app = create_app()
