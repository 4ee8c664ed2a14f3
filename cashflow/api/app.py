"""
FastAPI application factory.

create_app() takes already-built components instead of constructing its
own, so tests can hand it fakes and the uvicorn entry point can hand it the
real thing from create_app_components().

Every error leaves the API as {"error": message} with the status code from
http_status_for(); request validation failures are reported as 400.
"""

import time
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import cashflow
from cashflow.api.routes import router
from cashflow.errors import CashflowError, http_status_for


logger = structlog.get_logger(__name__)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def create_app(components, cors_origins: Optional[list[str]] = None) -> FastAPI:
    """
    Build the HTTP application around a set of components.

    Args:
        components: An AppComponents (anything with .coordinator and
                    .transactions attributes)
        cors_origins: Allowed origins; defaults to "*"
    """
    app = FastAPI(title="Cashflow", version=cashflow.__version__)
    app.state.components = components

    # ----------------------------------------------------
    # Health
    # ----------------------------------------------------
    @app.get("/health")
    def health() -> dict:
        return {"status": "ok"}

    # ----------------------------------------------------
    # Logging middleware
    # ----------------------------------------------------
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        start = time.time()
        bound_logger = logger.bind(
            method=request.method,
            path=str(request.url.path),
            ip=request.client.host if request.client else "unknown",
        )

        response = await call_next(request)
        latency_ms = round((time.time() - start) * 1000, 2)

        bound_logger.info(
            "request_finished",
            status_code=response.status_code,
            latency_ms=latency_ms,
        )
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins or ["*"],
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # ----------------------------------------------------
    # Errors
    # ----------------------------------------------------
    @app.exception_handler(CashflowError)
    async def cashflow_error_handler(request: Request, exc: CashflowError):
        status_code = http_status_for(exc)
        if status_code >= 500:
            logger.error(
                "request_failed",
                path=str(request.url.path),
                error_type=type(exc).__name__,
                error=exc.message,
            )
        return JSONResponse(status_code=status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": _describe_validation_error(exc)},
        )

    app.include_router(router)

    return app
