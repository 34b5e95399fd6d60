from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse

from app.config import settings
from app.container import Container, build_container
from app.domain.dtos import ErrorResponse
from app.domain.errors import PaymentError
from app.logging import setup_logging
from app.routes import health, payment_methods, payments, reconciliation, webhooks
from app.utils.security import require_basic_auth

logger = logging.getLogger(__name__)


def create_app(container: Container | None = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        await app.state.container.startup()
        try:
            yield
        finally:
            await app.state.container.shutdown()

    app = FastAPI(
        title="Donation Payments API",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    app.state.container = container or build_container()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(health.router)
    app.include_router(payments.router)
    app.include_router(payment_methods.router)
    app.include_router(webhooks.router)
    app.include_router(reconciliation.router)

    @app.exception_handler(PaymentError)
    async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "request failed",
            extra={
                "endpoint": request.url.path,
                "method": request.method,
                "provider": exc.provider,
                "response_code": exc.status_code,
                "event": exc.message,
            },
        )
        return JSONResponse(status_code=exc.status_code, content=ErrorResponse(message=exc.message).model_dump(exclude_none=True))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        body = ErrorResponse(message="Invalid request", details={"errors": jsonable_errors(exc)})
        return JSONResponse(status_code=400, content=body.model_dump(exclude_none=True))

    @app.get("/openapi.json", include_in_schema=False)
    def custom_openapi(_: None = Depends(require_basic_auth)):
        return JSONResponse(content=app.openapi())

    @app.get("/docs", include_in_schema=False)
    def custom_swagger_ui(_: None = Depends(require_basic_auth)):
        return get_swagger_ui_html(openapi_url="/openapi.json", title="Donation Payments API")

    @app.get("/redoc", include_in_schema=False)
    def custom_redoc(_: None = Depends(require_basic_auth)):
        return get_redoc_html(openapi_url="/openapi.json", title="Donation Payments API ReDoc")

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in error.get("loc", ())), "message": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


setup_logging(settings.log_level)

app = create_app()
