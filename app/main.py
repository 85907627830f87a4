from __future__ import annotations
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from app.api import router
from app.web import router as web_router
from logging_config import configure_logging
from services.container import build_default_services
from services.errors import GatewayError
from settings import get_settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    services = build_default_services()
    try:
        yield
    finally:
        await services.aclose()
        build_default_services.cache_clear()


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return f"{location}: {message}" if location else message


async def _http_error(_request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


async def _validation_error(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": _validation_message(exc)},
    )


async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
    logger.warning(
        "Request failed",
        extra={"route": request.url.path, "status": exc.status_code, "reason": str(exc)},
    )
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", extra={"route": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal Server Error"},
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="Bhoomi Dut Gateway",
        description="Farm sensor, pump, alert and assistant gateway over external agriculture services.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(GatewayError, _gateway_error)
    app.add_exception_handler(Exception, _unexpected_error)
    app.include_router(router)
    app.include_router(web_router)
    return app


app = create_app()


def run() -> None:
    """Serve the gateway with uvicorn on the configured host and port."""
    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
