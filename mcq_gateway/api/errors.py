"""Map service exceptions onto ``{ok: false, error}`` JSON responses."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mcq_gateway.logging import logger
from mcq_gateway.services.exceptions import ServiceError

GENERIC_ERROR = ServiceError.public_message


def error_body(exc: ServiceError, development: bool) -> dict[str, Any]:
    message = str(exc) if (development or exc.expose_message) else exc.public_message
    body: dict[str, Any] = {"ok": False, "error": message, **exc.extra}
    if development:
        raw_response = getattr(exc, "raw_response", None)
        upstream_status = getattr(exc, "upstream_status", None)
        if raw_response:
            body["raw_api_response"] = raw_response
        if upstream_status:
            body["status_code"] = upstream_status
    return body


def register_exception_handlers(app: FastAPI, development: bool) -> None:
    @app.exception_handler(ServiceError)
    async def _service_error(request: Request, exc: ServiceError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_body(exc, development))

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = "Method not allowed" if exc.status_code == 405 else str(exc.detail)
        return JSONResponse(
            status_code=exc.status_code,
            content={"ok": False, "error": message},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_error", path=request.url.path)
        message = str(exc) if development else GENERIC_ERROR
        return JSONResponse(status_code=500, content={"ok": False, "error": message})


__all__ = ["error_body", "register_exception_handlers"]
