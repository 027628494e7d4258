"""
Domain errors and the exception handlers that turn them into JSON responses.

Service modules raise the subclasses below; routers let them propagate and the
handlers registered by ``setup_exception_handlers`` map them to status codes.
Tenant routes (``/api/tenant/...``) get the ``{"ok": false, "error": {...}}``
envelope, everything else the flat ``{"ok": false, "error": msg}`` body.
Anything unexpected is logged with an ``error_id`` the client can report back.
"""
from __future__ import annotations

import logging
import sqlite3
import traceback

from fastapi import FastAPI, HTTPException, Request
from fastapi.exception_handlers import http_exception_handler, request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger("johapon.errors")

TENANT_PREFIX = "/api/tenant/"

_STATUS_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "BAD_REQUEST",
}


class DomainError(Exception):
    status_code = 400
    code = "BAD_REQUEST"

    def __init__(self, message: str, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra


class ValidationError(DomainError):
    status_code = 400
    code = "BAD_REQUEST"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(DomainError):
    status_code = 409
    code = "CONFLICT"


class ForbiddenError(DomainError):
    status_code = 403
    code = "FORBIDDEN"


class ConfigurationError(DomainError):
    status_code = 500
    code = "CONFIG_ERROR"


class UpstreamError(DomainError):
    """외부 게이트웨이(알리고/프록시) 오류"""

    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, status_code: int | None = None, **extra):
        super().__init__(message, **extra)
        if status_code:
            self.status_code = status_code


def ok(data) -> dict:
    return {"ok": True, "data": data}


def fail_body(code: str, message: str) -> dict:
    return {"ok": False, "error": {"code": code, "message": message}}


def _is_tenant(request: Request) -> bool:
    return request.url.path.startswith(TENANT_PREFIX)


def _tenant_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=fail_body(code, message),
        headers={"Cache-Control": "no-store"},
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message)
    if _is_tenant(request):
        return _tenant_response(exc.status_code, exc.code, exc.message)
    content = {"ok": False, "error": exc.message, "code": exc.code}
    content.update(exc.extra)
    return JSONResponse(status_code=exc.status_code, content=content)


async def tenant_http_exception_handler(request: Request, exc: HTTPException):
    if not _is_tenant(request):
        return await http_exception_handler(request, exc)
    code = _STATUS_CODES.get(exc.status_code, "ERROR")
    return _tenant_response(exc.status_code, code, str(exc.detail))


async def tenant_validation_exception_handler(request: Request, exc: RequestValidationError):
    if not _is_tenant(request):
        return await request_validation_exception_handler(request, exc)
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid')}" if field else str(first.get("msg") or "invalid request")
    return _tenant_response(422, _STATUS_CODES[422], message)


async def database_error_handler(request: Request, exc: sqlite3.DatabaseError) -> JSONResponse:
    logger.error("database error in %s %s: %s", request.method, request.url.path, exc, exc_info=True)
    if _is_tenant(request):
        return _tenant_response(500, "DB_ERROR", str(exc))
    return JSONResponse(status_code=500, content={"ok": False, "error": str(exc), "code": "DB_ERROR"})


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    error_id = id(exc)
    logger.error(
        "Unhandled exception [%s] in %s %s: %s",
        error_id,
        request.method,
        request.url.path,
        exc,
        exc_info=True,
        extra={
            "error_id": error_id,
            "client": request.client.host if request.client else "unknown",
            "error_type": type(exc).__name__,
            "traceback": traceback.format_exc(),
        },
    )
    return JSONResponse(
        status_code=500,
        content={
            "ok": False,
            "detail": "Internal server error",
            "error_id": error_id,
            "error_type": type(exc).__name__,
        },
    )


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(HTTPException, tenant_http_exception_handler)
    app.add_exception_handler(RequestValidationError, tenant_validation_exception_handler)
    app.add_exception_handler(sqlite3.DatabaseError, database_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)
    logger.debug("exception handlers registered")
