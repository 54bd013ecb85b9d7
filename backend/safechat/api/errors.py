"""Global error handlers mapping domain errors to JSON responses with request ids."""

from __future__ import annotations

import logging

import asyncpg
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from safechat.domain.chat.exceptions import ChatError
from safechat.obs import logging as obs_logging

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "not_found": 404,
    "forbidden": 403,
    "conflict": 409,
    "validation": 422,
    "unavailable": 503,
    "rate_limited": 429,
}


def get_request_id(request: Request, default: str = "unknown") -> str:
    rid = getattr(request.state, "request_id", None) or obs_logging.current_request_id()
    return rid or default


def _error_response(request: Request, status_code: int, detail: str, kind: str) -> JSONResponse:
    rid = get_request_id(request)
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "kind": kind, "request_id": rid},
        headers={"X-Request-Id": rid},
    )


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):  # type: ignore[override]
        return _error_response(request, STATUS_BY_KIND.get(exc.kind, 400), exc.reason, exc.kind)

    @app.exception_handler(asyncpg.PostgresError)
    async def postgres_error_handler(request: Request, exc: asyncpg.PostgresError):  # type: ignore[override]
        logger.error("storage_error", extra={"error": type(exc).__name__})
        return _error_response(request, 503, "dependency_unavailable", "unavailable")

    @app.exception_handler(RedisError)
    async def redis_error_handler(request: Request, exc: RedisError):  # type: ignore[override]
        logger.error("redis_error", extra={"error": type(exc).__name__})
        return _error_response(request, 503, "dependency_unavailable", "unavailable")

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        rid = get_request_id(request)
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "request_id": rid})

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        rid = get_request_id(request)
        payload = {"detail": "validation_error", "errors": jsonable_encoder(exc.errors()), "request_id": rid}
        return JSONResponse(status_code=422, content=payload)


__all__ = ["STATUS_BY_KIND", "get_request_id", "install_error_handlers"]
