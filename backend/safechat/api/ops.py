"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from safechat.infra.postgres import get_pool
from safechat.infra.redis import redis_client
from safechat.settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["ops"])


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return {"status": "ok", "service": settings.service_name}


@router.get("/health/ready")
async def health_ready() -> Response:
	checks: dict[str, str] = {}
	if settings.storage_backend == "postgres":
		try:
			pool = await get_pool()
			async with pool.acquire() as conn:
				await conn.execute("SELECT 1")
			checks["postgres"] = "ok"
		except Exception as exc:
			logger.warning("readiness_postgres_failed", extra={"error": type(exc).__name__})
			checks["postgres"] = "error"
	try:
		await redis_client.ping()
		checks["redis"] = "ok"
	except Exception as exc:
		logger.warning("readiness_redis_failed", extra={"error": type(exc).__name__})
		checks["redis"] = "error"
	ok = all(value == "ok" for value in checks.values())
	code = status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE
	return JSONResponse(content={"status": "ok" if ok else "degraded", "checks": checks}, status_code=code)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	payload = generate_latest()
	return Response(content=payload, media_type=CONTENT_TYPE_LATEST)


__all__ = ["router"]
