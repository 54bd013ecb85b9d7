"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from safechat import container
from safechat.api import admin_chat, chat, ops
from safechat.api.errors import install_error_handlers
from safechat.infra import postgres
from safechat.jobs.sweeps import spawn_sweepers
from safechat.obs import init as obs_init
from safechat.settings import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.storage_backend == "postgres":
		pool = await postgres.init_pool()
		container.configure_postgres(pool)
	else:
		container.configure_memory()
	logger.info("safechat_started", extra={"storage_backend": settings.storage_backend})
	sweeper_tasks: list[asyncio.Task] = spawn_sweepers()
	try:
		yield
	finally:
		for task in sweeper_tasks:
			task.cancel()
		await asyncio.gather(*sweeper_tasks, return_exceptions=True)
		if settings.storage_backend == "postgres":
			await postgres.close_pool()


def create_app() -> FastAPI:
	application = FastAPI(title="SafeChat", lifespan=lifespan)
	install_error_handlers(application)
	obs_init(application)
	application.include_router(ops.router)
	application.include_router(chat.router)
	application.include_router(admin_chat.router)
	return application


app = create_app()
