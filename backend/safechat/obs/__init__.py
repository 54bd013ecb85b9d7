"""Observability package bootstrap."""

from __future__ import annotations

from fastapi import FastAPI

from safechat.obs import logging as obs_logging
from safechat.obs import middleware

_initialised = False


def init(app: FastAPI) -> None:
	global _initialised
	middleware.install(app)
	if _initialised:
		return
	obs_logging.configure_logging()
	_initialised = True


__all__ = ["init"]
