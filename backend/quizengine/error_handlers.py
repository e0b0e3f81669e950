from __future__ import annotations
import logging
from typing import Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .core.errors import EngineError, ErrorKind

logger = logging.getLogger(__name__)

# Every ErrorKind must appear here; tests/test_error_mapping.py checks it stays exhaustive
STATUS_BY_KIND: Dict[ErrorKind, int] = {
	ErrorKind.CONCURRENT_SESSION: 409,
	ErrorKind.INVALID_STATE_TRANSITION: 409,
	ErrorKind.STALE_SLOT: 409,
	ErrorKind.SESSION_NOT_FOUND: 404,
	ErrorKind.SCOPE_EXHAUSTED: 409,
	ErrorKind.VALIDATION: 422,
	ErrorKind.STORAGE: 503,
}


def status_for(kind: ErrorKind) -> int:
	return STATUS_BY_KIND[kind]


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
	status = status_for(exc.kind)
	request_id = getattr(request.state, "request_id", None)
	if status >= 500:
		logger.error("[%s] %s %s -> %s: %s", request_id, request.method, request.url.path, exc.kind.value, exc.message)
	else:
		logger.info("[%s] %s %s -> %s", request_id, request.method, request.url.path, exc.kind.value)
	headers = {"Retry-After": "1"} if exc.retryable else None
	return JSONResponse(
		status_code=status,
		content={
			"error": exc.kind.value,
			"detail": exc.message,
			"details": exc.details,
			"retryable": exc.retryable,
		},
		headers=headers,
	)


def register_error_handlers(app: FastAPI) -> None:
	app.add_exception_handler(EngineError, engine_error_handler)
