from __future__ import annotations
import asyncio
import logging
from typing import Any, Optional

from fastapi import FastAPI, Request

from .catalog import load_catalog_file
from .cleanup import sweep_loop
from .core.state_machine import SessionStateMachine
from .core.timer import SystemClock
from .core.types import new_id
from .db import Database
from .error_handlers import register_error_handlers
from .ratelimit import SlidingWindowLimiter
from .settings import Settings, get_settings
from .store_sql import SqlQuestionBank, SqlSessionStore
from .routers import health
from .routers import auth
from .routers import sessions
from .routers import progress
from .routers import parent

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
	logging.basicConfig(
		level=getattr(logging, level.upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)


def create_app(settings: Optional[Settings] = None, *, clock: Optional[Any] = None, database: Optional[Database] = None) -> FastAPI:
	settings = settings or get_settings()
	configure_logging(settings.log_level)
	clock = clock or SystemClock()
	db = database or Database(settings.database_url, echo=settings.database_echo)
	store = SqlSessionStore(db, clock)
	bank = SqlQuestionBank(db)

	app = FastAPI(title="Quiz Session Engine API")
	app.state.settings = settings
	app.state.db = db
	app.state.bank = bank
	app.state.quiz = SessionStateMachine(
		store, bank, clock, history_sessions=settings.history_sessions
	)
	app.state.rate_limiter = SlidingWindowLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)
	app.state.login_limiter = SlidingWindowLimiter(settings.login_max_failures, settings.login_failure_window_seconds)
	app.state.sweep_task = None

	@app.middleware("http")
	async def assign_request_id(request: Request, call_next):
		request_id = request.headers.get("X-Request-ID") or new_id()
		request.state.request_id = request_id
		response = await call_next(request)
		response.headers["X-Request-ID"] = request_id
		return response

	register_error_handlers(app)
	app.include_router(health.router)
	app.include_router(auth.router)
	app.include_router(sessions.router)
	app.include_router(progress.router)
	app.include_router(parent.router)

	@app.on_event("startup")
	async def startup_event():
		# Initialize DB schema (and apply lightweight dev migrations)
		db.create_all()
		auth.ensure_seed_user(db, settings)
		if settings.catalog_path:
			load_catalog_file(db, settings.catalog_path)
		bank.refresh()
		if settings.idle_session_minutes > 0 and settings.sweep_interval_seconds > 0:
			app.state.sweep_task = asyncio.create_task(
				sweep_loop(app.state.quiz, settings.idle_session_minutes, settings.sweep_interval_seconds)
			)
		logger.info("quiz engine ready (%s)", db.engine.url.render_as_string(hide_password=True))

	@app.on_event("shutdown")
	async def shutdown_event():
		task = app.state.sweep_task
		if task is not None:
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
		db.dispose()

	return app
