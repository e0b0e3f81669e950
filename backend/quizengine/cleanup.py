from __future__ import annotations
import asyncio
import logging

from .core.errors import EngineError
from .core.state_machine import SessionStateMachine
from .core.types import RequestContext

logger = logging.getLogger(__name__)


def end_idle_sessions(quiz: SessionStateMachine, idle_minutes: int) -> int:
	"""End every open session that has not been touched for `idle_minutes`."""
	if idle_minutes <= 0:
		return 0
	ctx = RequestContext.new()
	ended = quiz.reap_idle(ctx, idle_minutes * 60 * 1000)
	if ended:
		logger.info("[%s] idle sweep ended %d session(s)", ctx.request_id, ended)
	return ended


async def sweep_loop(quiz: SessionStateMachine, idle_minutes: int, interval_seconds: int) -> None:
	# Run once at startup, then on the interval
	while True:
		try:
			await asyncio.to_thread(end_idle_sessions, quiz, idle_minutes)
		except EngineError as e:
			# Storage trouble is transient; try again next round
			logger.warning("idle sweep failed: %s", e.message)
		await asyncio.sleep(interval_seconds)
