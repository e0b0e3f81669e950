"""Session-wide time budgeting.

Time pressure applies to the whole session, never to a single question. Active time is
wall time since start minus the paused spans collected in the discard bucket; expiry is
only ever detected here and acted on by the state machine.
"""
from __future__ import annotations
import time
from typing import Optional

from .types import QuizSession, SessionStatus, TIME_BUDGETS_MS, TimeMode

# Returned for unlimited sessions so callers can compare without None checks
UNLIMITED_REMAINING_MS = 10 ** 12


class SystemClock:
	def now_ms(self) -> int:
		return int(time.time() * 1000)


def budget_ms(time_mode: TimeMode) -> Optional[int]:
	return TIME_BUDGETS_MS[time_mode]


def active_duration_ms(session: QuizSession, now_ms: int) -> int:
	if session.started_at_ms is None:
		return 0
	# The active clock stops at whichever happened: a pause or the end
	if session.status is SessionStatus.PAUSED and session.paused_at_ms is not None:
		until = session.paused_at_ms
	elif session.terminal and session.ended_at_ms is not None:
		until = session.ended_at_ms
	else:
		until = now_ms
	elapsed = until - session.started_at_ms - session.paused_duration_ms
	elapsed = max(0, elapsed)
	budget = budget_ms(session.time_mode)
	if budget is not None and session.terminal:
		elapsed = min(elapsed, budget)
	return elapsed


def remaining_session_ms(session: QuizSession, now_ms: int) -> int:
	budget = budget_ms(session.time_mode)
	if budget is None:
		return UNLIMITED_REMAINING_MS
	return max(0, budget - active_duration_ms(session, now_ms))


def is_expired(session: QuizSession, now_ms: int) -> bool:
	if budget_ms(session.time_mode) is None or session.started_at_ms is None:
		return False
	return remaining_session_ms(session, now_ms) <= 0


def expiry_point_ms(session: QuizSession) -> Optional[int]:
	"""Wall-clock instant at which an active session runs out of time."""
	budget = budget_ms(session.time_mode)
	if budget is None or session.started_at_ms is None:
		return None
	return session.started_at_ms + session.paused_duration_ms + budget
