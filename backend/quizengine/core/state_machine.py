"""Quiz session lifecycle.

    created -> active -> {paused <-> active} -> {completed | abandoned}

Every mutating operation runs under the session's mutex and inside one store transaction,
so a failure anywhere leaves the session exactly as it was. Expiry is evaluated lazily on
each operation that touches an active session.
"""
from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from . import errors, scorer, timer
from .errors import EngineError, ErrorKind
from .proficiency import ProficiencyAggregator
from .selector import MAX_LEVEL_RUN, QuestionSelector
from .store import QuestionBank, SessionStore, StoreTransaction
from .types import (
	Answer,
	Concept,
	ConceptBreakdown,
	ConceptProgress,
	Outcome,
	QuizSession,
	RequestContext,
	ScopeSpec,
	SessionSlot,
	SessionStatus,
	SessionSummary,
	SlotView,
	SubmitResult,
	TimeMode,
	TopicProgress,
	new_id,
)

logger = logging.getLogger(__name__)


class SessionStateMachine:
	def __init__(
		self,
		store: SessionStore,
		bank: QuestionBank,
		clock: Optional[Any] = None,
		selector: Optional[QuestionSelector] = None,
		aggregator: Optional[ProficiencyAggregator] = None,
		*,
		history_sessions: int = 5,
	) -> None:
		self.store = store
		self.bank = bank
		self.clock = clock or timer.SystemClock()
		self.selector = selector or QuestionSelector()
		self.aggregator = aggregator or ProficiencyAggregator()
		self.history_sessions = history_sessions

	# ---- lifecycle ----

	def create(self, ctx: RequestContext, user_id: str, scope: ScopeSpec, time_mode: TimeMode) -> QuizSession:
		if scope.max_questions is not None and scope.max_questions < 1:
			raise errors.validation("max_questions must be positive", max_questions=scope.max_questions)
		concepts = self._resolve_scope(scope)
		if not self.bank.questions(scope.curriculum_id, [c.id for c in concepts]):
			raise errors.validation("No questions available for topic", topic_id=scope.topic_id)

		session = QuizSession(
			id=new_id(),
			user_id=user_id,
			scope=ScopeSpec(
				curriculum_id=scope.curriculum_id,
				topic_id=scope.topic_id,
				concept_ids=tuple(c.id for c in concepts),
				max_questions=scope.max_questions,
				strategy=scope.strategy,
			),
			time_mode=time_mode,
			created_at_ms=self.clock.now_ms(),
		)
		with self.store.user_lock(user_id):
			with self.store.transaction() as txn:
				existing = txn.open_session_for(user_id)
				if existing is not None:
					raise errors.concurrent_session(user_id, existing.id)
				txn.insert_session(session)
		logger.info("[%s] created session %s for %s (%s, %s)", ctx.request_id, session.id, user_id, time_mode.value, scope.strategy.value)
		return session

	def start(self, ctx: RequestContext, session_id: str) -> SlotView:
		with self._locked(ctx, session_id) as (txn, session):
			if session.status is not SessionStatus.CREATED:
				raise errors.invalid_transition("start", session.status)
			now = self.clock.now_ms()
			session.status = SessionStatus.ACTIVE
			session.started_at_ms = now
			self._serve_or_finish(txn, session, now)
			txn.save_session(session)
		logger.info("[%s] started session %s", ctx.request_id, session_id)
		return self._view(session)

	def current_slot(self, ctx: RequestContext, session_id: str) -> SlotView:
		with self._locked(ctx, session_id) as (txn, session):
			if session.status is not SessionStatus.ACTIVE:
				raise errors.invalid_transition("read the current slot of", session.status)
			now = self.clock.now_ms()
			if timer.is_expired(session, now):
				self._expire(txn, session, now)
			elif session.current is None:
				self._serve_or_finish(txn, session, now)
			if not session.terminal:
				session.active_duration_ms = timer.active_duration_ms(session, now)
			txn.save_session(session)
		return self._view(session)

	def submit_answer(self, ctx: RequestContext, session_id: str, slot_index: int, response: Any) -> SubmitResult:
		with self._locked(ctx, session_id) as (txn, session):
			if session.status is not SessionStatus.ACTIVE:
				raise errors.invalid_transition("submit an answer to", session.status)
			slot = session.current
			if slot is None or slot.answered or slot_index != session.cursor:
				raise errors.stale_slot(slot_index, session.cursor)
			now = self.clock.now_ms()
			question = self.bank.get_question(slot.question_id)

			if timer.is_expired(session, now):
				# Arrived after the budget ran out: the slot is recorded as timed out instead
				self._expire(txn, session, now)
			else:
				spent = self._time_on_slot(session, slot, now)
				if question is None:
					result = scorer.Score(Outcome.INCORRECT, 0)
				else:
					result = scorer.score(question, response, spent)
				self._record(txn, session, slot, result, response, spent, now)
				self._serve_or_finish(txn, session, now)
			txn.save_session(session)

		answer = slot.answer
		logger.info(
			"[%s] session %s slot %d -> %s (+%d xp)",
			ctx.request_id, session_id, slot.index, answer.outcome.value, answer.xp_awarded,
		)
		view = self._view(session)
		return SubmitResult(
			session=session,
			answer=answer,
			question=question,
			next_slot=view.slot,
			next_question=view.question,
		)

	def skip(self, ctx: RequestContext, session_id: str) -> SlotView:
		with self._locked(ctx, session_id) as (txn, session):
			if session.status is not SessionStatus.ACTIVE:
				raise errors.invalid_transition("skip in", session.status)
			slot = session.current
			if slot is None:
				raise errors.invalid_transition("skip in", session.status)
			now = self.clock.now_ms()
			if timer.is_expired(session, now):
				self._expire(txn, session, now)
			else:
				spent = self._time_on_slot(session, slot, now)
				self._record(txn, session, slot, scorer.unanswered(Outcome.SKIPPED), None, spent, now)
				self._serve_or_finish(txn, session, now)
			txn.save_session(session)
		logger.info("[%s] session %s skipped slot %d", ctx.request_id, session_id, slot.index)
		return self._view(session)

	def pause(self, ctx: RequestContext, session_id: str) -> QuizSession:
		expired = False
		with self._locked(ctx, session_id) as (txn, session):
			if session.status is not SessionStatus.ACTIVE:
				raise errors.invalid_transition("pause", session.status)
			now = self.clock.now_ms()
			if timer.is_expired(session, now):
				self._expire(txn, session, now)
				expired = True
			else:
				session.active_duration_ms = timer.active_duration_ms(session, now)
				session.status = SessionStatus.PAUSED
				session.paused_at_ms = now
			txn.save_session(session)
		if expired:
			# The expiry itself is committed; only the pause is refused
			raise EngineError(
				ErrorKind.INVALID_STATE_TRANSITION,
				"cannot pause a session with no time remaining",
				details={"operation": "pause", "status": session.status.value},
			)
		logger.info("[%s] paused session %s", ctx.request_id, session_id)
		return session

	def resume(self, ctx: RequestContext, session_id: str) -> QuizSession:
		with self._locked(ctx, session_id) as (txn, session):
			if session.status is not SessionStatus.PAUSED:
				raise errors.invalid_transition("resume", session.status)
			now = self.clock.now_ms()
			session.paused_duration_ms += max(0, now - (session.paused_at_ms or now))
			session.paused_at_ms = None
			session.status = SessionStatus.ACTIVE
			session.active_duration_ms = timer.active_duration_ms(session, now)
			txn.save_session(session)
		logger.info("[%s] resumed session %s", ctx.request_id, session_id)
		return session

	def end(self, ctx: RequestContext, session_id: str) -> SessionSummary:
		with self._locked(ctx, session_id) as (txn, session):
			now = self.clock.now_ms()
			if not session.terminal:
				if session.status is SessionStatus.ACTIVE and timer.is_expired(session, now):
					self._expire(txn, session, now)
				else:
					self._finish(session, now)
				txn.save_session(session)
				logger.info("[%s] ended session %s as %s", ctx.request_id, session_id, session.status.value)
		return self._summarize(session, now)

	# ---- reads ----

	def summary(self, ctx: RequestContext, session_id: str) -> SessionSummary:
		session = self.get_session(ctx, session_id)
		return self._summarize(session, self.clock.now_ms())

	def get_session(self, ctx: RequestContext, session_id: str) -> QuizSession:
		with self.store.transaction() as txn:
			session = txn.load_session(session_id)
		if session is None or (ctx.user_id is not None and session.user_id != ctx.user_id):
			raise errors.not_found(session_id)
		return session

	def list_sessions(
		self,
		ctx: RequestContext,
		user_id: str,
		limit: int = 20,
		offset: int = 0,
		status: Optional[SessionStatus] = None,
	) -> Tuple[List[QuizSession], int]:
		with self.store.transaction() as txn:
			return txn.list_sessions(user_id, limit, offset, status)

	def progress(
		self, ctx: RequestContext, user_id: str, topic_id: Optional[str] = None
	) -> Tuple[List[ConceptProgress], List[TopicProgress]]:
		with self.store.transaction() as txn:
			return txn.list_progress(user_id, topic_id)

	def remaining_ms(self, session: QuizSession) -> int:
		return timer.remaining_session_ms(session, self.clock.now_ms())

	def reap_idle(self, ctx: RequestContext, idle_ms: int) -> int:
		"""End open sessions nobody has touched for `idle_ms`; returns how many were ended."""
		with self.store.transaction() as txn:
			ids = txn.idle_session_ids(self.clock.now_ms() - idle_ms)
		ended = 0
		for session_id in ids:
			try:
				summary = self.end(ctx, session_id)
			except EngineError as e:
				logger.warning("[%s] could not reap session %s: %s", ctx.request_id, session_id, e.message)
				continue
			ended += 1
			logger.info("[%s] reaped idle session %s (%s)", ctx.request_id, session_id, summary.status.value)
		return ended

	# ---- internals ----

	@contextmanager
	def _locked(self, ctx: RequestContext, session_id: str) -> Iterator[Tuple[StoreTransaction, QuizSession]]:
		with self.store.session_lock(session_id):
			with self.store.transaction() as txn:
				session = txn.load_session(session_id, for_update=True)
				if session is None or (ctx.user_id is not None and session.user_id != ctx.user_id):
					raise errors.not_found(session_id)
				yield txn, session

	def _resolve_scope(self, scope: ScopeSpec) -> List[Concept]:
		concepts = self.bank.concepts(scope.curriculum_id, scope.topic_id)
		if not concepts:
			raise errors.validation("Topic not found in curriculum", topic_id=scope.topic_id)
		if scope.concept_ids:
			known = {c.id for c in concepts}
			unknown = sorted(set(scope.concept_ids) - known)
			if unknown:
				raise errors.validation("Concepts not found in topic", concept_ids=unknown)
			concepts = [c for c in concepts if c.id in scope.concept_ids]
		return concepts

	def _concept(self, session: QuizSession, concept_id: str) -> Concept:
		for c in self.bank.concepts(session.scope.curriculum_id, session.scope.topic_id):
			if c.id == concept_id:
				return c
		return Concept(id=concept_id, topic_id=session.scope.topic_id)

	def _time_on_slot(self, session: QuizSession, slot: SessionSlot, now: int) -> int:
		return max(0, timer.active_duration_ms(session, now) - slot.served_active_ms)

	def _serve_next(self, txn: StoreTransaction, session: QuizSession, now: int) -> SessionSlot:
		scope = session.scope
		if scope.max_questions is not None and len(session.slots) >= scope.max_questions:
			raise errors.scope_exhausted(session.id)
		concepts = self._resolve_scope(scope)
		concept_ids = [c.id for c in concepts]
		served = set(session.served_question_ids())
		candidates = self.bank.questions(scope.curriculum_id, concept_ids, exclude_ids=served)
		progress = txn.concept_progress(session.user_id, concept_ids)
		history = {}
		if self.history_sessions > 0:
			history = txn.question_history(session.user_id, scope.topic_id, self.history_sessions)
		question = self.selector.choose(
			concepts, candidates, progress, served, history,
			recent_levels=self._recent_levels(session),
			strategy=scope.strategy,
		)
		if question is None:
			raise errors.scope_exhausted(session.id)
		slot = SessionSlot(
			index=len(session.slots),
			question_id=question.id,
			concept_id=question.concept_id,
			topic_id=question.topic_id,
			difficulty=question.difficulty,
			served_at_ms=now,
			served_active_ms=timer.active_duration_ms(session, now),
		)
		session.slots.append(slot)
		return slot

	def _recent_levels(self, session: QuizSession) -> List[Optional[str]]:
		levels = []
		for slot in session.slots[-MAX_LEVEL_RUN:]:
			question = self.bank.get_question(slot.question_id)
			levels.append(question.cognitive_level if question is not None else None)
		return levels

	def _serve_or_finish(self, txn: StoreTransaction, session: QuizSession, now: int) -> Optional[SessionSlot]:
		try:
			return self._serve_next(txn, session, now)
		except EngineError as e:
			if e.kind is not ErrorKind.SCOPE_EXHAUSTED:
				raise
			logger.info("session %s: scope exhausted, finishing", session.id)
			self._finish(session, now)
			return None

	def _record(
		self,
		txn: StoreTransaction,
		session: QuizSession,
		slot: SessionSlot,
		result: scorer.Score,
		response: Any,
		spent: int,
		now: int,
	) -> Answer:
		concept_def = self._concept(session, slot.concept_id)
		concept = txn.concept_progress(session.user_id, [slot.concept_id]).get(slot.concept_id)
		if concept is None:
			concept = ConceptProgress(
				user_id=session.user_id,
				key=slot.concept_id,
				topic_id=slot.topic_id,
				difficulty_level=concept_def.min_difficulty,
			)
		topic = txn.topic_progress(session.user_id, slot.topic_id)
		if topic is None:
			topic = TopicProgress(user_id=session.user_id, key=slot.topic_id)

		before, after = self.aggregator.record(concept_def, concept, topic, result.outcome, result.xp, spent, now)
		txn.save_concept_progress(concept)
		txn.save_topic_progress(topic)

		answer = Answer(
			outcome=result.outcome,
			response=response,
			time_to_answer_ms=spent,
			xp_awarded=result.xp,
			band_before=before,
			band_after=after,
			answered_at_ms=now,
		)
		txn.append_answer(session.id, slot.index, answer)
		slot.answer = answer

		if answer.submitted:
			session.questions_answered += 1
		if answer.is_correct:
			session.questions_correct += 1
		if answer.outcome is Outcome.SKIPPED:
			session.questions_skipped += 1
		if answer.outcome is Outcome.TIMED_OUT:
			session.questions_timed_out += 1
		session.xp_earned += answer.xp_awarded
		session.cursor = slot.index + 1
		return answer

	def _expire(self, txn: StoreTransaction, session: QuizSession, now: int) -> None:
		slot = session.current
		if slot is not None and not slot.answered:
			spent = self._time_on_slot(session, slot, now)
			self._record(txn, session, slot, scorer.unanswered(Outcome.TIMED_OUT), None, spent, now)
		self._finish(session, now, ended_at=timer.expiry_point_ms(session))
		logger.info("session %s expired", session.id)

	def _finish(self, session: QuizSession, now: int, ended_at: Optional[int] = None) -> None:
		if session.status is SessionStatus.PAUSED and session.paused_at_ms is not None:
			session.paused_duration_ms += max(0, now - session.paused_at_ms)
		session.paused_at_ms = None
		answered = any(s.answer is not None and s.answer.submitted for s in session.slots)
		session.status = SessionStatus.COMPLETED if answered else SessionStatus.ABANDONED
		session.ended_at_ms = now if ended_at is None else min(now, ended_at)
		session.cursor = min(session.cursor, len(session.slots))
		session.active_duration_ms = timer.active_duration_ms(session, now)

	def _view(self, session: QuizSession) -> SlotView:
		if session.status is not SessionStatus.ACTIVE:
			return SlotView(session=session)
		slot = session.current
		if slot is None:
			return SlotView(session=session)
		return SlotView(session=session, slot=slot, question=self.bank.get_question(slot.question_id))

	def _summarize(self, session: QuizSession, now: int) -> SessionSummary:
		by_concept: Dict[str, ConceptBreakdown] = {}
		by_difficulty: Dict[int, Dict[str, int]] = {}
		attempts = 0
		for slot in session.slots:
			answer = slot.answer
			if answer is None:
				continue
			attempts += 1
			row = by_concept.get(slot.concept_id)
			if row is None:
				row = by_concept[slot.concept_id] = ConceptBreakdown(
					concept_id=slot.concept_id, band_before=answer.band_before
				)
			row.attempts += 1
			row.correct += 1 if answer.is_correct else 0
			row.skipped += 1 if answer.outcome is Outcome.SKIPPED else 0
			row.timed_out += 1 if answer.outcome is Outcome.TIMED_OUT else 0
			row.xp += answer.xp_awarded
			row.band_after = answer.band_after
			level = by_difficulty.setdefault(slot.difficulty, {"attempts": 0, "correct": 0})
			level["attempts"] += 1
			level["correct"] += 1 if answer.is_correct else 0

		budget = timer.budget_ms(session.time_mode)
		spent = timer.active_duration_ms(session, now)
		if budget is not None:
			spent = min(spent, budget)
		remaining = None if budget is None else timer.remaining_session_ms(session, now)
		return SessionSummary(
			session_id=session.id,
			status=session.status,
			time_mode=session.time_mode,
			topic_id=session.scope.topic_id,
			slots_served=len(session.slots),
			questions_answered=session.questions_answered,
			questions_correct=session.questions_correct,
			questions_skipped=session.questions_skipped,
			questions_timed_out=session.questions_timed_out,
			accuracy=(session.questions_correct / attempts) if attempts else 0.0,
			xp_earned=session.xp_earned,
			time_spent_ms=spent,
			remaining_ms=remaining,
			by_concept=sorted(by_concept.values(), key=lambda r: r.concept_id),
			by_difficulty=by_difficulty,
			started_at_ms=session.started_at_ms,
			ended_at_ms=session.ended_at_ms,
		)
