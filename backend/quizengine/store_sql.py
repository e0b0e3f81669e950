"""SQLAlchemy implementations of the engine's storage contracts."""
from __future__ import annotations
import json
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .core import errors
from .core.errors import EngineError
from .core.store import QuestionBank, SessionStore, StoreTransaction
from .core.timer import SystemClock
from .core.types import (
	Answer,
	Concept,
	ConceptProgress,
	OPEN_STATUSES,
	Outcome,
	ProficiencyBand,
	Question,
	QuestionHistory,
	QuizSession,
	ScopeSpec,
	SelectionStrategy,
	SessionSlot,
	SessionStatus,
	TERMINAL_STATUSES,
	TimeMode,
	TopicProgress,
)
from .db import Database
from .models import (
	CatalogConcept,
	CatalogQuestion,
	ConceptProgressRow,
	QuizSessionRow,
	SessionAnswerRow,
	SessionSlotRow,
	TopicProgressRow,
)

logger = logging.getLogger(__name__)

_PROGRESS_FIELDS = (
	"attempts",
	"correct",
	"streak",
	"longest_streak",
	"xp",
	"time_spent_ms",
	"last_attempted_at_ms",
	"recent_outcomes",
)


def _dumps(value: Any) -> Optional[str]:
	if value is None:
		return None
	return json.dumps(value)


def _loads(raw: Optional[str]) -> Any:
	if raw is None:
		return None
	return json.loads(raw)


def question_from_row(row: CatalogQuestion) -> Question:
	return Question(
		id=row.id,
		concept_id=row.concept_id,
		topic_id=row.topic_id,
		difficulty=row.difficulty,
		question_type=row.question_type,
		text=row.text,
		correct_answer=_loads(row.correct_answer_json),
		options=_loads(row.options_json),
		explanation=row.explanation,
		cognitive_level=row.cognitive_level,
	)


class SqlQuestionBank(QuestionBank):
	"""Catalog lookups served from an in-memory snapshot of the concept and question tables.

	The catalog only changes when it is seeded, so the snapshot is taken once (lazily, or
	explicitly through `refresh()` after seeding) and engine transactions never need a second
	database connection to read it.
	"""

	def __init__(self, db: Database) -> None:
		self.db = db
		self._lock = threading.Lock()
		self._concepts: Optional[Dict[Tuple[str, str], List[Concept]]] = None
		self._questions: Dict[str, Question] = {}
		self._by_concept: Dict[Tuple[str, str], List[Question]] = {}

	def refresh(self) -> None:
		concepts: Dict[Tuple[str, str], List[Concept]] = {}
		questions: Dict[str, Question] = {}
		by_concept: Dict[Tuple[str, str], List[Question]] = {}
		with self.db.session() as s:
			for r in s.execute(select(CatalogConcept).order_by(CatalogConcept.id)).scalars():
				concepts.setdefault((r.curriculum_id, r.topic_id), []).append(Concept(
					id=r.id,
					topic_id=r.topic_id,
					name=r.name,
					min_difficulty=r.min_difficulty,
					max_difficulty=r.max_difficulty,
				))
			for r in s.execute(select(CatalogQuestion).order_by(CatalogQuestion.id)).scalars():
				q = question_from_row(r)
				questions[q.id] = q
				by_concept.setdefault((r.curriculum_id, q.concept_id), []).append(q)
		with self._lock:
			self._concepts = concepts
			self._questions = questions
			self._by_concept = by_concept
		logger.info("catalog loaded: %d concepts, %d questions", sum(len(v) for v in concepts.values()), len(questions))

	def _ensure_loaded(self) -> None:
		if self._concepts is None:
			self.refresh()

	def concepts(self, curriculum_id: str, topic_id: str) -> List[Concept]:
		self._ensure_loaded()
		return list(self._concepts.get((curriculum_id, topic_id), ()))

	def questions(
		self, curriculum_id: str, concept_ids: Sequence[str], exclude_ids: Iterable[str] = ()
	) -> List[Question]:
		self._ensure_loaded()
		exclude = set(exclude_ids)
		out: List[Question] = []
		for concept_id in concept_ids:
			out.extend(q for q in self._by_concept.get((curriculum_id, concept_id), ()) if q.id not in exclude)
		return out

	def get_question(self, question_id: str) -> Optional[Question]:
		self._ensure_loaded()
		return self._questions.get(question_id)


class SqlTransaction(StoreTransaction):
	def __init__(self, db: Session, clock: Any) -> None:
		self.db = db
		self.clock = clock

	# ---- sessions ----

	def _to_session(self, row: QuizSessionRow) -> QuizSession:
		answers = {
			a.slot_index: a
			for a in self.db.execute(
				select(SessionAnswerRow).where(SessionAnswerRow.session_id == row.id)
			).scalars()
		}
		slots = []
		for s in self.db.execute(
			select(SessionSlotRow).where(SessionSlotRow.session_id == row.id).order_by(SessionSlotRow.slot_index)
		).scalars():
			a = answers.get(s.slot_index)
			slots.append(SessionSlot(
				index=s.slot_index,
				question_id=s.question_id,
				concept_id=s.concept_id,
				topic_id=s.topic_id,
				difficulty=s.difficulty,
				served_at_ms=s.served_at_ms,
				served_active_ms=s.served_active_ms,
				answer=None if a is None else Answer(
					outcome=Outcome(a.outcome),
					response=_loads(a.response_json),
					time_to_answer_ms=a.time_to_answer_ms,
					xp_awarded=a.xp_awarded,
					band_before=ProficiencyBand.from_label(a.band_before),
					band_after=ProficiencyBand.from_label(a.band_after),
					answered_at_ms=a.answered_at_ms,
				),
			))
		return QuizSession(
			id=row.id,
			user_id=row.user_id,
			scope=ScopeSpec(
				curriculum_id=row.curriculum_id,
				topic_id=row.topic_id,
				concept_ids=tuple(_loads(row.concept_ids_json) or ()),
				max_questions=row.max_questions,
				strategy=SelectionStrategy(row.strategy or SelectionStrategy.ADAPTIVE.value),
			),
			time_mode=TimeMode(row.time_mode),
			status=SessionStatus(row.status),
			slots=slots,
			cursor=row.cursor,
			started_at_ms=row.started_at_ms,
			paused_at_ms=row.paused_at_ms,
			paused_duration_ms=row.paused_duration_ms,
			active_duration_ms=row.active_duration_ms,
			ended_at_ms=row.ended_at_ms,
			xp_earned=row.xp_earned,
			questions_answered=row.questions_answered,
			questions_correct=row.questions_correct,
			questions_skipped=row.questions_skipped,
			questions_timed_out=row.questions_timed_out,
			created_at_ms=row.created_at_ms,
		)

	def _write_header(self, row: QuizSessionRow, session: QuizSession) -> None:
		row.status = session.status.value
		row.cursor = session.cursor
		row.started_at_ms = session.started_at_ms
		row.paused_at_ms = session.paused_at_ms
		row.paused_duration_ms = session.paused_duration_ms
		row.active_duration_ms = session.active_duration_ms
		row.ended_at_ms = session.ended_at_ms
		row.xp_earned = session.xp_earned
		row.questions_answered = session.questions_answered
		row.questions_correct = session.questions_correct
		row.questions_skipped = session.questions_skipped
		row.questions_timed_out = session.questions_timed_out
		row.updated_at_ms = self.clock.now_ms()

	def load_session(self, session_id: str, *, for_update: bool = False) -> Optional[QuizSession]:
		stmt = select(QuizSessionRow).where(QuizSessionRow.id == session_id)
		if for_update:
			stmt = stmt.with_for_update()
		row = self.db.execute(stmt).scalar_one_or_none()
		return self._to_session(row) if row is not None else None

	def open_session_for(self, user_id: str) -> Optional[QuizSession]:
		row = self.db.execute(
			select(QuizSessionRow).where(
				QuizSessionRow.user_id == user_id,
				QuizSessionRow.status.in_([s.value for s in OPEN_STATUSES]),
			)
		).scalars().first()
		return self._to_session(row) if row is not None else None

	def insert_session(self, session: QuizSession) -> None:
		row = QuizSessionRow(
			id=session.id,
			user_id=session.user_id,
			curriculum_id=session.scope.curriculum_id,
			topic_id=session.scope.topic_id,
			concept_ids_json=json.dumps(list(session.scope.concept_ids)),
			max_questions=session.scope.max_questions,
			strategy=session.scope.strategy.value,
			time_mode=session.time_mode.value,
			created_at_ms=session.created_at_ms,
		)
		self._write_header(row, session)
		self.db.add(row)
		try:
			self.db.flush()
		except IntegrityError:
			# Lost a race with another create for the same user
			raise errors.concurrent_session(session.user_id)

	def save_session(self, session: QuizSession) -> None:
		row = self.db.get(QuizSessionRow, session.id)
		if row is None:
			raise errors.not_found(session.id)
		self._write_header(row, session)
		stored = set(self.db.execute(
			select(SessionSlotRow.slot_index).where(SessionSlotRow.session_id == session.id)
		).scalars())
		for slot in session.slots:
			if slot.index in stored:
				continue
			self.db.add(SessionSlotRow(
				session_id=session.id,
				slot_index=slot.index,
				question_id=slot.question_id,
				concept_id=slot.concept_id,
				topic_id=slot.topic_id,
				difficulty=slot.difficulty,
				served_at_ms=slot.served_at_ms,
				served_active_ms=slot.served_active_ms,
			))
		self.db.flush()

	def append_answer(self, session_id: str, slot_index: int, answer: Answer) -> None:
		self.db.add(SessionAnswerRow(
			session_id=session_id,
			slot_index=slot_index,
			outcome=answer.outcome.value,
			response_json=_dumps(answer.response),
			time_to_answer_ms=answer.time_to_answer_ms,
			xp_awarded=answer.xp_awarded,
			band_before=answer.band_before.label,
			band_after=answer.band_after.label,
			answered_at_ms=answer.answered_at_ms,
		))
		try:
			self.db.flush()
		except IntegrityError:
			raise errors.stale_slot(slot_index, slot_index + 1)

	def list_sessions(
		self, user_id: str, limit: int, offset: int, status: Optional[SessionStatus] = None
	) -> Tuple[List[QuizSession], int]:
		where = [QuizSessionRow.user_id == user_id]
		if status is not None:
			where.append(QuizSessionRow.status == status.value)
		total = self.db.execute(select(func.count()).select_from(QuizSessionRow).where(*where)).scalar_one()
		rows = self.db.execute(
			select(QuizSessionRow)
			.where(*where)
			.order_by(QuizSessionRow.created_at_ms.desc(), QuizSessionRow.id)
			.limit(limit)
			.offset(offset)
		).scalars().all()
		return [self._to_session(r) for r in rows], int(total)

	def idle_session_ids(self, updated_before_ms: int) -> List[str]:
		return list(self.db.execute(
			select(QuizSessionRow.id).where(
				QuizSessionRow.status.in_([s.value for s in OPEN_STATUSES]),
				QuizSessionRow.updated_at_ms < updated_before_ms,
			)
		).scalars())

	def question_history(self, user_id: str, topic_id: str, sessions: int) -> Dict[str, QuestionHistory]:
		recent = list(self.db.execute(
			select(QuizSessionRow.id)
			.where(
				QuizSessionRow.user_id == user_id,
				QuizSessionRow.topic_id == topic_id,
				QuizSessionRow.status.in_([s.value for s in TERMINAL_STATUSES]),
			)
			.order_by(QuizSessionRow.ended_at_ms.desc(), QuizSessionRow.created_at_ms.desc())
			.limit(sessions)
		).scalars())
		if not recent:
			return {}
		rank = {session_id: i + 1 for i, session_id in enumerate(recent)}
		rows = self.db.execute(
			select(SessionSlotRow.session_id, SessionSlotRow.question_id, SessionAnswerRow.outcome)
			.join(
				SessionAnswerRow,
				(SessionAnswerRow.session_id == SessionSlotRow.session_id)
				& (SessionAnswerRow.slot_index == SessionSlotRow.slot_index),
			)
			.where(SessionSlotRow.session_id.in_(recent))
		).all()
		history: Dict[str, QuestionHistory] = {}
		for session_id, question_id, outcome in rows:
			ago = rank[session_id]
			seen = history.get(question_id)
			if seen is None or ago < seen.sessions_ago:
				history[question_id] = QuestionHistory(question_id, outcome == Outcome.CORRECT.value, ago)
		return history

	# ---- progress ----

	@staticmethod
	def _concept_from_row(row: ConceptProgressRow) -> ConceptProgress:
		p = ConceptProgress(user_id=row.user_id, key=row.concept_id, topic_id=row.topic_id)
		for name in _PROGRESS_FIELDS:
			setattr(p, name, getattr(row, name))
		p.band = ProficiencyBand.from_label(row.band)
		p.difficulty_level = row.difficulty_level
		return p

	@staticmethod
	def _topic_from_row(row: TopicProgressRow) -> TopicProgress:
		p = TopicProgress(user_id=row.user_id, key=row.topic_id)
		for name in _PROGRESS_FIELDS:
			setattr(p, name, getattr(row, name))
		p.band = ProficiencyBand.from_label(row.band)
		return p

	def concept_progress(self, user_id: str, concept_ids: Sequence[str]) -> Dict[str, ConceptProgress]:
		if not concept_ids:
			return {}
		rows = self.db.execute(
			select(ConceptProgressRow).where(
				ConceptProgressRow.user_id == user_id,
				ConceptProgressRow.concept_id.in_(list(concept_ids)),
			)
		).scalars()
		return {r.concept_id: self._concept_from_row(r) for r in rows}

	def save_concept_progress(self, progress: ConceptProgress) -> None:
		row = self.db.get(ConceptProgressRow, (progress.user_id, progress.key))
		if row is None:
			row = ConceptProgressRow(user_id=progress.user_id, concept_id=progress.key)
			self.db.add(row)
		row.topic_id = progress.topic_id
		for name in _PROGRESS_FIELDS:
			setattr(row, name, getattr(progress, name))
		row.band = progress.band.label
		row.difficulty_level = progress.difficulty_level
		self.db.flush()

	def topic_progress(self, user_id: str, topic_id: str) -> Optional[TopicProgress]:
		row = self.db.get(TopicProgressRow, (user_id, topic_id))
		return self._topic_from_row(row) if row is not None else None

	def save_topic_progress(self, progress: TopicProgress) -> None:
		row = self.db.get(TopicProgressRow, (progress.user_id, progress.key))
		if row is None:
			row = TopicProgressRow(user_id=progress.user_id, topic_id=progress.key)
			self.db.add(row)
		for name in _PROGRESS_FIELDS:
			setattr(row, name, getattr(progress, name))
		row.band = progress.band.label
		self.db.flush()

	def list_progress(
		self, user_id: str, topic_id: Optional[str] = None
	) -> Tuple[List[ConceptProgress], List[TopicProgress]]:
		concept_q = select(ConceptProgressRow).where(ConceptProgressRow.user_id == user_id)
		topic_q = select(TopicProgressRow).where(TopicProgressRow.user_id == user_id)
		if topic_id is not None:
			concept_q = concept_q.where(ConceptProgressRow.topic_id == topic_id)
			topic_q = topic_q.where(TopicProgressRow.topic_id == topic_id)
		concepts = [self._concept_from_row(r) for r in self.db.execute(concept_q.order_by(ConceptProgressRow.concept_id)).scalars()]
		topics = [self._topic_from_row(r) for r in self.db.execute(topic_q.order_by(TopicProgressRow.topic_id)).scalars()]
		return concepts, topics


class SqlSessionStore(SessionStore):
	def __init__(self, db: Database, clock: Optional[Any] = None) -> None:
		super().__init__()
		self.db = db
		self.clock = clock or SystemClock()

	@contextmanager
	def transaction(self) -> Iterator[SqlTransaction]:
		s = self.db.session()
		try:
			yield SqlTransaction(s, self.clock)
			s.commit()
		except EngineError:
			s.rollback()
			raise
		except SQLAlchemyError as e:
			s.rollback()
			logger.error("storage failure, transaction rolled back: %s", e)
			raise errors.storage("storage temporarily unavailable, retry the request") from e
		except Exception:
			s.rollback()
			raise
		finally:
			s.close()
