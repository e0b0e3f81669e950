"""Storage contracts the engine depends on.

The engine never talks to a database directly. A `SessionStore` hands out unit-of-work
transactions (all-or-nothing) and per-session / per-user exclusivity; a `QuestionBank`
answers catalog lookups. `quizengine.store_sql` provides the SQLAlchemy implementations.
"""
from __future__ import annotations
import abc
from contextlib import contextmanager
from typing import ContextManager, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .locks import LockRegistry
from .types import (
	Answer,
	Concept,
	ConceptProgress,
	Question,
	QuestionHistory,
	QuizSession,
	SessionStatus,
	TopicProgress,
)


class QuestionBank(abc.ABC):
	@abc.abstractmethod
	def concepts(self, curriculum_id: str, topic_id: str) -> List[Concept]:
		...

	@abc.abstractmethod
	def questions(
		self, curriculum_id: str, concept_ids: Sequence[str], exclude_ids: Iterable[str] = ()
	) -> List[Question]:
		...

	@abc.abstractmethod
	def get_question(self, question_id: str) -> Optional[Question]:
		...


class StoreTransaction(abc.ABC):
	@abc.abstractmethod
	def load_session(self, session_id: str, *, for_update: bool = False) -> Optional[QuizSession]:
		...

	@abc.abstractmethod
	def open_session_for(self, user_id: str) -> Optional[QuizSession]:
		...

	@abc.abstractmethod
	def insert_session(self, session: QuizSession) -> None:
		"""Insert a new session; raises a CONCURRENT_SESSION EngineError if the user already has an open one."""

	@abc.abstractmethod
	def save_session(self, session: QuizSession) -> None:
		"""Persist header fields and any slots not yet stored."""

	@abc.abstractmethod
	def append_answer(self, session_id: str, slot_index: int, answer: Answer) -> None:
		...

	@abc.abstractmethod
	def list_sessions(
		self, user_id: str, limit: int, offset: int, status: Optional[SessionStatus] = None
	) -> Tuple[List[QuizSession], int]:
		...

	@abc.abstractmethod
	def concept_progress(self, user_id: str, concept_ids: Sequence[str]) -> Dict[str, ConceptProgress]:
		...

	@abc.abstractmethod
	def save_concept_progress(self, progress: ConceptProgress) -> None:
		...

	@abc.abstractmethod
	def topic_progress(self, user_id: str, topic_id: str) -> Optional[TopicProgress]:
		...

	@abc.abstractmethod
	def save_topic_progress(self, progress: TopicProgress) -> None:
		...

	@abc.abstractmethod
	def list_progress(
		self, user_id: str, topic_id: Optional[str] = None
	) -> Tuple[List[ConceptProgress], List[TopicProgress]]:
		...

	@abc.abstractmethod
	def question_history(self, user_id: str, topic_id: str, sessions: int) -> Dict[str, QuestionHistory]:
		"""Latest appearance of each question in the user's last `sessions` finished sessions on a topic.

		Sessions are ranked newest first from 1; a question seen twice keeps its most recent
		appearance and that attempt's correctness.
		"""

	@abc.abstractmethod
	def idle_session_ids(self, updated_before_ms: int) -> List[str]:
		...


class SessionStore(abc.ABC):
	def __init__(self) -> None:
		self._session_locks = LockRegistry()
		self._user_locks = LockRegistry()

	@abc.abstractmethod
	def transaction(self) -> ContextManager[StoreTransaction]:
		"""Commit on clean exit, roll back on any exception; storage failures surface as STORAGE errors."""

	@contextmanager
	def session_lock(self, session_id: str) -> Iterator[None]:
		with self._session_locks.hold(session_id):
			yield

	@contextmanager
	def user_lock(self, user_id: str) -> Iterator[None]:
		with self._user_locks.hold(user_id):
			yield
