from __future__ import annotations
import enum
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


class TimeMode(str, enum.Enum):
	UNLIMITED = "unlimited"
	TEN_MIN = "10min"
	FIVE_MIN = "5min"
	THREE_MIN = "3min"


TIME_BUDGETS_MS: Dict[TimeMode, Optional[int]] = {
	TimeMode.UNLIMITED: None,
	TimeMode.TEN_MIN: 10 * 60 * 1000,
	TimeMode.FIVE_MIN: 5 * 60 * 1000,
	TimeMode.THREE_MIN: 3 * 60 * 1000,
}


class SessionStatus(str, enum.Enum):
	CREATED = "created"
	ACTIVE = "active"
	PAUSED = "paused"
	COMPLETED = "completed"
	ABANDONED = "abandoned"


OPEN_STATUSES: Tuple[SessionStatus, ...] = (SessionStatus.CREATED, SessionStatus.ACTIVE, SessionStatus.PAUSED)
TERMINAL_STATUSES: Tuple[SessionStatus, ...] = (SessionStatus.COMPLETED, SessionStatus.ABANDONED)


class Outcome(str, enum.Enum):
	CORRECT = "correct"
	INCORRECT = "incorrect"
	SKIPPED = "skipped"
	TIMED_OUT = "timed_out"


class SelectionStrategy(str, enum.Enum):
	ADAPTIVE = "adaptive"
	SEQUENTIAL = "sequential"
	RANDOM = "random"
	REVIEW = "review"


class ProficiencyBand(enum.IntEnum):
	NOVICE = 0
	DEVELOPING = 1
	PROFICIENT = 2
	ADVANCED = 3
	MASTERY = 4

	@property
	def label(self) -> str:
		return self.name.lower()

	@classmethod
	def from_label(cls, label: str) -> "ProficiencyBand":
		return cls[label.upper()]


# Difficulty levels as stored in the catalog (familiarity -> exam style)
DIFFICULTY_LABELS: Dict[int, str] = {1: "familiarity", 2: "application", 3: "exam_style"}
MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 3


def new_id() -> str:
	return uuid.uuid4().hex


@dataclass(frozen=True)
class RequestContext:
	"""Per-call tracing context passed explicitly through every engine operation."""
	request_id: str
	user_id: Optional[str] = None

	@classmethod
	def new(cls, user_id: Optional[str] = None) -> "RequestContext":
		return cls(request_id=new_id(), user_id=user_id)


@dataclass(frozen=True)
class ScopeSpec:
	curriculum_id: str
	topic_id: str
	concept_ids: Tuple[str, ...] = ()
	max_questions: Optional[int] = None
	strategy: SelectionStrategy = SelectionStrategy.ADAPTIVE


@dataclass(frozen=True)
class Concept:
	id: str
	topic_id: str
	name: str = ""
	min_difficulty: int = MIN_DIFFICULTY
	max_difficulty: int = MAX_DIFFICULTY

	def clamp(self, level: int) -> int:
		return max(self.min_difficulty, min(self.max_difficulty, level))


@dataclass(frozen=True)
class Question:
	id: str
	concept_id: str
	topic_id: str
	difficulty: int
	question_type: str
	text: str
	correct_answer: Any
	options: Optional[List[Dict[str, str]]] = None
	explanation: Optional[str] = None
	cognitive_level: Optional[str] = None

	def for_client(self) -> Dict[str, Any]:
		# Never exposes correct_answer
		return {
			"id": self.id,
			"concept_id": self.concept_id,
			"topic_id": self.topic_id,
			"difficulty": self.difficulty,
			"difficulty_label": DIFFICULTY_LABELS.get(self.difficulty, str(self.difficulty)),
			"question_type": self.question_type,
			"text": self.text,
			"options": self.options,
			"cognitive_level": self.cognitive_level,
		}


@dataclass(frozen=True)
class QuestionHistory:
	"""Latest appearance of a question in the user's finished sessions; sessions_ago starts at 1."""
	question_id: str
	is_correct: bool
	sessions_ago: int


@dataclass(frozen=True)
class Answer:
	outcome: Outcome
	response: Any = None
	time_to_answer_ms: int = 0
	xp_awarded: int = 0
	band_before: ProficiencyBand = ProficiencyBand.NOVICE
	band_after: ProficiencyBand = ProficiencyBand.NOVICE
	answered_at_ms: int = 0

	@property
	def is_correct(self) -> bool:
		return self.outcome is Outcome.CORRECT

	@property
	def submitted(self) -> bool:
		return self.outcome in (Outcome.CORRECT, Outcome.INCORRECT)


@dataclass
class SessionSlot:
	index: int
	question_id: str
	concept_id: str
	topic_id: str
	difficulty: int
	served_at_ms: int
	served_active_ms: int = 0
	answer: Optional[Answer] = None

	@property
	def answered(self) -> bool:
		return self.answer is not None


@dataclass
class QuizSession:
	id: str
	user_id: str
	scope: ScopeSpec
	time_mode: TimeMode
	status: SessionStatus = SessionStatus.CREATED
	slots: List[SessionSlot] = field(default_factory=list)
	cursor: int = 0
	started_at_ms: Optional[int] = None
	paused_at_ms: Optional[int] = None
	paused_duration_ms: int = 0
	active_duration_ms: int = 0
	ended_at_ms: Optional[int] = None
	xp_earned: int = 0
	questions_answered: int = 0
	questions_correct: int = 0
	questions_skipped: int = 0
	questions_timed_out: int = 0
	created_at_ms: int = 0

	@property
	def terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES

	@property
	def current(self) -> Optional[SessionSlot]:
		if self.cursor < len(self.slots):
			return self.slots[self.cursor]
		return None

	def served_question_ids(self) -> List[str]:
		return [s.question_id for s in self.slots]


@dataclass
class Progress:
	"""Aggregate shared by concept and topic progress rows."""
	user_id: str
	key: str
	attempts: int = 0
	correct: int = 0
	streak: int = 0
	longest_streak: int = 0
	xp: int = 0
	time_spent_ms: int = 0
	last_attempted_at_ms: Optional[int] = None
	recent_outcomes: str = ""
	band: ProficiencyBand = ProficiencyBand.NOVICE

	@property
	def accuracy(self) -> float:
		if self.attempts <= 0:
			return 0.0
		return self.correct / self.attempts


@dataclass
class ConceptProgress(Progress):
	topic_id: str = ""
	difficulty_level: int = MIN_DIFFICULTY


@dataclass
class TopicProgress(Progress):
	pass


@dataclass
class SlotView:
	"""Result of reading or advancing a session: the session plus the slot to answer, if any."""
	session: QuizSession
	slot: Optional[SessionSlot] = None
	question: Optional[Question] = None

	@property
	def finished(self) -> bool:
		return self.session.terminal or self.slot is None


@dataclass
class SubmitResult:
	session: QuizSession
	answer: Answer
	question: Question
	next_slot: Optional[SessionSlot] = None
	next_question: Optional[Question] = None

	@property
	def finished(self) -> bool:
		return self.session.terminal


@dataclass
class ConceptBreakdown:
	concept_id: str
	attempts: int = 0
	correct: int = 0
	skipped: int = 0
	timed_out: int = 0
	xp: int = 0
	band_before: Optional[ProficiencyBand] = None
	band_after: Optional[ProficiencyBand] = None

	@property
	def accuracy(self) -> float:
		return self.correct / self.attempts if self.attempts else 0.0

	@property
	def band_delta(self) -> int:
		if self.band_before is None or self.band_after is None:
			return 0
		return int(self.band_after) - int(self.band_before)


@dataclass
class SessionSummary:
	session_id: str
	status: SessionStatus
	time_mode: TimeMode
	topic_id: str
	slots_served: int
	questions_answered: int
	questions_correct: int
	questions_skipped: int
	questions_timed_out: int
	accuracy: float
	xp_earned: int
	time_spent_ms: int
	remaining_ms: Optional[int]
	by_concept: List[ConceptBreakdown] = field(default_factory=list)
	by_difficulty: Dict[int, Dict[str, int]] = field(default_factory=dict)
	started_at_ms: Optional[int] = None
	ended_at_ms: Optional[int] = None
