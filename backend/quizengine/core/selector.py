from __future__ import annotations
import random
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Set

from .types import Concept, ConceptProgress, Outcome, Question, QuestionHistory, SelectionStrategy

WEIGHT_FLOOR = 0.1
ESCALATE_EVERY = 3

# Repeat rules over the user's finished sessions on the topic
CORRECT_HOLD_SESSIONS = 2
WRONG_RETEST_GAP = 3
RECENCY_WEIGHTS = {1: 0.1, 2: 0.25, 3: 0.4}
STALE_RECENCY_WEIGHT = 0.6

MAX_LEVEL_RUN = 3


def concept_weight(progress: Optional[ConceptProgress]) -> float:
	accuracy = progress.accuracy if progress is not None else 0.0
	return max(1.0 - accuracy, WEIGHT_FLOOR)


def step_difficulty(level: int, outcome: Outcome, streak: int, concept: Concept) -> int:
	"""Next difficulty level for a concept after one attempt.

	Only streaks of exactly 3, 6, 9... move up, so streaks of 4 and 5 hold the level
	reached at 3. Anything other than a correct answer moves down one.
	"""
	if outcome is Outcome.CORRECT:
		if streak > 0 and streak % ESCALATE_EVERY == 0:
			level += 1
	else:
		level -= 1
	return concept.clamp(level)


def target_difficulty(concept: Concept, progress: Optional[ConceptProgress]) -> int:
	if progress is None:
		return concept.min_difficulty
	return concept.clamp(progress.difficulty_level)


def held_back(entry: QuestionHistory, correct_hold: int = CORRECT_HOLD_SESSIONS) -> bool:
	# Correct answers rest for a couple of sessions; misses come back from the third
	if entry.is_correct:
		return entry.sessions_ago <= correct_hold
	return entry.sessions_ago < WRONG_RETEST_GAP


def recency_weight(entry: Optional[QuestionHistory]) -> float:
	if entry is None:
		return 1.0
	return RECENCY_WEIGHTS.get(entry.sessions_ago, STALE_RECENCY_WEIGHT)


def vary_cognitive_level(pool: List[Question], recent_levels: Sequence[Optional[str]]) -> List[Question]:
	"""After MAX_LEVEL_RUN questions in a row at one cognitive level, prefer another level."""
	tail = list(recent_levels)[-MAX_LEVEL_RUN:]
	if len(tail) < MAX_LEVEL_RUN or tail[0] is None or len(set(tail)) != 1:
		return pool
	other = [q for q in pool if q.cognitive_level != tail[0]]
	return other or pool


def has_recent_miss(progress: Optional[ConceptProgress]) -> bool:
	return progress is not None and "0" in progress.recent_outcomes


def _nearest_level(levels: Iterable[int], target: int) -> int:
	return min(levels, key=lambda lvl: (abs(lvl - target), lvl))


class QuestionSelector:
	"""Picks the next question for a session.

	Adaptive (the default) favours the weakest concepts at each concept's current level.
	Sequential walks concept, difficulty and id in order. Random draws uniformly. Review
	restricts the adaptive choice to concepts with a miss in their recent outcomes.
	Every strategy skips served questions and soft-avoids those held back by history.
	"""

	def __init__(
		self,
		rng: Optional[random.Random] = None,
		weight_floor: float = WEIGHT_FLOOR,
		correct_hold: int = CORRECT_HOLD_SESSIONS,
	) -> None:
		self.rng = rng or random.Random()
		self.weight_floor = weight_floor
		self.correct_hold = correct_hold

	def eligible(
		self,
		concepts: Sequence[Concept],
		candidates: Iterable[Question],
		served: Set[str],
		history: Optional[Mapping[str, QuestionHistory]] = None,
	) -> List[Question]:
		by_id = {c.id: c for c in concepts}
		pool = []
		for q in candidates:
			concept = by_id.get(q.concept_id)
			if concept is None or q.id in served:
				continue
			if not concept.min_difficulty <= q.difficulty <= concept.max_difficulty:
				continue
			pool.append(q)
		if history:
			fresh = [q for q in pool if q.id not in history or not held_back(history[q.id], self.correct_hold)]
			if fresh:
				pool = fresh
		return pool

	def choose(
		self,
		concepts: Sequence[Concept],
		candidates: Iterable[Question],
		progress: Mapping[str, ConceptProgress],
		served: Set[str],
		history: Optional[Mapping[str, QuestionHistory]] = None,
		recent_levels: Sequence[Optional[str]] = (),
		strategy: SelectionStrategy = SelectionStrategy.ADAPTIVE,
	) -> Optional[Question]:
		pool = sorted(self.eligible(concepts, candidates, served, history), key=lambda q: q.id)
		if not pool:
			return None
		if strategy is SelectionStrategy.SEQUENTIAL:
			return min(pool, key=lambda q: (q.concept_id, q.difficulty, q.id))
		if strategy is SelectionStrategy.RANDOM:
			return self.rng.choice(pool)

		pool = vary_cognitive_level(pool, recent_levels)
		if strategy is SelectionStrategy.REVIEW:
			missed = [q for q in pool if has_recent_miss(progress.get(q.concept_id))]
			pool = missed or pool
		return self._adaptive(concepts, pool, progress, history or {})

	def _adaptive(
		self,
		concepts: Sequence[Concept],
		pool: List[Question],
		progress: Mapping[str, ConceptProgress],
		history: Mapping[str, QuestionHistory],
	) -> Question:
		grouped: Dict[str, List[Question]] = {}
		for q in pool:
			grouped.setdefault(q.concept_id, []).append(q)
		concept_ids = sorted(grouped)
		weights = [max(concept_weight(progress.get(cid)), self.weight_floor) for cid in concept_ids]
		chosen_id = self.rng.choices(concept_ids, weights=weights, k=1)[0]

		concept = next(c for c in concepts if c.id == chosen_id)
		target = target_difficulty(concept, progress.get(chosen_id))
		questions = grouped[chosen_id]
		level = _nearest_level({q.difficulty for q in questions}, target)
		at_level = [q for q in questions if q.difficulty == level]
		return self.rng.choices(at_level, weights=[recency_weight(history.get(q.id)) for q in at_level], k=1)[0]
