"""Per-concept and per-topic proficiency aggregation.

Bands are derived, never set: `compute_band` is the only place a band comes from and it
reads nothing but stored aggregates, so recomputing from a row always reproduces it.
"""
from __future__ import annotations
from typing import Tuple, TypeVar

from .selector import step_difficulty
from .types import Concept, ConceptProgress, Outcome, ProficiencyBand, Progress, TopicProgress

WINDOW_SIZE = 10
MIN_ATTEMPTS_FOR_BANDING = 5
MASTERY_STREAK = 5

# (upper accuracy bound, band) in ascending order
BAND_THRESHOLDS: Tuple[Tuple[float, ProficiencyBand], ...] = (
	(0.40, ProficiencyBand.NOVICE),
	(0.60, ProficiencyBand.DEVELOPING),
	(0.80, ProficiencyBand.PROFICIENT),
	(0.95, ProficiencyBand.ADVANCED),
)

P = TypeVar("P", bound=Progress)


def window_accuracy(recent_outcomes: str) -> float:
	if not recent_outcomes:
		return 0.0
	return recent_outcomes.count("1") / len(recent_outcomes)


def compute_band(attempts: int, recent_outcomes: str, streak: int) -> ProficiencyBand:
	if attempts < MIN_ATTEMPTS_FOR_BANDING:
		return ProficiencyBand.NOVICE
	acc = window_accuracy(recent_outcomes)
	for bound, band in BAND_THRESHOLDS:
		if acc < bound:
			return band
	if streak >= MASTERY_STREAK:
		return ProficiencyBand.MASTERY
	return ProficiencyBand.ADVANCED


def band_of(progress: Progress) -> ProficiencyBand:
	return compute_band(progress.attempts, progress.recent_outcomes, progress.streak)


def apply_outcome(progress: P, outcome: Outcome, xp: int, time_spent_ms: int, now_ms: int) -> P:
	"""Fold one attempt into an aggregate in place and return it."""
	correct = outcome is Outcome.CORRECT
	progress.attempts += 1
	if correct:
		progress.correct += 1
		progress.streak += 1
		progress.longest_streak = max(progress.longest_streak, progress.streak)
	else:
		progress.streak = 0
	progress.xp += max(0, xp)
	progress.time_spent_ms += max(0, time_spent_ms)
	progress.last_attempted_at_ms = now_ms
	progress.recent_outcomes = (progress.recent_outcomes + ("1" if correct else "0"))[-WINDOW_SIZE:]
	progress.band = band_of(progress)
	return progress


class ProficiencyAggregator:
	"""Applies an attempt to the concept aggregate and its parent topic aggregate together."""

	def record(
		self,
		concept_def: Concept,
		concept: ConceptProgress,
		topic: TopicProgress,
		outcome: Outcome,
		xp: int,
		time_spent_ms: int,
		now_ms: int,
	) -> Tuple[ProficiencyBand, ProficiencyBand]:
		before = concept.band
		apply_outcome(concept, outcome, xp, time_spent_ms, now_ms)
		apply_outcome(topic, outcome, xp, time_spent_ms, now_ms)
		concept.difficulty_level = step_difficulty(
			concept_def.clamp(concept.difficulty_level), outcome, concept.streak, concept_def
		)
		return before, concept.band
