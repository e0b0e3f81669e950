import pytest

from quizengine.core import proficiency
from quizengine.core.proficiency import ProficiencyAggregator, apply_outcome, band_of, compute_band
from quizengine.core.types import Concept, ConceptProgress, Outcome, ProficiencyBand, TopicProgress

pytestmark = pytest.mark.unit

NON_CORRECT = [Outcome.INCORRECT, Outcome.SKIPPED, Outcome.TIMED_OUT]


def _concept_progress(**kw):
	p = ConceptProgress(user_id="u", key="c1", topic_id="t1")
	for k, v in kw.items():
		setattr(p, k, v)
	return p


class TestComputeBand:
	def test_novice_below_minimum_attempts(self):
		assert compute_band(proficiency.MIN_ATTEMPTS_FOR_BANDING - 1, "1111", 4) is ProficiencyBand.NOVICE

	@pytest.mark.parametrize("window,band", [
		("0000011111", ProficiencyBand.DEVELOPING),
		("0000000111", ProficiencyBand.NOVICE),
		("0011111111", ProficiencyBand.ADVANCED),
		("0001111111", ProficiencyBand.PROFICIENT),
	])
	def test_bands_follow_window_accuracy(self, window, band):
		assert compute_band(10, window, 0) is band

	def test_mastery_needs_a_streak(self):
		assert compute_band(10, "1111111111", proficiency.MASTERY_STREAK - 1) is ProficiencyBand.ADVANCED
		assert compute_band(10, "1111111111", proficiency.MASTERY_STREAK) is ProficiencyBand.MASTERY


class TestApplyOutcome:
	def test_correct_extends_streak_and_window(self):
		p = apply_outcome(_concept_progress(), Outcome.CORRECT, 12, 3000, 42)
		assert (p.attempts, p.correct, p.streak, p.longest_streak) == (1, 1, 1, 1)
		assert p.xp == 12
		assert p.time_spent_ms == 3000
		assert p.last_attempted_at_ms == 42
		assert p.recent_outcomes == "1"

	@pytest.mark.parametrize("outcome", NON_CORRECT)
	def test_non_correct_never_increases_streak(self, outcome):
		p = _concept_progress(attempts=3, correct=3, streak=3, longest_streak=3, recent_outcomes="111")
		apply_outcome(p, outcome, 0, 1000, 1)
		assert p.streak == 0
		assert p.longest_streak == 3
		assert p.attempts == 4
		assert p.recent_outcomes == "1110"

	@pytest.mark.parametrize("history", ["", "0", "0101", "000000", "1111110000"])
	def test_correct_never_lowers_accuracy(self, history):
		p = _concept_progress()
		for ch in history:
			apply_outcome(p, Outcome.CORRECT if ch == "1" else Outcome.INCORRECT, 0, 0, 0)
		before = p.accuracy
		apply_outcome(p, Outcome.CORRECT, 10, 0, 0)
		assert p.accuracy >= before

	def test_window_is_bounded(self):
		p = _concept_progress()
		for _ in range(proficiency.WINDOW_SIZE + 5):
			apply_outcome(p, Outcome.CORRECT, 0, 0, 0)
		assert len(p.recent_outcomes) == proficiency.WINDOW_SIZE

	def test_stored_band_is_reproducible(self):
		p = _concept_progress()
		for ch in "110101110011101":
			apply_outcome(p, Outcome.CORRECT if ch == "1" else Outcome.SKIPPED, 0, 0, 0)
			# Recomputing from the stored aggregate must give the same answer
			assert band_of(p) is p.band
			assert compute_band(p.attempts, p.recent_outcomes, p.streak) is p.band


class TestAggregator:
	def test_updates_concept_and_topic_together(self):
		concept_def = Concept(id="c1", topic_id="t1")
		concept = _concept_progress()
		topic = TopicProgress(user_id="u", key="t1")
		before, after = ProficiencyAggregator().record(concept_def, concept, topic, Outcome.CORRECT, 10, 500, 7)
		assert before is ProficiencyBand.NOVICE
		assert after is concept.band
		assert concept.attempts == topic.attempts == 1
		assert concept.xp == topic.xp == 10

	def test_third_straight_correct_raises_difficulty(self):
		concept_def = Concept(id="c1", topic_id="t1", min_difficulty=1, max_difficulty=3)
		concept = _concept_progress()
		topic = TopicProgress(user_id="u", key="t1")
		agg = ProficiencyAggregator()
		levels = []
		for _ in range(3):
			agg.record(concept_def, concept, topic, Outcome.CORRECT, 10, 0, 0)
			levels.append(concept.difficulty_level)
		assert levels == [1, 1, 2]
		agg.record(concept_def, concept, topic, Outcome.SKIPPED, 0, 0, 0)
		assert concept.difficulty_level == 1
