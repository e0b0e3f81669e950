import random
from collections import Counter

import pytest

from quizengine.core import selector
from quizengine.core.selector import QuestionSelector, concept_weight, held_back, step_difficulty, vary_cognitive_level
from quizengine.core.types import Concept, ConceptProgress, Outcome, Question, QuestionHistory, SelectionStrategy

pytestmark = pytest.mark.unit

ADD = Concept(id="add", topic_id="t", min_difficulty=1, max_difficulty=3)
MUL = Concept(id="mul", topic_id="t", min_difficulty=1, max_difficulty=2)


def _q(qid, concept, difficulty, level=None):
	return Question(
		id=qid, concept_id=concept.id, topic_id="t", difficulty=difficulty,
		question_type="mcq", text=qid, correct_answer="a", cognitive_level=level,
	)


POOL = [
	_q("add-1a", ADD, 1), _q("add-1b", ADD, 1), _q("add-2a", ADD, 2), _q("add-3a", ADD, 3),
	_q("mul-1a", MUL, 1), _q("mul-2a", MUL, 2), _q("mul-3a", MUL, 3),
]


def _progress(concept, attempts=0, correct=0, level=1, recent=""):
	return ConceptProgress(
		user_id="u", key=concept.id, topic_id="t", attempts=attempts, correct=correct,
		difficulty_level=level, recent_outcomes=recent,
	)


def _seen(qid, correct, ago):
	return {qid: QuestionHistory(qid, correct, ago)}


class TestStepDifficulty:
	def test_escalates_on_every_third_streak(self):
		assert step_difficulty(1, Outcome.CORRECT, 1, ADD) == 1
		assert step_difficulty(1, Outcome.CORRECT, 2, ADD) == 1
		assert step_difficulty(1, Outcome.CORRECT, 3, ADD) == 2
		assert step_difficulty(2, Outcome.CORRECT, 6, ADD) == 3

	def test_streaks_between_multiples_hold_the_level(self):
		assert step_difficulty(2, Outcome.CORRECT, 4, ADD) == 2
		assert step_difficulty(2, Outcome.CORRECT, 5, ADD) == 2

	@pytest.mark.parametrize("outcome", [Outcome.INCORRECT, Outcome.SKIPPED, Outcome.TIMED_OUT])
	def test_de_escalates_on_anything_else(self, outcome):
		assert step_difficulty(3, outcome, 0, ADD) == 2

	def test_clamped_to_concept_range(self):
		assert step_difficulty(1, Outcome.INCORRECT, 0, ADD) == 1
		assert step_difficulty(2, Outcome.CORRECT, 3, MUL) == 2


class TestWeights:
	def test_weaker_concepts_weigh_more(self):
		assert concept_weight(_progress(ADD, 10, 2)) > concept_weight(_progress(ADD, 10, 8))

	def test_unseen_concept_has_full_weight(self):
		assert concept_weight(None) == 1.0

	def test_perfect_concept_keeps_floor_weight(self):
		assert concept_weight(_progress(ADD, 10, 10)) == selector.WEIGHT_FLOOR


class TestChoose:
	def test_never_repeats_served_questions(self):
		sel = QuestionSelector(random.Random(1))
		served = {"add-1a", "add-1b", "mul-1a"}
		for _ in range(50):
			q = sel.choose([ADD, MUL], POOL, {}, served)
			assert q.id not in served

	def test_out_of_range_difficulty_is_ineligible(self):
		pool = QuestionSelector().eligible([ADD, MUL], POOL, set())
		assert "mul-3a" not in {q.id for q in pool}

	def test_picks_level_nearest_to_target(self):
		sel = QuestionSelector(random.Random(3))
		progress = {"add": _progress(ADD, level=2)}
		for _ in range(20):
			q = sel.choose([ADD], POOL, progress, set())
			assert q.difficulty == 2

	def test_falls_back_to_nearest_available_level(self):
		sel = QuestionSelector(random.Random(3))
		progress = {"add": _progress(ADD, level=2)}
		q = sel.choose([ADD], POOL, progress, {"add-2a"})
		# Levels 1 and 3 are equally near; the lower one wins
		assert q.difficulty == 1

	def test_returns_none_when_exhausted(self):
		sel = QuestionSelector()
		assert sel.choose([ADD, MUL], POOL, {}, {q.id for q in POOL}) is None

	def test_weak_concept_is_chosen_more_often(self):
		sel = QuestionSelector(random.Random(11))
		progress = {"add": _progress(ADD, 10, 10), "mul": _progress(MUL, 10, 0)}
		picks = Counter(sel.choose([ADD, MUL], POOL, progress, set()).concept_id for _ in range(400))
		assert picks["mul"] > picks["add"] * 3
		# The floor keeps a mastered concept in rotation
		assert picks["add"] > 0


class TestStrategies:
	def test_sequential_walks_concept_then_difficulty_then_id(self):
		sel = QuestionSelector(random.Random(2))
		order = []
		served = set()
		while True:
			q = sel.choose([ADD, MUL], POOL, {}, served, strategy=SelectionStrategy.SEQUENTIAL)
			if q is None:
				break
			order.append(q.id)
			served.add(q.id)
		assert order == ["add-1a", "add-1b", "add-2a", "add-3a", "mul-1a", "mul-2a"]

	def test_sequential_ignores_progress(self):
		sel = QuestionSelector(random.Random(2))
		progress = {"add": _progress(ADD, 10, 10, level=3), "mul": _progress(MUL, 10, 0)}
		assert sel.choose([ADD, MUL], POOL, progress, set(), strategy=SelectionStrategy.SEQUENTIAL).id == "add-1a"

	def test_random_reaches_every_eligible_question(self):
		sel = QuestionSelector(random.Random(4))
		progress = {"add": _progress(ADD, 10, 10), "mul": _progress(MUL, 10, 0)}
		picks = {sel.choose([ADD, MUL], POOL, progress, set(), strategy=SelectionStrategy.RANDOM).id for _ in range(300)}
		assert picks == {"add-1a", "add-1b", "add-2a", "add-3a", "mul-1a", "mul-2a"}

	def test_review_sticks_to_concepts_with_a_recent_miss(self):
		sel = QuestionSelector(random.Random(6))
		progress = {"add": _progress(ADD, 4, 4, recent="1111"), "mul": _progress(MUL, 4, 3, recent="1101")}
		for _ in range(30):
			assert sel.choose([ADD, MUL], POOL, progress, set(), strategy=SelectionStrategy.REVIEW).concept_id == "mul"

	def test_review_without_misses_falls_back_to_the_whole_scope(self):
		sel = QuestionSelector(random.Random(6))
		progress = {"add": _progress(ADD, 2, 1, recent="11"), "mul": _progress(MUL, 2, 1, recent="11")}
		picks = {sel.choose([ADD, MUL], POOL, progress, set(), strategy=SelectionStrategy.REVIEW).concept_id for _ in range(50)}
		assert picks == {"add", "mul"}


class TestHistory:
	@pytest.mark.parametrize("correct,ago,held", [
		(True, 1, True), (True, 2, True), (True, 3, False),
		(False, 1, True), (False, 2, True), (False, 3, False), (False, 5, False),
	])
	def test_hold_back_rules(self, correct, ago, held):
		assert held_back(QuestionHistory("q", correct, ago)) is held

	def test_missed_question_waits_two_sessions(self):
		sel = QuestionSelector(random.Random(8))
		two = [_q("add-1a", ADD, 1), _q("add-1b", ADD, 1)]
		for _ in range(30):
			assert sel.choose([ADD], two, {}, set(), _seen("add-1a", False, 2)).id == "add-1b"
		picks = {sel.choose([ADD], two, {}, set(), _seen("add-1a", False, 3)).id for _ in range(100)}
		assert "add-1a" in picks

	def test_history_avoidance_is_soft(self):
		sel = QuestionSelector(random.Random(5))
		only = [_q("add-1a", ADD, 1)]
		assert sel.choose([ADD], only, {}, set(), _seen("add-1a", True, 1)).id == "add-1a"
		two = only + [_q("add-1b", ADD, 1)]
		for _ in range(20):
			assert sel.choose([ADD], two, {}, set(), _seen("add-1a", True, 1)).id == "add-1b"

	def test_never_seen_questions_are_preferred(self):
		sel = QuestionSelector(random.Random(9))
		two = [_q("add-1a", ADD, 1), _q("add-1b", ADD, 1)]
		history = _seen("add-1a", True, 4)
		picks = Counter(sel.choose([ADD], two, {}, set(), history).id for _ in range(400))
		assert picks["add-1b"] > picks["add-1a"] > 0


class TestCognitiveVariety:
	RECALL = _q("add-r", ADD, 1, "recall")
	APPLY = _q("add-p", ADD, 1, "application")

	def test_fourth_in_a_row_switches_level(self):
		pool = [self.RECALL, self.APPLY]
		assert vary_cognitive_level(pool, ["recall"] * 3) == [self.APPLY]

	@pytest.mark.parametrize("recent", [
		["recall", "recall"],
		["recall", "application", "recall"],
		[None, None, None],
	])
	def test_shorter_or_mixed_runs_leave_the_pool(self, recent):
		pool = [self.RECALL, self.APPLY]
		assert vary_cognitive_level(pool, recent) == pool

	def test_single_level_pool_is_kept(self):
		assert vary_cognitive_level([self.RECALL], ["recall"] * 3) == [self.RECALL]

	def test_choose_applies_the_run_limit(self):
		sel = QuestionSelector(random.Random(12))
		for _ in range(20):
			q = sel.choose([ADD], [self.RECALL, self.APPLY], {}, set(), recent_levels=["recall"] * 3)
			assert q.id == "add-p"
