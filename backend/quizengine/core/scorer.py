from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .types import Outcome, Question

XP_BY_DIFFICULTY: Dict[int, int] = {1: 10, 2: 20, 3: 30}
REFERENCE_TIME_MS: Dict[int, int] = {1: 20_000, 2: 40_000, 3: 60_000}
TIME_BONUS = 0.2


@dataclass(frozen=True)
class Score:
	outcome: Outcome
	xp: int

	@property
	def is_correct(self) -> bool:
		return self.outcome is Outcome.CORRECT


def _norm_text(value: Any) -> Optional[str]:
	if isinstance(value, bool) or value is None:
		return None
	if isinstance(value, (int, float)):
		value = str(value)
	if not isinstance(value, str):
		return None
	return value.strip().lower()


def _norm_true_false(value: Any) -> Optional[str]:
	if isinstance(value, bool):
		return "a" if value else "b"
	text = _norm_text(value)
	if text in ("true", "a"):
		return "a"
	if text in ("false", "b"):
		return "b"
	return text


def _norm_fill_blank(value: Any) -> Optional[str]:
	text = _norm_text(value)
	if text is None:
		return None
	text = re.sub(r"\s+", " ", text)
	text = re.sub(r"[.,]+$", "", text)
	text = text.replace("'", "")
	if re.fullmatch(r"[a-z\s-]+", text):
		text = re.sub(r"\s+", " ", text.replace("-", " ")).strip()
	return text


def _match_ordering(correct: Any, response: Any) -> bool:
	if not isinstance(response, list) or not isinstance(correct, list):
		return False
	if len(response) != len(correct):
		return False
	return all(str(a) == str(b) for a, b in zip(response, correct))


def _match_pairs(correct: Any, response: Any) -> bool:
	if not isinstance(response, dict) or not isinstance(correct, dict):
		return False
	if set(response.keys()) != set(correct.keys()):
		return False
	return all(response[k] == v for k, v in correct.items())


def is_correct(question: Question, response: Any) -> bool:
	qtype = question.question_type
	correct = question.correct_answer
	if qtype == "mcq":
		got = _norm_text(response)
		return got is not None and got == _norm_text(correct)
	if qtype == "true_false":
		got = _norm_true_false(response)
		return got is not None and got == _norm_true_false(correct)
	if qtype == "fill_blank":
		got = _norm_fill_blank(response)
		if got is None:
			return False
		accepted: List[Any] = correct if isinstance(correct, list) else [correct]
		return any(got == _norm_fill_blank(c) for c in accepted)
	if qtype == "ordering":
		return _match_ordering(correct, response)
	if qtype == "match":
		return _match_pairs(correct, response)
	return False


def xp_for(difficulty: int, time_to_answer_ms: int) -> int:
	base = XP_BY_DIFFICULTY.get(difficulty, 0)
	reference = REFERENCE_TIME_MS.get(difficulty)
	if reference is not None and 0 <= time_to_answer_ms < reference:
		return base + int(base * TIME_BONUS)
	return base


def score(question: Question, response: Any, time_to_answer_ms: int) -> Score:
	"""Grade a submitted response. Anything unparsable is simply incorrect."""
	try:
		correct = is_correct(question, response)
	except (TypeError, ValueError, AttributeError):
		correct = False
	if not correct:
		return Score(Outcome.INCORRECT, 0)
	return Score(Outcome.CORRECT, xp_for(question.difficulty, time_to_answer_ms))


def unanswered(outcome: Outcome) -> Score:
	# Skips and timeouts never earn XP
	return Score(outcome, 0)
