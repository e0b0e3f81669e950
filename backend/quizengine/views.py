"""JSON shapes returned by the HTTP layer. Correct answers only appear after submission."""
from __future__ import annotations
from typing import Any, Dict, List, Optional

from .core import timer
from .core.types import (
	Answer,
	ConceptProgress,
	Question,
	QuizSession,
	SessionSlot,
	SessionSummary,
	SlotView,
	SubmitResult,
	TopicProgress,
)


def _remaining(session: QuizSession, now_ms: int) -> Optional[int]:
	if timer.budget_ms(session.time_mode) is None:
		return None
	return timer.remaining_session_ms(session, now_ms)


def session_out(session: QuizSession, now_ms: int) -> Dict[str, Any]:
	return {
		"id": session.id,
		"user_id": session.user_id,
		"curriculum_id": session.scope.curriculum_id,
		"topic_id": session.scope.topic_id,
		"concept_ids": list(session.scope.concept_ids),
		"max_questions": session.scope.max_questions,
		"strategy": session.scope.strategy.value,
		"time_mode": session.time_mode.value,
		"status": session.status.value,
		"cursor": session.cursor,
		"slots_served": len(session.slots),
		"questions_answered": session.questions_answered,
		"questions_correct": session.questions_correct,
		"questions_skipped": session.questions_skipped,
		"questions_timed_out": session.questions_timed_out,
		"xp_earned": session.xp_earned,
		"active_duration_ms": timer.active_duration_ms(session, now_ms),
		"remaining_ms": _remaining(session, now_ms),
		"created_at_ms": session.created_at_ms,
		"started_at_ms": session.started_at_ms,
		"ended_at_ms": session.ended_at_ms,
	}


def slot_out(slot: Optional[SessionSlot], question: Optional[Question]) -> Optional[Dict[str, Any]]:
	if slot is None:
		return None
	return {
		"slot_index": slot.index,
		"served_at_ms": slot.served_at_ms,
		"question": question.for_client() if question is not None else None,
	}


def view_out(view: SlotView, now_ms: int) -> Dict[str, Any]:
	return {
		"session": session_out(view.session, now_ms),
		"slot": slot_out(view.slot, view.question),
		"finished": view.finished,
	}


def answer_out(answer: Answer, question: Optional[Question]) -> Dict[str, Any]:
	out = {
		"outcome": answer.outcome.value,
		"is_correct": answer.is_correct,
		"xp_awarded": answer.xp_awarded,
		"time_to_answer_ms": answer.time_to_answer_ms,
		"band_before": answer.band_before.label,
		"band_after": answer.band_after.label,
	}
	if question is not None:
		out["correct_answer"] = question.correct_answer
		out["explanation"] = question.explanation
	return out


def submit_out(result: SubmitResult, now_ms: int) -> Dict[str, Any]:
	return {
		"session": session_out(result.session, now_ms),
		"answer": answer_out(result.answer, result.question),
		"next": slot_out(result.next_slot, result.next_question),
		"finished": result.finished,
	}


def summary_out(summary: SessionSummary) -> Dict[str, Any]:
	return {
		"session_id": summary.session_id,
		"status": summary.status.value,
		"time_mode": summary.time_mode.value,
		"topic_id": summary.topic_id,
		"slots_served": summary.slots_served,
		"questions_answered": summary.questions_answered,
		"questions_correct": summary.questions_correct,
		"questions_skipped": summary.questions_skipped,
		"questions_timed_out": summary.questions_timed_out,
		"accuracy": round(summary.accuracy, 4),
		"xp_earned": summary.xp_earned,
		"time_spent_ms": summary.time_spent_ms,
		"remaining_ms": summary.remaining_ms,
		"started_at_ms": summary.started_at_ms,
		"ended_at_ms": summary.ended_at_ms,
		"by_concept": [
			{
				"concept_id": row.concept_id,
				"attempts": row.attempts,
				"correct": row.correct,
				"skipped": row.skipped,
				"timed_out": row.timed_out,
				"accuracy": round(row.accuracy, 4),
				"xp": row.xp,
				"band_before": row.band_before.label if row.band_before is not None else None,
				"band_after": row.band_after.label if row.band_after is not None else None,
				"band_delta": row.band_delta,
			}
			for row in summary.by_concept
		],
		# JSON object keys are strings
		"by_difficulty": {str(level): counts for level, counts in sorted(summary.by_difficulty.items())},
	}


def _progress_common(p) -> Dict[str, Any]:
	return {
		"attempts": p.attempts,
		"correct": p.correct,
		"accuracy": round(p.accuracy, 4),
		"streak": p.streak,
		"longest_streak": p.longest_streak,
		"xp": p.xp,
		"time_spent_ms": p.time_spent_ms,
		"last_attempted_at_ms": p.last_attempted_at_ms,
		"band": p.band.label,
	}


def progress_out(concepts: List[ConceptProgress], topics: List[TopicProgress]) -> Dict[str, Any]:
	return {
		"topics": [dict(topic_id=t.key, **_progress_common(t)) for t in topics],
		"concepts": [
			dict(concept_id=c.key, topic_id=c.topic_id, difficulty_level=c.difficulty_level, **_progress_common(c))
			for c in concepts
		],
	}
