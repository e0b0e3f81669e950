from typing import Any, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ..core.state_machine import SessionStateMachine
from ..core.types import RequestContext, ScopeSpec, SelectionStrategy, SessionStatus, TimeMode
from ..deps import get_quiz_engine, request_context
from .. import views

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
	curriculum_id: str = Field(min_length=1)
	topic_id: str = Field(min_length=1)
	concept_ids: List[str] = Field(default_factory=list)
	time_mode: TimeMode = TimeMode.UNLIMITED
	max_questions: Optional[int] = Field(default=None, ge=1)
	strategy: SelectionStrategy = SelectionStrategy.ADAPTIVE


class AnswerRequest(BaseModel):
	slot_index: int = Field(ge=0)
	response: Any = None


@router.post("", status_code=201)
def create_session(
	req: CreateSessionRequest,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	scope = ScopeSpec(
		curriculum_id=req.curriculum_id,
		topic_id=req.topic_id,
		concept_ids=tuple(req.concept_ids),
		max_questions=req.max_questions,
		strategy=req.strategy,
	)
	session = quiz.create(ctx, ctx.user_id, scope, req.time_mode)
	return views.session_out(session, quiz.clock.now_ms())


@router.get("")
def list_sessions(
	limit: int = Query(default=20, ge=1, le=100),
	offset: int = Query(default=0, ge=0),
	status: Optional[SessionStatus] = None,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	sessions, total = quiz.list_sessions(ctx, ctx.user_id, limit=limit, offset=offset, status=status)
	now = quiz.clock.now_ms()
	return {
		"items": [views.session_out(s, now) for s in sessions],
		"total": total,
		"limit": limit,
		"offset": offset,
	}


@router.get("/{session_id}")
def get_session(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.session_out(quiz.get_session(ctx, session_id), quiz.clock.now_ms())


@router.post("/{session_id}/start")
def start_session(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.view_out(quiz.start(ctx, session_id), quiz.clock.now_ms())


@router.get("/{session_id}/question")
def current_question(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.view_out(quiz.current_slot(ctx, session_id), quiz.clock.now_ms())


@router.post("/{session_id}/answer")
def submit_answer(
	session_id: str,
	req: AnswerRequest,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	result = quiz.submit_answer(ctx, session_id, req.slot_index, req.response)
	return views.submit_out(result, quiz.clock.now_ms())


@router.post("/{session_id}/skip")
def skip_question(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.view_out(quiz.skip(ctx, session_id), quiz.clock.now_ms())


@router.post("/{session_id}/pause")
def pause_session(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.session_out(quiz.pause(ctx, session_id), quiz.clock.now_ms())


@router.post("/{session_id}/resume")
def resume_session(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.session_out(quiz.resume(ctx, session_id), quiz.clock.now_ms())


@router.post("/{session_id}/end")
def end_session(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.summary_out(quiz.end(ctx, session_id))


@router.get("/{session_id}/summary")
def session_summary(
	session_id: str,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.summary_out(quiz.summary(ctx, session_id))
