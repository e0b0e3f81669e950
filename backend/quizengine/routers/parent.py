"""Read-only monitoring of a child's quizzes by a linked parent.

The engine knows nothing about consent: every route here checks the `ParentLink` row first
and then reads on the child's behalf.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..core.state_machine import SessionStateMachine
from ..core.types import RequestContext, SessionStatus
from ..db import get_db
from ..deps import get_quiz_engine, request_context
from ..models import ParentLink
from .. import views

router = APIRouter(prefix="/parent", tags=["parent"])


def child_context(
	child: str,
	ctx: RequestContext = Depends(request_context),
	db: Session = Depends(get_db),
) -> RequestContext:
	link = db.get(ParentLink, (ctx.user_id, child))
	if link is None or not link.consent_granted:
		# Same answer for "not linked" and "no consent" so links cannot be discovered
		raise HTTPException(status_code=403, detail="Not permitted to view this child's activity")
	return RequestContext(request_id=ctx.request_id, user_id=child)


@router.get("/children/{child}/sessions")
def child_sessions(
	child: str,
	limit: int = Query(default=20, ge=1, le=100),
	offset: int = Query(default=0, ge=0),
	status: Optional[SessionStatus] = None,
	child_ctx: RequestContext = Depends(child_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	sessions, total = quiz.list_sessions(child_ctx, child, limit=limit, offset=offset, status=status)
	now = quiz.clock.now_ms()
	return {
		"items": [views.session_out(s, now) for s in sessions],
		"total": total,
		"limit": limit,
		"offset": offset,
	}


@router.get("/children/{child}/sessions/{session_id}/summary")
def child_session_summary(
	child: str,
	session_id: str,
	child_ctx: RequestContext = Depends(child_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	return views.summary_out(quiz.summary(child_ctx, session_id))


@router.get("/children/{child}/progress")
def child_progress(
	child: str,
	topic_id: Optional[str] = None,
	child_ctx: RequestContext = Depends(child_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	concepts, topics = quiz.progress(child_ctx, child, topic_id)
	return views.progress_out(concepts, topics)
