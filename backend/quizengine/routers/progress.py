from typing import Optional

from fastapi import APIRouter, Depends

from ..core.state_machine import SessionStateMachine
from ..core.types import RequestContext
from ..deps import get_quiz_engine, request_context
from .. import views

router = APIRouter(prefix="/progress", tags=["progress"])


@router.get("")
def my_progress(
	topic_id: Optional[str] = None,
	ctx: RequestContext = Depends(request_context),
	quiz: SessionStateMachine = Depends(get_quiz_engine),
):
	concepts, topics = quiz.progress(ctx, ctx.user_id, topic_id)
	return views.progress_out(concepts, topics)
