"""Request-scoped dependencies shared by the quiz routers."""
from __future__ import annotations
import math

from fastapi import Depends, HTTPException, Request

from .core.state_machine import SessionStateMachine
from .core.types import RequestContext
from .routers.auth import User, get_current_user


def get_quiz_engine(request: Request) -> SessionStateMachine:
	return request.app.state.quiz


def rate_limited_user(request: Request, user: User = Depends(get_current_user)) -> User:
	wait = request.app.state.rate_limiter.hit(user.username)
	if wait is not None:
		raise HTTPException(
			status_code=429,
			detail="Too many requests",
			headers={"Retry-After": str(max(1, math.ceil(wait)))},
		)
	return user


def request_context(request: Request, user: User = Depends(rate_limited_user)) -> RequestContext:
	return RequestContext(request_id=request.state.request_id, user_id=user.username)
