from __future__ import annotations
import enum
from typing import Any, Dict, Optional


class ErrorKind(str, enum.Enum):
	CONCURRENT_SESSION = "concurrent_session"
	INVALID_STATE_TRANSITION = "invalid_state_transition"
	STALE_SLOT = "stale_slot"
	SESSION_NOT_FOUND = "session_not_found"
	SCOPE_EXHAUSTED = "scope_exhausted"
	VALIDATION = "validation"
	STORAGE = "storage"


class EngineError(Exception):
	"""Single engine failure type; callers branch on `kind`, never on subclasses."""

	def __init__(self, kind: ErrorKind, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
		super().__init__(message)
		self.kind = kind
		self.message = message
		self.details = details or {}

	@property
	def retryable(self) -> bool:
		return self.kind is ErrorKind.STORAGE

	def __repr__(self) -> str:
		return f"EngineError({self.kind.value}, {self.message!r})"


def concurrent_session(user_id: str, existing_id: Optional[str] = None) -> EngineError:
	return EngineError(
		ErrorKind.CONCURRENT_SESSION,
		"user already has an open session",
		details={"user_id": user_id, "session_id": existing_id},
	)


def invalid_transition(operation: str, status: Any) -> EngineError:
	value = getattr(status, "value", status)
	return EngineError(
		ErrorKind.INVALID_STATE_TRANSITION,
		f"cannot {operation} a session in status {value}",
		details={"operation": operation, "status": value},
	)


def stale_slot(slot_index: int, cursor: int) -> EngineError:
	return EngineError(
		ErrorKind.STALE_SLOT,
		f"slot {slot_index} is not the current slot",
		details={"slot_index": slot_index, "cursor": cursor},
	)


def not_found(session_id: str) -> EngineError:
	return EngineError(ErrorKind.SESSION_NOT_FOUND, "Session not found", details={"session_id": session_id})


def scope_exhausted(session_id: str) -> EngineError:
	return EngineError(ErrorKind.SCOPE_EXHAUSTED, "no eligible question remains", details={"session_id": session_id})


def validation(message: str, **details: Any) -> EngineError:
	return EngineError(ErrorKind.VALIDATION, message, details=details)


def storage(message: str) -> EngineError:
	return EngineError(ErrorKind.STORAGE, message)
