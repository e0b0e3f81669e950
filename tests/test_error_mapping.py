import pytest

from quizengine.core import errors
from quizengine.core.errors import EngineError, ErrorKind
from quizengine.error_handlers import STATUS_BY_KIND, status_for

pytestmark = pytest.mark.unit


def test_every_kind_has_a_status():
	assert set(STATUS_BY_KIND) == set(ErrorKind)


@pytest.mark.parametrize("kind,status", [
	(ErrorKind.CONCURRENT_SESSION, 409),
	(ErrorKind.INVALID_STATE_TRANSITION, 409),
	(ErrorKind.STALE_SLOT, 409),
	(ErrorKind.SESSION_NOT_FOUND, 404),
	(ErrorKind.SCOPE_EXHAUSTED, 409),
	(ErrorKind.VALIDATION, 422),
	(ErrorKind.STORAGE, 503),
])
def test_status_table(kind, status):
	assert status_for(kind) == status


def test_only_storage_is_retryable():
	retryable = {k for k in ErrorKind if EngineError(k, "x").retryable}
	assert retryable == {ErrorKind.STORAGE}


def test_factories_tag_their_kind():
	assert errors.concurrent_session("u", "s").kind is ErrorKind.CONCURRENT_SESSION
	assert errors.invalid_transition("pause", "paused").details == {"operation": "pause", "status": "paused"}
	assert errors.stale_slot(1, 2).details == {"slot_index": 1, "cursor": 2}
	assert errors.not_found("s").kind is ErrorKind.SESSION_NOT_FOUND
	assert errors.scope_exhausted("s").kind is ErrorKind.SCOPE_EXHAUSTED
	assert errors.validation("bad", field="x").details == {"field": "x"}
	assert errors.storage("down").retryable
