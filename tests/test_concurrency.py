"""
Racing requests against a file-backed SQLite database, one connection per thread.
"""
import random
import threading

import pytest

from conftest import CURRICULUM, FakeClock, correct_response, seed
from quizengine.core.errors import EngineError, ErrorKind
from quizengine.core.selector import QuestionSelector
from quizengine.core.state_machine import SessionStateMachine
from quizengine.core.types import QuizSession, RequestContext, ScopeSpec, TimeMode
from quizengine.db import Database
from quizengine.store_sql import SqlQuestionBank, SqlSessionStore

pytestmark = pytest.mark.integration

SCOPE = ScopeSpec(CURRICULUM, "fractions", concept_ids=("frac-add",))


@pytest.fixture
def file_quiz(tmp_path):
	database = Database(f"sqlite:///{tmp_path / 'quiz.db'}")
	seed(database)
	bank = SqlQuestionBank(database)
	bank.refresh()
	clock = FakeClock()
	quiz = SessionStateMachine(SqlSessionStore(database, clock), bank, clock, QuestionSelector(random.Random(3)))
	yield quiz
	database.dispose()


def _race(n, fn):
	barrier = threading.Barrier(n)
	results, failures = [], []

	def worker():
		barrier.wait()
		try:
			results.append(fn())
		except EngineError as e:
			failures.append(e)

	threads = [threading.Thread(target=worker) for _ in range(n)]
	for t in threads:
		t.start()
	for t in threads:
		t.join(10)
	return results, failures


def test_double_submit_records_one_answer(file_quiz):
	ctx = RequestContext.new("alice")
	session = file_quiz.create(ctx, "alice", SCOPE, TimeMode.UNLIMITED)
	view = file_quiz.start(ctx, session.id)
	response = correct_response(file_quiz.bank, view.slot.question_id)

	results, failures = _race(2, lambda: file_quiz.submit_answer(ctx, session.id, 0, response))

	assert len(results) == 1
	assert [e.kind for e in failures] == [ErrorKind.STALE_SLOT]
	stored = file_quiz.get_session(ctx, session.id)
	assert stored.questions_answered == 1
	assert stored.cursor == 1
	concepts, _ = file_quiz.progress(ctx, "alice")
	assert concepts[0].attempts == 1


def test_parallel_creates_leave_one_open_session(file_quiz):
	ctx = RequestContext.new("alice")
	results, failures = _race(5, lambda: file_quiz.create(ctx, "alice", SCOPE, TimeMode.UNLIMITED))

	assert len(results) == 1
	assert {e.kind for e in failures} == {ErrorKind.CONCURRENT_SESSION}
	_, total = file_quiz.list_sessions(ctx, "alice")
	assert total == 1


def test_database_rejects_second_open_session_without_locks(file_quiz):
	store = file_quiz.store
	first = QuizSession(id="raw-1", user_id="bob", scope=SCOPE, time_mode=TimeMode.UNLIMITED)
	second = QuizSession(id="raw-2", user_id="bob", scope=SCOPE, time_mode=TimeMode.UNLIMITED)
	with store.transaction() as txn:
		txn.insert_session(first)
	with pytest.raises(EngineError) as excinfo:
		with store.transaction() as txn:
			txn.insert_session(second)
	assert excinfo.value.kind is ErrorKind.CONCURRENT_SESSION
