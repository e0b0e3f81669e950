"""
Shared pytest fixtures for the quiz engine tests.

Everything runs against an in-memory SQLite database seeded with a small catalog and a
fake clock the tests move forward by hand.
"""
import random

import pytest

from quizengine.catalog import load_catalog
from quizengine.core.selector import QuestionSelector
from quizengine.core.state_machine import SessionStateMachine
from quizengine.core.types import RequestContext, ScopeSpec
from quizengine.db import Database
from quizengine.store_sql import SqlQuestionBank, SqlSessionStore

CURRICULUM = "ks3-maths"


def _mcq(qid, difficulty, text, answer="b"):
	return {
		"id": qid,
		"difficulty": difficulty,
		"question_type": "mcq",
		"text": text,
		"options": [{"id": "a", "text": "one"}, {"id": "b", "text": "two"}, {"id": "c", "text": "three"}],
		"correct_answer": answer,
		"explanation": "Worked solution for " + qid,
	}


CATALOG = {
	"curriculum_id": CURRICULUM,
	"topics": [
		{
			"id": "fractions",
			"concepts": [
				{
					"id": "frac-add",
					"name": "Adding fractions",
					"min_difficulty": 1,
					"max_difficulty": 3,
					"questions": (
						[_mcq(f"fa-1-{i}", 1, f"Add fractions, warm-up {i}") for i in range(1, 6)]
						+ [_mcq(f"fa-2-{i}", 2, f"Add fractions, applied {i}") for i in range(1, 4)]
						+ [_mcq(f"fa-3-{i}", "exam_style", f"Add fractions, exam {i}") for i in range(1, 3)]
					),
				},
				{
					"id": "frac-mul",
					"name": "Multiplying fractions",
					"questions": [
						{
							"id": "fm-1-1",
							"difficulty": 1,
							"question_type": "true_false",
							"text": "1/2 x 1/2 = 1/4",
							"correct_answer": "true",
						},
						{
							"id": "fm-1-2",
							"difficulty": 1,
							"question_type": "fill_blank",
							"text": "1/3 x 3 = ___",
							"correct_answer": ["1", "one"],
						},
						{
							"id": "fm-2-1",
							"difficulty": "application",
							"question_type": "ordering",
							"text": "Order from smallest",
							"options": [{"id": "x", "text": "1/2"}, {"id": "y", "text": "1/4"}, {"id": "z", "text": "1/8"}],
							"correct_answer": ["z", "y", "x"],
						},
					],
				},
			],
		},
		{
			"id": "algebra",
			"concepts": [
				{
					"id": "alg-solve",
					"name": "Solving linear equations",
					"max_difficulty": 1,
					"questions": [_mcq(f"al-1-{i}", 1, f"Solve for x, {i}", answer="c") for i in range(1, 4)],
				},
			],
		},
	],
}


class FakeClock:
	def __init__(self, start_ms=1_700_000_000_000):
		self.now = start_ms

	def now_ms(self):
		return self.now

	def advance(self, ms=0, *, seconds=0, minutes=0):
		self.now += ms + seconds * 1000 + minutes * 60 * 1000


def seed(db):
	db.create_all()
	load_catalog(db, CATALOG)


def correct_response(bank, question_id):
	q = bank.get_question(question_id)
	if q.question_type == "fill_blank" and isinstance(q.correct_answer, list):
		return q.correct_answer[0]
	return q.correct_answer


def wrong_response(bank, question_id):
	q = bank.get_question(question_id)
	if q.question_type == "mcq":
		return "a" if q.correct_answer != "a" else "b"
	if q.question_type == "true_false":
		return "false" if str(q.correct_answer).lower() in ("true", "a") else "true"
	return "definitely wrong"


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def db():
	database = Database("sqlite://")
	seed(database)
	yield database
	database.dispose()


@pytest.fixture
def bank(db):
	b = SqlQuestionBank(db)
	b.refresh()
	return b


@pytest.fixture
def store(db, clock):
	return SqlSessionStore(db, clock)


@pytest.fixture
def quiz(store, bank, clock):
	return SessionStateMachine(store, bank, clock, QuestionSelector(random.Random(7)))


@pytest.fixture
def ctx():
	return RequestContext.new("alice")


@pytest.fixture
def add_scope():
	"""One concept, difficulty 1-3."""
	return ScopeSpec(curriculum_id=CURRICULUM, topic_id="fractions", concept_ids=("frac-add",))


@pytest.fixture
def fractions_scope():
	return ScopeSpec(curriculum_id=CURRICULUM, topic_id="fractions")
