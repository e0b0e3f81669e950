from __future__ import annotations
from datetime import datetime
from sqlalchemy import BigInteger, Boolean, Column, String, DateTime, Integer, Text, Index, text
from .db import Base

OPEN_STATUS_SQL = "status IN ('created', 'active', 'paused')"


class AuthUser(Base):
	__tablename__ = "auth_users"
	# Primary key is username
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	email = Column(String(256), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	# jti of the issued token; deleting the row revokes the token
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ParentLink(Base):
	__tablename__ = "parent_links"
	parent_username = Column(String(128), primary_key=True)
	child_username = Column(String(128), primary_key=True)
	consent_granted = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


# ---- catalog (read by the engine, written only by seeding) ----

class CatalogConcept(Base):
	__tablename__ = "concepts"
	id = Column(String(64), primary_key=True)
	curriculum_id = Column(String(64), nullable=False, index=True)
	topic_id = Column(String(64), nullable=False, index=True)
	name = Column(String(256), nullable=False, default="")
	min_difficulty = Column(Integer, default=1, nullable=False)
	max_difficulty = Column(Integer, default=3, nullable=False)


class CatalogQuestion(Base):
	__tablename__ = "questions"
	id = Column(String(64), primary_key=True)
	curriculum_id = Column(String(64), nullable=False, index=True)
	topic_id = Column(String(64), nullable=False)
	concept_id = Column(String(64), nullable=False, index=True)
	difficulty = Column(Integer, nullable=False)
	question_type = Column(String(32), nullable=False)
	text = Column(Text, nullable=False)
	options_json = Column(Text, nullable=True)
	correct_answer_json = Column(Text, nullable=False)
	explanation = Column(Text, nullable=True)
	cognitive_level = Column(String(32), nullable=True)


# ---- sessions ----

class QuizSessionRow(Base):
	__tablename__ = "quiz_sessions"
	__table_args__ = (
		# At most one open session per user, enforced by the database as well
		Index(
			"uq_quiz_sessions_open_user",
			"user_id",
			unique=True,
			sqlite_where=text(OPEN_STATUS_SQL),
			postgresql_where=text(OPEN_STATUS_SQL),
		),
	)
	id = Column(String(64), primary_key=True)
	user_id = Column(String(128), nullable=False, index=True)
	curriculum_id = Column(String(64), nullable=False)
	topic_id = Column(String(64), nullable=False)
	concept_ids_json = Column(Text, nullable=False, default="[]")
	max_questions = Column(Integer, nullable=True)
	strategy = Column(String(16), nullable=False, default="adaptive")
	time_mode = Column(String(16), nullable=False)
	status = Column(String(16), nullable=False, index=True)
	cursor = Column(Integer, default=0, nullable=False)
	started_at_ms = Column(BigInteger, nullable=True)
	paused_at_ms = Column(BigInteger, nullable=True)
	paused_duration_ms = Column(BigInteger, default=0, nullable=False)
	active_duration_ms = Column(BigInteger, default=0, nullable=False)
	ended_at_ms = Column(BigInteger, nullable=True)
	xp_earned = Column(Integer, default=0, nullable=False)
	questions_answered = Column(Integer, default=0, nullable=False)
	questions_correct = Column(Integer, default=0, nullable=False)
	questions_skipped = Column(Integer, default=0, nullable=False)
	questions_timed_out = Column(Integer, default=0, nullable=False)
	created_at_ms = Column(BigInteger, nullable=False)
	updated_at_ms = Column(BigInteger, nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class SessionSlotRow(Base):
	__tablename__ = "session_slots"
	session_id = Column(String(64), primary_key=True)
	slot_index = Column(Integer, primary_key=True)
	question_id = Column(String(64), nullable=False)
	concept_id = Column(String(64), nullable=False)
	topic_id = Column(String(64), nullable=False)
	difficulty = Column(Integer, nullable=False)
	served_at_ms = Column(BigInteger, nullable=False)
	served_active_ms = Column(BigInteger, default=0, nullable=False)


class SessionAnswerRow(Base):
	__tablename__ = "session_answers"
	# One row per slot: the composite key is what makes a slot answerable only once
	session_id = Column(String(64), primary_key=True)
	slot_index = Column(Integer, primary_key=True)
	outcome = Column(String(16), nullable=False)
	response_json = Column(Text, nullable=True)
	time_to_answer_ms = Column(BigInteger, default=0, nullable=False)
	xp_awarded = Column(Integer, default=0, nullable=False)
	band_before = Column(String(16), nullable=False)
	band_after = Column(String(16), nullable=False)
	answered_at_ms = Column(BigInteger, nullable=False)


# ---- progress aggregates ----

class ConceptProgressRow(Base):
	__tablename__ = "concept_progress"
	user_id = Column(String(128), primary_key=True)
	concept_id = Column(String(64), primary_key=True)
	topic_id = Column(String(64), nullable=False, index=True)
	attempts = Column(Integer, default=0, nullable=False)
	correct = Column(Integer, default=0, nullable=False)
	streak = Column(Integer, default=0, nullable=False)
	longest_streak = Column(Integer, default=0, nullable=False)
	xp = Column(Integer, default=0, nullable=False)
	time_spent_ms = Column(BigInteger, default=0, nullable=False)
	last_attempted_at_ms = Column(BigInteger, nullable=True)
	recent_outcomes = Column(String(32), default="", nullable=False)
	band = Column(String(16), default="novice", nullable=False)
	difficulty_level = Column(Integer, default=1, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class TopicProgressRow(Base):
	__tablename__ = "topic_progress"
	user_id = Column(String(128), primary_key=True)
	topic_id = Column(String(64), primary_key=True)
	attempts = Column(Integer, default=0, nullable=False)
	correct = Column(Integer, default=0, nullable=False)
	streak = Column(Integer, default=0, nullable=False)
	longest_streak = Column(Integer, default=0, nullable=False)
	xp = Column(Integer, default=0, nullable=False)
	time_spent_ms = Column(BigInteger, default=0, nullable=False)
	last_attempted_at_ms = Column(BigInteger, nullable=True)
	recent_outcomes = Column(String(32), default="", nullable=False)
	band = Column(String(16), default="novice", nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
