from __future__ import annotations
import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class Database:
	"""Explicitly constructed storage handle; the app builds one and injects it where needed."""

	def __init__(self, url: str, *, echo: bool = False) -> None:
		self.url = url
		connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
		kwargs = {}
		if url in ("sqlite://", "sqlite:///:memory:"):
			# One shared connection, otherwise every checkout sees an empty database
			kwargs["poolclass"] = StaticPool
		elif not url.startswith("sqlite"):
			kwargs["pool_pre_ping"] = True
		self.engine: Engine = create_engine(url, connect_args=connect_args, echo=echo, future=True, **kwargs)
		self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine, future=True)

	def session(self) -> Session:
		return self.SessionLocal()

	def create_all(self) -> None:
		# models must be imported so their tables are registered on Base
		from . import models  # noqa: F401
		Base.metadata.create_all(bind=self.engine)
		ensure_schema(self.engine)

	def dispose(self) -> None:
		self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
	db = request.app.state.db.session()
	try:
		yield db
	finally:
		db.close()


# Best-effort lightweight migrations for development (SQLite-friendly)
def ensure_schema(engine: Engine) -> None:
	try:
		inspector = inspect(engine)
		tables = set(inspector.get_table_names())
	except Exception:
		logger.warning("could not inspect database schema", exc_info=True)
		return
	if "quiz_sessions" in tables:
		cols = {c["name"] for c in inspector.get_columns("quiz_sessions")}
		with engine.begin() as conn:
			if "questions_timed_out" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN questions_timed_out INTEGER DEFAULT 0 NOT NULL")
			if "max_questions" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN max_questions INTEGER")
			if "strategy" not in cols:
				conn.exec_driver_sql("ALTER TABLE quiz_sessions ADD COLUMN strategy VARCHAR(16) DEFAULT 'adaptive' NOT NULL")
	if "questions" in tables:
		cols = {c["name"] for c in inspector.get_columns("questions")}
		if "cognitive_level" not in cols:
			with engine.begin() as conn:
				conn.exec_driver_sql("ALTER TABLE questions ADD COLUMN cognitive_level VARCHAR(32)")
	if "concept_progress" in tables:
		cols = {c["name"] for c in inspector.get_columns("concept_progress")}
		with engine.begin() as conn:
			if "difficulty_level" not in cols:
				conn.exec_driver_sql("ALTER TABLE concept_progress ADD COLUMN difficulty_level INTEGER DEFAULT 1 NOT NULL")
