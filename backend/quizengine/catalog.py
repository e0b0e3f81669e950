"""Catalog seeding.

The engine only reads the catalog; this module fills the concept and question tables from a
JSON document shaped like::

	{"curriculum_id": "ks3-maths",
	 "topics": [{"id": "fractions",
	             "concepts": [{"id": "frac-add", "name": "Adding fractions",
	                           "min_difficulty": 1, "max_difficulty": 3,
	                           "questions": [{"id": "q1", "difficulty": 1, "question_type": "mcq",
	                                          "text": "...", "options": [...],
	                                          "correct_answer": "b", "explanation": "...",
	                                          "cognitive_level": "recall"}]}]}]}

`cognitive_level` is optional; a run of untagged questions never triggers the level-variety rule.
Rows are upserted by id, so seeding the same file twice is harmless.
"""
from __future__ import annotations
import json
import logging
from pathlib import Path
from typing import Any, Dict, Tuple

from .core.types import DIFFICULTY_LABELS, MAX_DIFFICULTY, MIN_DIFFICULTY
from .db import Database
from .models import CatalogConcept, CatalogQuestion

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("mcq", "true_false", "fill_blank", "ordering", "match")

_LEVEL_BY_LABEL = {label: level for level, label in DIFFICULTY_LABELS.items()}


def _difficulty(raw: Any) -> int:
	# Accept either the numeric level or its label ("familiarity", "application", "exam_style")
	if isinstance(raw, str) and raw in _LEVEL_BY_LABEL:
		return _LEVEL_BY_LABEL[raw]
	level = int(raw)
	if level < MIN_DIFFICULTY or level > MAX_DIFFICULTY:
		raise ValueError(f"difficulty {raw!r} out of range")
	return level


def load_catalog(db: Database, data: Dict[str, Any]) -> Tuple[int, int]:
	"""Upsert every concept and question in `data`; returns (concepts, questions) written."""
	curriculum_id = data["curriculum_id"]
	n_concepts = n_questions = 0
	with db.session() as s:
		for topic in data.get("topics", []):
			topic_id = topic["id"]
			for concept in topic.get("concepts", []):
				s.merge(CatalogConcept(
					id=concept["id"],
					curriculum_id=curriculum_id,
					topic_id=topic_id,
					name=concept.get("name", ""),
					min_difficulty=_difficulty(concept.get("min_difficulty", MIN_DIFFICULTY)),
					max_difficulty=_difficulty(concept.get("max_difficulty", MAX_DIFFICULTY)),
				))
				n_concepts += 1
				for q in concept.get("questions", []):
					qtype = q.get("question_type", "mcq")
					if qtype not in QUESTION_TYPES:
						raise ValueError(f"question {q['id']}: unknown question_type {qtype!r}")
					options = q.get("options")
					s.merge(CatalogQuestion(
						id=q["id"],
						curriculum_id=curriculum_id,
						topic_id=topic_id,
						concept_id=concept["id"],
						difficulty=_difficulty(q.get("difficulty", MIN_DIFFICULTY)),
						question_type=qtype,
						text=q["text"],
						options_json=json.dumps(options) if options is not None else None,
						correct_answer_json=json.dumps(q["correct_answer"]),
						explanation=q.get("explanation"),
						cognitive_level=q.get("cognitive_level"),
					))
					n_questions += 1
		s.commit()
	logger.info("seeded catalog %s: %d concepts, %d questions", curriculum_id, n_concepts, n_questions)
	return n_concepts, n_questions


def load_catalog_file(db: Database, path: str | Path) -> Tuple[int, int]:
	with open(path, "r", encoding="utf-8") as f:
		return load_catalog(db, json.load(f))
