from __future__ import annotations
import json, logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple
from .types import Level, Question

log = logging.getLogger(__name__)

LEVELS: Tuple[Level, ...] = tuple(Level)


class QuestionPool:
    """In-memory question bank, queryable by grade / topic / level."""

    def __init__(self, questions: Iterable[Question] = ()):
        self._items: Dict[str, Question] = {}
        for q in questions:
            self.add(q)

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "QuestionPool":
        pool = cls()
        for rec in records:
            try:
                pool.add(Question.from_record(rec))
            except (KeyError, TypeError, ValueError) as e:
                log.warning("skipping bank record %r: %s", (rec or {}).get("exam_id"), e)
        return pool

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._items

    def get(self, question_id: str) -> Optional[Question]:
        return self._items.get(question_id)

    def add(self, question: Question) -> None:
        self._items[question.id] = question

    def remove(self, question_id: str) -> bool:
        return self._items.pop(question_id, None) is not None

    def snapshot(self) -> Tuple[Question, ...]:
        return tuple(self._items.values())

    def query(
        self,
        grade: Optional[int] = None,
        topic: Optional[str] = None,
        level: Optional[Level | str] = None,
    ) -> List[Question]:
        lvl = Level.parse(level) if level is not None else None
        return [
            q for q in self._items.values()
            if (grade is None or q.grade == int(grade))
            and (topic is None or q.topic == topic)
            and (lvl is None or q.level is lvl)
        ]

    def count(self, grade: Optional[int] = None, topic: Optional[str] = None, level: Optional[Level | str] = None) -> int:
        return len(self.query(grade, topic, level))

    def topics(self, grade: Optional[int] = None) -> List[str]:
        seen: Dict[str, None] = {}
        for q in self.query(grade=grade):
            if q.topic:
                seen.setdefault(q.topic, None)
        return list(seen)


def load_records() -> List[Dict[str, Any]]:
    data = (Path(__file__).with_name("data") / "bank.json").read_text(encoding="utf-8")
    return json.loads(data)


def load_bank() -> QuestionPool:
    return QuestionPool.from_records(load_records())
