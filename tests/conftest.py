from __future__ import annotations

from typing import Any

import pytest

from quiz_core.question_bank import QuestionPool
from quiz_core.types import Level, Question, QuestionType, SessionHandle


def build_synthetic_pool(
    *,
    grade: int = 12,
    topics: list[str] | None = None,
    per_level: int = 4,
    levels: tuple[Level, ...] = tuple(Level),
) -> QuestionPool:
    """Create a deterministic multiple-choice pool for tests and smoke runs."""

    pool = QuestionPool()
    for topic in topics or ["Hàm số", "Logarit"]:
        for lvl in levels:
            for idx in range(per_level):
                pool.add(
                    Question(
                        id=f"{topic}_{lvl.name}_{idx}",
                        type=QuestionType.MULTIPLE_CHOICE,
                        grade=grade,
                        topic=topic,
                        level=lvl,
                        text=f"{topic} {lvl.value} #{idx}",
                        options=("1", "2", "3", "4"),
                        answer_key="A",
                    )
                )
    return pool


def mc(qid: str, key: str = "A") -> Question:
    return Question(id=qid, type=QuestionType.MULTIPLE_CHOICE, grade=12, topic="T",
                    level=Level.RECALL, options=("a", "b", "c", "d"), answer_key=key)


def tf(qid: str, key: str = "Đ-S-Đ-Đ") -> Question:
    return Question(id=qid, type=QuestionType.TRUE_FALSE, grade=12, topic="T",
                    level=Level.COMPREHENSION, options=("a", "b", "c", "d"), answer_key=key)


def short(qid: str, key: str = "15.5") -> Question:
    return Question(id=qid, type=QuestionType.SHORT_ANSWER, grade=12, topic="T",
                    level=Level.APPLICATION, answer_key=key)


class FakeBackend:
    """Records collaborator calls; heartbeat answers are queued per test."""

    def __init__(self, heartbeats: list[dict[str, Any]] | None = None, submit_result: Any = None,
                 submit_error: Exception | None = None):
        self.heartbeats = list(heartbeats or [])
        self.submit_result = submit_result
        self.submit_error = submit_error
        self.heartbeat_calls = 0
        self.violations: list[tuple] = []
        self.submissions: list[dict[str, Any]] = []
        self.published: list[tuple[str, int, list[Question]]] = []

    async def heartbeat(self, session):
        self.heartbeat_calls += 1
        if self.heartbeats:
            return self.heartbeats.pop(0)
        return {"valid": True}

    async def report_violation(self, user_id, violation_type, details, quiz_info):
        self.violations.append((user_id, violation_type, details, quiz_info))
        return True

    async def submit_quiz(self, payload):
        self.submissions.append(payload)
        if self.submit_error is not None:
            raise self.submit_error
        return self.submit_result

    async def create_instant_exam(self, title, grade, questions):
        self.published.append((title, grade, list(questions)))
        if title.endswith("reject"):
            return None
        return f"E_{len(self.published)}"


@pytest.fixture
def synthetic_pool() -> QuestionPool:
    return build_synthetic_pool()


@pytest.fixture
def student() -> SessionHandle:
    return SessionHandle(user_id="hs1@school.edu.vn", token="tok-1", device_id="device_a")


@pytest.fixture
def teacher() -> SessionHandle:
    return SessionHandle(user_id="gv@school.edu.vn", token="tok-t", device_id="device_t", role="teacher")


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()
