from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import TEACHER_ROLES

OPTION_LETTERS: Tuple[str, ...] = ("A", "B", "C", "D")


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "Trắc nghiệm"
    TRUE_FALSE = "Đúng/Sai"
    SHORT_ANSWER = "Trả lời ngắn"


class Level(str, Enum):
    RECALL = "Nhận biết"
    COMPREHENSION = "Thông hiểu"
    APPLICATION = "Vận dụng"
    HIGH_APPLICATION = "Vận dụng cao"

    @classmethod
    def parse(cls, raw: "Level | str") -> "Level":
        """Accept the enum itself, its name, its English word or the bank label."""
        if isinstance(raw, Level):
            return raw
        text = str(raw or "").strip()
        squashed = "".join(ch for ch in text if ch not in " _-").upper()
        for lvl in cls:
            if text == lvl.value or squashed == lvl.name.replace("_", ""):
                return lvl
        raise ValueError(f"unknown level: {raw!r}")


class SubmissionReason(str, Enum):
    NORMAL = "normal"
    CHEAT_TAB = "cheat_tab"
    CHEAT_CONFLICT = "cheat_conflict"


@dataclass(frozen=True)
class Question:
    id: str; type: QuestionType; grade: int; topic: str; level: Level
    text: str = ""
    options: Tuple[str, ...] = ()
    answer_key: str = ""
    solution: str = ""

    @classmethod
    def from_record(cls, rec: Dict[str, Any]) -> "Question":
        """Build from a bank row (exam_id, question_type, option_A..option_D, ...)."""
        options = tuple(str(rec.get(f"option_{ch}") or "") for ch in OPTION_LETTERS)
        while options and not options[-1]:
            options = options[:-1]
        return cls(
            id=str(rec["exam_id"]),
            type=QuestionType(str(rec["question_type"]).strip()),
            grade=int(rec["grade"]),
            topic=str(rec.get("topic") or "").strip(),
            level=Level.parse(rec.get("level")),
            text=str(rec.get("question_text") or ""),
            options=options,
            answer_key=str(rec.get("answer_key") or ""),
            solution=str(rec.get("solution") or ""),
        )

    def to_record(self) -> Dict[str, Any]:
        rec: Dict[str, Any] = {
            "exam_id": self.id,
            "question_type": self.type.value,
            "grade": self.grade,
            "topic": self.topic,
            "level": self.level.value,
            "question_text": self.text,
            "answer_key": self.answer_key,
            "solution": self.solution,
        }
        for idx, ch in enumerate(OPTION_LETTERS):
            rec[f"option_{ch}"] = self.options[idx] if idx < len(self.options) else ""
        return rec


QuestionSet = List[Question]


@dataclass(frozen=True)
class ExamStructureRequirement:
    id: str; topic: str; level: Level; count: int


@dataclass(frozen=True)
class SessionHandle:
    user_id: str; token: str; device_id: str
    role: str = "student"

    @property
    def is_teacher(self) -> bool:
        return (self.role or "").lower() in TEACHER_ROLES


@dataclass(frozen=True)
class AttemptContext:
    topic: str = ""
    grade: int = 0
    level: int = 1
    exam_id: str = ""


@dataclass(frozen=True)
class QuizResult:
    score: int
    total: int
    percentage: int
    passed: bool
    correctness: Tuple[bool, ...]
    answers: Tuple[str, ...]
    time_spent: int
    reason: SubmissionReason
    started_at: float
    ended_at: float
    server_confirmed: bool = False
    theory: Optional[Dict[str, Any]] = None
    message: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "totalQuestions": self.total,
            "percentage": self.percentage,
            "passed": self.passed,
            "correctness": list(self.correctness),
            "answers": list(self.answers),
            "timeSpent": self.time_spent,
            "submissionReason": self.reason.value,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "serverConfirmed": self.server_confirmed,
            "theory": self.theory,
            "message": self.message,
            **self.extra,
        }
