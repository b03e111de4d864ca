# quiz_core/composer.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union
import logging, random, uuid

from .config import BATCH_LABEL_BASE, COMPOSER_STRICT
from .errors import CapacityError, PoolShrinkageError
from .question_bank import QuestionPool
from .types import ExamStructureRequirement, Level, Question, QuestionSet


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Batch:
    count: int


@dataclass(frozen=True)
class Personalized:
    recipients: Tuple[str, ...]

    def __init__(self, recipients: Sequence[str]):
        object.__setattr__(self, "recipients", tuple(recipients))


GenerationMode = Union[Batch, Personalized]


@dataclass(frozen=True)
class Shortfall:
    requirement_id: str
    topic: str
    level: Level
    requested: int
    delivered: int


@dataclass
class ExamVariant:
    label: str
    questions: QuestionSet
    expected: int
    shortfalls: List[Shortfall] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.shortfalls and len(self.questions) == self.expected


class ExamPublisher(Protocol):
    async def create_instant_exam(self, title: str, grade: int, questions: Sequence[Question]) -> Optional[str]: ...


def batch_label(index: int) -> str:
    return f"Đề {BATCH_LABEL_BASE + index}"


def personalized_label(recipient: str) -> str:
    return f"Đề của: {recipient}"


class ExamComposer:
    """Builds exam variants from a (grade, topic × level × count) structure."""

    def __init__(self, pool: QuestionPool, grade: int, rng: Optional[random.Random] = None):
        self.pool = pool
        self.grade = int(grade)
        self.rng = rng or random.Random()
        self._structure: List[ExamStructureRequirement] = []

    @property
    def requirements(self) -> List[ExamStructureRequirement]:
        return list(self._structure)

    @property
    def total_questions(self) -> int:
        return sum(req.count for req in self._structure)

    def set_grade(self, grade: int) -> None:
        # a structure is only meaningful for the grade it was validated against
        self.grade = int(grade)
        self._structure.clear()

    def available(self, topic: str, level: Level | str) -> int:
        return self.pool.count(self.grade, topic, level)

    def _reserved(self, topic: str, level: Level) -> int:
        return sum(r.count for r in self._structure if r.topic == topic and r.level is level)

    def add_requirement(self, topic: str, level: Level | str, count: int) -> int:
        topic = (topic or "").strip()
        if not topic:
            raise CapacityError("topic is required")
        try:
            count = int(count)
        except (TypeError, ValueError):
            raise CapacityError(f"count must be an integer, got {count!r}") from None
        if count <= 0:
            raise CapacityError("count must be greater than 0")
        try:
            lvl = Level.parse(level)
        except ValueError as e:
            raise CapacityError(str(e)) from None

        available = self.available(topic, lvl)
        if available == 0:
            raise CapacityError(f"no questions in the bank for grade {self.grade}, {topic} / {lvl.value}")
        remaining = available - self._reserved(topic, lvl)
        if count > remaining:
            raise CapacityError(f"only {max(remaining, 0)} questions available for {topic} / {lvl.value}")

        self._structure.append(
            ExamStructureRequirement(id=uuid.uuid4().hex[:12], topic=topic, level=lvl, count=count)
        )
        log.info("structure += %s/%s x%d (total %d)", topic, lvl.value, count, self.total_questions)
        return self.total_questions

    def remove_requirement(self, req_id: str) -> bool:
        before = len(self._structure)
        self._structure = [r for r in self._structure if r.id != req_id]
        return len(self._structure) != before

    def _master_pool(self) -> Dict[Tuple[str, Level], List[Question]]:
        snapshot = self.pool.snapshot()
        master: Dict[Tuple[str, Level], List[Question]] = {}
        for req in self._structure:
            key = (req.topic, req.level)
            if key not in master:
                master[key] = [
                    q for q in snapshot
                    if q.grade == self.grade and q.topic == req.topic and q.level is req.level
                ]
        return master

    def _draw_variant(self, label: str, master: Dict[Tuple[str, Level], List[Question]]) -> ExamVariant:
        drawn: List[Question] = []
        used: set[str] = set()
        shortfalls: List[Shortfall] = []
        for req in self._structure:
            candidates = [q for q in master.get((req.topic, req.level), []) if q.id not in used]
            take = min(req.count, len(candidates))
            picked = self.rng.sample(candidates, take)
            if take < req.count:
                shortfalls.append(Shortfall(req.id, req.topic, req.level, req.count, take))
            drawn.extend(picked)
            used.update(q.id for q in picked)
        self.rng.shuffle(drawn)
        return ExamVariant(label=label, questions=drawn, expected=self.total_questions, shortfalls=shortfalls)

    def generate(self, mode: GenerationMode, *, strict: Optional[bool] = None) -> List[ExamVariant]:
        if not self._structure:
            raise CapacityError("exam structure is empty")
        strict = COMPOSER_STRICT if strict is None else strict

        if isinstance(mode, Batch):
            if mode.count <= 0:
                raise ValueError("batch count must be greater than 0")
            labels = [batch_label(i) for i in range(1, mode.count + 1)]
        elif isinstance(mode, Personalized):
            labels = [personalized_label(name) for name in mode.recipients]
        else:
            raise TypeError(f"unsupported generation mode: {mode!r}")

        master = self._master_pool()
        variants: List[ExamVariant] = []
        for label in labels:
            variant = self._draw_variant(label, master)
            if variant.shortfalls:
                if strict:
                    raise PoolShrinkageError(variant.shortfalls)
                log.warning(
                    "%s is short (%d/%d questions)", label, len(variant.questions), variant.expected
                )
            variants.append(variant)
        return variants


async def publish_variants(
    variants: Sequence[ExamVariant], publisher: ExamPublisher, grade: int
) -> List[Optional[str]]:
    """Hand each variant to the publisher; one exam id (or None when rejected) per variant, in order."""

    exam_ids: List[Optional[str]] = []
    for variant in variants:
        exam_id = await publisher.create_instant_exam(variant.label, grade, variant.questions)
        if not exam_id:
            log.warning("publisher rejected %s", variant.label)
        exam_ids.append(exam_id or None)
    return exam_ids


__all__ = [
    "Batch",
    "Personalized",
    "Shortfall",
    "ExamVariant",
    "ExamComposer",
    "batch_label",
    "personalized_label",
    "publish_variants",
]
