# quiz_core/engine.py
from __future__ import annotations
from dataclasses import replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
import logging, time

from .answers import AnswerValue, matches_type, merge_true_false, parse_answer, to_wire
from .config import ATTEMPT_TIME_LIMIT_SEC, PASS_RATIO, TICK_PERIOD_SEC
from .errors import AttemptStateError, SubmissionFailure
from .scheduler import AttemptScheduler
from .scoring import grade_attempt, percentage
from .types import AttemptContext, Question, QuestionSet, QuestionType, QuizResult, SessionHandle, SubmissionReason


log = logging.getLogger(__name__)


class AttemptState(str, Enum):
    IDLE = "idle"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class ResultSubmitter(Protocol):
    async def submit_quiz(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...


class AttemptEngine:
    """One student's run through a question set.

    ``IDLE -> IN_PROGRESS -> COMPLETED``; the last state is terminal.
    Every finalization trigger (submit button, tab switch, session
    conflict, time budget) goes through ``finish``, which commits the
    result before its first suspension point, so the first caller wins
    and later callers get that same result back.
    """

    def __init__(
        self,
        *,
        session: Optional[SessionHandle] = None,
        submitter: Optional[ResultSubmitter] = None,
        context: Optional[AttemptContext] = None,
        scheduler: Optional[AttemptScheduler] = None,
        clock: Callable[[], float] = time.time,
        tick_period: float = TICK_PERIOD_SEC,
        time_limit: Optional[int] = None,
    ):
        self.session = session
        self.submitter = submitter
        self.context = context or AttemptContext()
        self.scheduler = scheduler
        self.clock = clock
        self.tick_period = tick_period
        self.time_limit = ATTEMPT_TIME_LIMIT_SEC if time_limit is None else int(time_limit)

        self.state = AttemptState.IDLE
        self._questions: Tuple[Question, ...] = ()
        self._answers: List[Optional[AnswerValue]] = []
        self._index = 0
        self.elapsed = 0
        self.tab_switch_count = 0
        self.reason = SubmissionReason.NORMAL
        self.started_at: Optional[float] = None
        self.ended_at: Optional[float] = None
        self.local_result: Optional[QuizResult] = None
        self.server_result: Optional[QuizResult] = None
        self.submission_error: Optional[SubmissionFailure] = None

    # ---- read side ----
    @property
    def is_complete(self) -> bool:
        return self.state is AttemptState.COMPLETED

    @property
    def in_progress(self) -> bool:
        return self.state is AttemptState.IN_PROGRESS

    @property
    def questions(self) -> Tuple[Question, ...]:
        return self._questions

    @property
    def answers(self) -> Tuple[Optional[AnswerValue], ...]:
        return tuple(self._answers)

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_question(self) -> Optional[Question]:
        if not self._questions:
            return None
        return self._questions[self._index]

    @property
    def result(self) -> Optional[QuizResult]:
        return self.server_result or self.local_result

    def wire_answers(self) -> List[str]:
        return [to_wire(a) for a in self._answers]

    # ---- transitions ----
    def start(self, question_set: QuestionSet) -> None:
        if self.state is not AttemptState.IDLE:
            raise AttemptStateError(f"cannot start an attempt that is {self.state.value}")
        questions = tuple(question_set)
        if not questions:
            raise ValueError("question set is empty")
        self._questions = questions
        self._answers = [None] * len(questions)
        self._index = 0
        self.elapsed = 0
        self.tab_switch_count = 0
        self.reason = SubmissionReason.NORMAL
        self.started_at = self.clock()
        self.state = AttemptState.IN_PROGRESS
        if self.scheduler is not None:
            self.scheduler.every(self.tick_period, self._on_tick, name="attempt-tick")
        log.info("attempt started: %d questions (%s)", len(questions), self.context.topic or "untitled")

    def _writable(self, op: str) -> bool:
        if self.state is AttemptState.IDLE:
            raise AttemptStateError(f"{op}: attempt not started")
        if self.state is AttemptState.COMPLETED:
            log.debug("%s ignored: attempt already completed", op)
            return False
        return True

    def _check_index(self, index: int) -> int:
        index = int(index)
        if not 0 <= index < len(self._questions):
            raise IndexError(f"question index {index} out of range 0..{len(self._questions) - 1}")
        return index

    def select_answer(self, index: int, value: "str | AnswerValue | None") -> bool:
        """Store an answer for question ``index``; text is kept verbatim."""
        if not self._writable("select_answer"):
            return False
        index = self._check_index(index)
        q = self._questions[index]
        if isinstance(value, str) or value is None:
            answer = parse_answer(q.type, value)
        else:
            answer = value
        if not matches_type(q.type, answer):
            raise ValueError(f"{type(answer).__name__} does not fit a {q.type.name} question")
        self._answers[index] = answer
        return True

    def update_true_false_part(self, index: int, subpart: str, mark: str) -> bool:
        if not self._writable("update_true_false_part"):
            return False
        index = self._check_index(index)
        q = self._questions[index]
        if q.type is not QuestionType.TRUE_FALSE:
            raise ValueError(f"question {q.id} is not a true/false question")
        self._answers[index] = merge_true_false(self._answers[index], subpart, mark)
        return True

    def next(self) -> int:
        if self._writable("next") and self._index < len(self._questions) - 1:
            self._index += 1
        return self._index

    def previous(self) -> int:
        if self._writable("previous") and self._index > 0:
            self._index -= 1
        return self._index

    def tick(self) -> int:
        if self.state is AttemptState.IN_PROGRESS:
            self.elapsed += 1
        return self.elapsed

    async def _on_tick(self) -> None:
        self.tick()
        if self.time_limit > 0 and self.in_progress and self.elapsed >= self.time_limit:
            log.info("time budget of %ds used up", self.time_limit)
            await self.finish(SubmissionReason.NORMAL)

    def record_tab_switch(self) -> int:
        if self.state is AttemptState.IN_PROGRESS:
            self.tab_switch_count += 1
        return self.tab_switch_count

    # ---- finalization ----
    def _commit(self, reason: SubmissionReason) -> QuizResult:
        # no await in here: check-and-set of the terminal state is one step
        score, correctness = grade_attempt(self._questions, self._answers)
        ended = self.clock()
        total = len(self._questions)
        time_spent = self.elapsed or int(round(ended - (self.started_at or ended)))
        self.ended_at = ended
        self.reason = reason
        self.state = AttemptState.COMPLETED
        self.local_result = QuizResult(
            score=score,
            total=total,
            percentage=percentage(score, total),
            passed=total > 0 and score / total >= PASS_RATIO,
            correctness=tuple(correctness),
            answers=tuple(self.wire_answers()),
            time_spent=time_spent,
            reason=reason,
            started_at=self.started_at or ended,
            ended_at=ended,
        )
        if self.scheduler is not None:
            self.scheduler.cancel_all()
        log.info("attempt completed: %d/%d (%s)", score, total, reason.value)
        return self.local_result

    async def finish(self, reason: SubmissionReason | str = SubmissionReason.NORMAL) -> QuizResult:
        if self.state is AttemptState.COMPLETED:
            return self.result  # type: ignore[return-value]
        if self.state is AttemptState.IDLE:
            raise AttemptStateError("finish: attempt not started")
        local = self._commit(SubmissionReason(reason))
        await self._submit(local)
        return self.result  # type: ignore[return-value]

    def submission_payload(self) -> Dict[str, Any]:
        local = self.local_result
        if local is None:
            raise AttemptStateError("no result to submit")
        violations: List[Dict[str, Any]] = []
        if local.reason is not SubmissionReason.NORMAL:
            violations.append({"type": local.reason.value, "timestamp": int(local.ended_at * 1000)})
        return {
            "email": self.session.user_id if self.session else "guest",
            "sessionToken": self.session.token if self.session else "",
            "topic": self.context.topic,
            "grade": self.context.grade,
            "level": self.context.level,
            "score": local.score,
            "totalQuestions": local.total,
            "answers": [
                {"questionId": q.id, "userAnswer": wire, "correct": ok}
                for q, wire, ok in zip(self._questions, local.answers, local.correctness)
            ],
            "timeSpent": local.time_spent,
            "submissionReason": local.reason.value,
            "violations": violations,
        }

    async def _submit(self, local: QuizResult) -> None:
        if self.submitter is None or self.session is None:
            return
        try:
            data = await self.submitter.submit_quiz(self.submission_payload())
        except Exception as e:
            # completion stands; the student sees the local result
            self.submission_error = SubmissionFailure(str(e) or type(e).__name__)
            log.warning("result submission failed, keeping local result: %s", e)
            return
        if not data:
            self.submission_error = SubmissionFailure("empty response")
            log.warning("result submission returned nothing, keeping local result")
            return
        self.server_result = _merge_server_result(local, data)


def _merge_server_result(local: QuizResult, data: Dict[str, Any]) -> QuizResult:
    pct = data.get("percentage")
    passed = data.get("passed")
    theory = data.get("theory")
    extra = {k: data[k] for k in ("canAdvance", "newLevel") if k in data}
    return replace(
        local,
        percentage=int(pct) if pct is not None else local.percentage,
        passed=bool(passed) if passed is not None else local.passed,
        server_confirmed=True,
        theory=theory if isinstance(theory, dict) else None,
        message=str(data.get("message") or ""),
        extra=extra,
    )


__all__ = ["AttemptState", "AttemptEngine", "ResultSubmitter"]
