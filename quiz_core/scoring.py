from __future__ import annotations
import math
from typing import List, Optional, Sequence, Tuple
from .answers import AnswerValue, to_wire
from .types import Question, QuestionType

def _score_choice(key: str, given: str) -> bool:
    return given == key

def _score_true_false(key: str, given: str) -> bool:
    # whole statement group or nothing
    return given == key

def _score_short(key: str, given: str) -> bool:
    return given.strip().lower() == key.strip().lower()

def grade_answer(question: Question, answer: Optional[AnswerValue]) -> bool:
    """
    True when ``answer`` earns the point for ``question``.
    Unset answers never do; comparison happens on the wire strings.
    """
    if answer is None:
        return False
    given = to_wire(answer)
    key = question.answer_key or ""
    if question.type is QuestionType.MULTIPLE_CHOICE:
        return _score_choice(key, given)
    if question.type is QuestionType.TRUE_FALSE:
        return _score_true_false(key, given)
    if question.type is QuestionType.SHORT_ANSWER:
        return _score_short(key, given)
    return False

def grade_attempt(
    questions: Sequence[Question], answers: Sequence[Optional[AnswerValue]]
) -> Tuple[int, List[bool]]:
    if len(questions) != len(answers):
        raise ValueError(f"{len(answers)} answers for {len(questions)} questions")
    correctness = [grade_answer(q, a) for q, a in zip(questions, answers)]
    return sum(correctness), correctness

def percentage(score: int, total: int) -> int:
    if total <= 0:
        return 0
    # half-up, matching the server's rounding
    return int(math.floor(100.0 * score / total + 0.5))
