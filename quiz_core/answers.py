"""Typed answer values and their wire strings.

Internally an answer is one of three small dataclasses keyed by question
type; ``None`` marks an unset slot. The wire strings (single letter,
four dash-joined marks, free text) only appear at the serialization
boundary: ``parse_answer`` on the way in, ``to_wire`` on the way out.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .types import OPTION_LETTERS, QuestionType

MARK_TRUE = "Đ"
MARK_FALSE = "S"
MARK_UNSET = "N"
MARKS: Tuple[str, ...] = (MARK_TRUE, MARK_FALSE, MARK_UNSET)
TF_PARTS = 4
UNSET_WIRE = ""


@dataclass(frozen=True)
class ChoiceAnswer:
    letter: str


@dataclass(frozen=True)
class TrueFalseAnswer:
    marks: Tuple[str, str, str, str]

    @classmethod
    def blank(cls) -> "TrueFalseAnswer":
        return cls((MARK_UNSET,) * TF_PARTS)


@dataclass(frozen=True)
class TextAnswer:
    text: str


AnswerValue = Union[ChoiceAnswer, TrueFalseAnswer, TextAnswer]


def _parse_choice(raw: str) -> ChoiceAnswer:
    if raw not in OPTION_LETTERS:
        raise ValueError(f"multiple-choice answer must be one of {'/'.join(OPTION_LETTERS)}, got {raw!r}")
    return ChoiceAnswer(raw)


def _parse_true_false(raw: str) -> TrueFalseAnswer:
    parts = raw.split("-")
    if len(parts) != TF_PARTS or any(p not in MARKS for p in parts):
        raise ValueError(f"true/false answer must be {TF_PARTS} dash-joined marks from {MARKS}, got {raw!r}")
    return TrueFalseAnswer(tuple(parts))  # type: ignore[arg-type]


def parse_answer(qtype: QuestionType, raw: Optional[str]) -> Optional[AnswerValue]:
    """Validate a wire string for ``qtype``; empty/None means unset."""
    if raw is None or raw == UNSET_WIRE:
        return None
    if qtype is QuestionType.MULTIPLE_CHOICE:
        return _parse_choice(raw)
    if qtype is QuestionType.TRUE_FALSE:
        return _parse_true_false(raw)
    return TextAnswer(raw)


def to_wire(answer: Optional[AnswerValue]) -> str:
    if answer is None:
        return UNSET_WIRE
    if isinstance(answer, ChoiceAnswer):
        return answer.letter
    if isinstance(answer, TrueFalseAnswer):
        return "-".join(answer.marks)
    return answer.text


def merge_true_false(existing: Optional[AnswerValue], subpart: str, mark: str) -> TrueFalseAnswer:
    """Set one statement (A-D) of a true/false answer, keeping the other three."""
    try:
        pos = OPTION_LETTERS.index(subpart)
    except ValueError:
        raise ValueError(f"true/false subpart must be one of {'/'.join(OPTION_LETTERS)}, got {subpart!r}") from None
    if mark not in MARKS:
        raise ValueError(f"true/false mark must be one of {MARKS}, got {mark!r}")
    base = existing if isinstance(existing, TrueFalseAnswer) else TrueFalseAnswer.blank()
    marks = list(base.marks)
    marks[pos] = mark
    return TrueFalseAnswer(tuple(marks))  # type: ignore[arg-type]


def matches_type(qtype: QuestionType, answer: Optional[AnswerValue]) -> bool:
    if answer is None:
        return True
    expected = {
        QuestionType.MULTIPLE_CHOICE: ChoiceAnswer,
        QuestionType.TRUE_FALSE: TrueFalseAnswer,
        QuestionType.SHORT_ANSWER: TextAnswer,
    }[qtype]
    return isinstance(answer, expected)


__all__ = [
    "MARK_TRUE",
    "MARK_FALSE",
    "MARK_UNSET",
    "UNSET_WIRE",
    "ChoiceAnswer",
    "TrueFalseAnswer",
    "TextAnswer",
    "AnswerValue",
    "parse_answer",
    "to_wire",
    "merge_true_false",
    "matches_type",
]
