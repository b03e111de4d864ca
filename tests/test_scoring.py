from __future__ import annotations

import pytest

from quiz_core.answers import (
    ChoiceAnswer,
    TextAnswer,
    TrueFalseAnswer,
    merge_true_false,
    parse_answer,
    to_wire,
)
from quiz_core.scoring import grade_answer, grade_attempt, percentage
from quiz_core.types import QuestionType

from tests.conftest import mc, short, tf


def test_true_false_needs_all_four_statements():
    q = tf("q", key="Đ-S-Đ-Đ")
    assert grade_answer(q, parse_answer(q.type, "Đ-S-Đ-S")) is False
    assert grade_answer(q, parse_answer(q.type, "Đ-S-Đ-Đ")) is True


def test_short_answer_ignores_case_and_outer_whitespace():
    q = short("q", key="15.5")
    assert grade_answer(q, TextAnswer("  15.5 ")) is True
    assert grade_answer(q, TextAnswer("15.5")) is True
    assert grade_answer(q, TextAnswer("15,5")) is False
    assert grade_answer(short("q2", key="Vô Nghiệm"), TextAnswer("vô nghiệm")) is True


def test_multiple_choice_is_exact_and_unset_never_scores():
    q = mc("q", key="B")
    assert grade_answer(q, ChoiceAnswer("B")) is True
    assert grade_answer(q, ChoiceAnswer("C")) is False
    assert grade_answer(q, None) is False


def test_grade_attempt_counts_and_checks_lengths():
    qs = [mc("a", "A"), mc("b", "B"), short("c", "2")]
    score, correctness = grade_attempt(qs, [ChoiceAnswer("A"), None, TextAnswer(" 2")])
    assert score == 2
    assert correctness == [True, False, True]
    with pytest.raises(ValueError):
        grade_attempt(qs, [None])


def test_percentage_rounds_half_up():
    assert percentage(1, 8) == 13
    assert percentage(4, 5) == 80
    assert percentage(0, 0) == 0


def test_wire_formats_are_preserved():
    assert to_wire(parse_answer(QuestionType.MULTIPLE_CHOICE, "D")) == "D"
    assert to_wire(parse_answer(QuestionType.TRUE_FALSE, "Đ-N-S-N")) == "Đ-N-S-N"
    assert to_wire(parse_answer(QuestionType.SHORT_ANSWER, "  x = 2 ")) == "  x = 2 "
    assert parse_answer(QuestionType.MULTIPLE_CHOICE, "") is None
    assert to_wire(None) == ""


@pytest.mark.parametrize(
    "qtype,raw",
    [
        (QuestionType.MULTIPLE_CHOICE, "a"),
        (QuestionType.MULTIPLE_CHOICE, "E"),
        (QuestionType.TRUE_FALSE, "Đ-S-Đ"),
        (QuestionType.TRUE_FALSE, "T-F-T-F"),
    ],
)
def test_parse_answer_rejects_malformed_values(qtype, raw):
    with pytest.raises(ValueError):
        parse_answer(qtype, raw)


def test_merge_true_false_only_touches_one_position():
    first = merge_true_false(None, "C", "S")
    assert first == TrueFalseAnswer(("N", "N", "S", "N"))
    second = merge_true_false(first, "A", "Đ")
    assert to_wire(second) == "Đ-N-S-N"
    with pytest.raises(ValueError):
        merge_true_false(second, "E", "Đ")
    with pytest.raises(ValueError):
        merge_true_false(second, "A", "X")
