from __future__ import annotations

from dataclasses import replace

from quiz_core.progress import (
    current_level,
    is_level_unlocked,
    merge_progress,
    parse_progress,
    progress_key,
    record_outcome,
)
from quiz_core.types import QuizResult, SubmissionReason


def _result(passed=True, reason=SubmissionReason.NORMAL, **server) -> QuizResult:
    res = QuizResult(
        score=4, total=5, percentage=80, passed=passed, correctness=(True,) * 4 + (False,),
        answers=("A",) * 5, time_spent=60, reason=reason, started_at=0.0, ended_at=60.0,
    )
    if server:
        res = replace(res, server_confirmed=True, extra=server)
    return res


def test_parse_progress_accepts_json_and_mappings():
    assert parse_progress('{"12_Hàm số": 2, "10_Mệnh đề": "3"}') == {"12_Hàm số": 2, "10_Mệnh đề": 3}
    assert parse_progress({"12_Hàm số": 2, "bad": "x"}) == {"12_Hàm số": 2}
    assert parse_progress("not json") == {}
    assert parse_progress(None) == {}
    assert parse_progress("[1, 2]") == {}


def test_levels_default_to_one_and_unlock_up_to_current():
    progress = {progress_key(12, "Hàm số"): 3}
    assert current_level(progress, 12, "Hàm số") == 3
    assert current_level(progress, 11, "Hàm số") == 1
    assert is_level_unlocked(progress, 12, "Hàm số", 3)
    assert not is_level_unlocked(progress, 12, "Hàm số", 4)
    assert not is_level_unlocked(progress, 12, "Hàm số", 0)
    assert is_level_unlocked({}, 12, "Logarit", 1)


def test_server_new_level_and_can_advance():
    key = progress_key(12, "Logarit")
    assert record_outcome({}, 12, "Logarit", 1, _result(newLevel=3)) == {key: 3}
    assert record_outcome({}, 12, "Logarit", 2, _result(canAdvance=True)) == {key: 3}
    assert record_outcome({key: 2}, 12, "Logarit", 2, _result(canAdvance=False)) == {key: 2}


def test_progress_never_moves_backwards():
    key = progress_key(12, "Logarit")
    assert record_outcome({key: 4}, 12, "Logarit", 1, _result(newLevel=2)) == {key: 4}


def test_local_results_count_only_when_trusted_and_clean():
    key = progress_key(10, "Hàm số")
    assert record_outcome({}, 10, "Hàm số", 1, _result()) == {}
    assert record_outcome({}, 10, "Hàm số", 1, _result(), trust_local=True) == {key: 2}
    assert record_outcome({}, 10, "Hàm số", 1, _result(passed=False), trust_local=True) == {}
    tab = _result(reason=SubmissionReason.CHEAT_TAB)
    assert record_outcome({}, 10, "Hàm số", 1, tab, trust_local=True) == {}


def test_merge_keeps_highest_level_per_topic():
    assert merge_progress({"a": 2, "b": 1}, {"a": 1, "c": 3}) == {"a": 2, "b": 1, "c": 3}
