"""Per-topic level progression.

A student's progress is a flat map ``"{grade}_{topic}" -> highest unlocked
level``; missing keys mean level 1. Attempt levels at or below the stored
one are open, higher ones stay locked until a result advances the topic.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Mapping, Optional

from .types import QuizResult, SubmissionReason

log = logging.getLogger(__name__)

START_LEVEL = 1

Progress = Dict[str, int]


def progress_key(grade: int, topic: str) -> str:
    return f"{int(grade)}_{topic}"


def parse_progress(raw: Any) -> Progress:
    """Accept the stored JSON string or an already-decoded mapping; junk gives ``{}``."""
    if not raw:
        return {}
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            log.warning("unreadable progress blob, starting from level %d", START_LEVEL)
            return {}
    if not isinstance(raw, Mapping):
        return {}
    out: Progress = {}
    for key, value in raw.items():
        try:
            out[str(key)] = int(value)
        except (TypeError, ValueError):
            continue
    return out


def current_level(progress: Mapping[str, int], grade: int, topic: str) -> int:
    return max(START_LEVEL, int(progress.get(progress_key(grade, topic)) or START_LEVEL))


def is_level_unlocked(progress: Mapping[str, int], grade: int, topic: str, level: int) -> bool:
    return START_LEVEL <= int(level) <= current_level(progress, grade, topic)


def merge_progress(*sources: Mapping[str, int]) -> Progress:
    merged: Progress = {}
    for src in sources:
        for key, value in src.items():
            merged[key] = max(merged.get(key, START_LEVEL), int(value))
    return merged


def record_outcome(
    progress: Mapping[str, int],
    grade: int,
    topic: str,
    level: int,
    result: QuizResult,
    *,
    trust_local: bool = False,
) -> Progress:
    """Progress after ``result``; never moves a topic backwards.

    A server-confirmed result advances through its ``newLevel`` (or
    ``canAdvance``, one step past the attempted level). A local result only
    counts when ``trust_local`` is set, i.e. when no server keeps progress,
    and then only a clean pass advances.
    """
    updated: Progress = dict(progress)
    before = current_level(progress, grade, topic)
    target: Optional[int] = None
    if result.server_confirmed:
        new_level = result.extra.get("newLevel")
        if new_level is not None:
            try:
                target = int(new_level)
            except (TypeError, ValueError):
                target = None
        elif result.extra.get("canAdvance"):
            target = int(level) + 1
    elif trust_local and result.passed and result.reason is SubmissionReason.NORMAL:
        target = int(level) + 1

    if target is not None and target > before:
        updated[progress_key(grade, topic)] = target
        log.info("%s unlocked level %d", progress_key(grade, topic), target)
    return updated


__all__ = [
    "START_LEVEL",
    "progress_key",
    "parse_progress",
    "current_level",
    "is_level_unlocked",
    "merge_progress",
    "record_outcome",
]
