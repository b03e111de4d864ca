"""Local stand-in for the exam/result persistence collaborator.

The production deployment publishes exams and stores results through the
spreadsheet backend (``quiz_core.backend.SheetBackend``).  When no backend
URL is configured we keep the same contract with JSON files on disk so
published exam links and result history survive restarts.
"""

from __future__ import annotations

import json
import os
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from quiz_core.types import Question


DATA_ROOT = Path(os.getenv("DATA_DIR", "data")).resolve()
EXAMS_DIR = DATA_ROOT / "exams"
EXAM_INDEX_PATH = DATA_ROOT / "exams_index.json"
RESULTS_INDEX_PATH = DATA_ROOT / "results_index.json"
PROGRESS_INDEX_PATH = DATA_ROOT / "progress_index.json"

_LOCK = threading.Lock()


def _ensure_dirs() -> None:
    EXAMS_DIR.mkdir(parents=True, exist_ok=True)
    DATA_ROOT.mkdir(parents=True, exist_ok=True)


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return default


def _write_json(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_exam_id() -> str:
    return "E_" + uuid.uuid4().hex[:8].upper()


def save_exam(title: str, grade: int, questions: Sequence[Question]) -> str:
    """Persist a published variant and return its exam id."""

    _ensure_dirs()
    exam_id = new_exam_id()
    payload = {
        "examId": exam_id,
        "title": title,
        "grade": int(grade),
        "questions": [q.to_record() for q in questions],
        "createdAt": utcnow_iso(),
    }
    _write_json(EXAMS_DIR / f"{exam_id}.json", payload)

    with _LOCK:
        index: Dict[str, Dict[str, Any]] = _read_json(EXAM_INDEX_PATH, {})
        index[exam_id] = {"title": title, "grade": int(grade), "count": len(questions), "createdAt": payload["createdAt"]}
        _write_json(EXAM_INDEX_PATH, index)
    return exam_id


def load_exam(exam_id: str) -> Optional[Dict[str, Any]]:
    path = EXAMS_DIR / f"{exam_id}.json"
    if not path.exists():
        return None
    return _read_json(path, None)


def delete_exam(exam_id: str) -> bool:
    removed = False
    with _LOCK:
        index: Dict[str, Dict[str, Any]] = _read_json(EXAM_INDEX_PATH, {})
        if exam_id in index:
            index.pop(exam_id, None)
            _write_json(EXAM_INDEX_PATH, index)
            removed = True
    path = EXAMS_DIR / f"{exam_id}.json"
    if path.exists():
        path.unlink()
    return removed


def list_exams() -> List[Dict[str, Any]]:
    index: Dict[str, Dict[str, Any]] = _read_json(EXAM_INDEX_PATH, {})
    out = [{"examId": eid, **meta} for eid, meta in index.items()]
    out.sort(key=lambda r: r.get("createdAt", ""), reverse=True)
    return out


def record_result(user_id: str, result: Dict[str, Any]) -> None:
    with _LOCK:
        index: Dict[str, List[Dict[str, Any]]] = _read_json(RESULTS_INDEX_PATH, {})
        entry = dict(result)
        entry.setdefault("recordedAt", utcnow_iso())
        index.setdefault(user_id, []).append(entry)
        _write_json(RESULTS_INDEX_PATH, index)


def results_for_user(user_id: str) -> List[Dict[str, Any]]:
    index: Dict[str, List[Dict[str, Any]]] = _read_json(RESULTS_INDEX_PATH, {})
    out = list(index.get(user_id, []))
    out.sort(key=lambda r: r.get("recordedAt", ""), reverse=True)
    return out


def load_progress(user_id: str) -> Dict[str, int]:
    index: Dict[str, Dict[str, int]] = _read_json(PROGRESS_INDEX_PATH, {})
    return dict(index.get(user_id, {}))


def save_progress(user_id: str, progress: Dict[str, int]) -> None:
    with _LOCK:
        index: Dict[str, Dict[str, int]] = _read_json(PROGRESS_INDEX_PATH, {})
        index[user_id] = dict(progress)
        _write_json(PROGRESS_INDEX_PATH, index)


def leaderboard(limit: int = 20) -> List[Dict[str, Any]]:
    """Rank users by the summed score of their recorded results."""

    index: Dict[str, List[Dict[str, Any]]] = _read_json(RESULTS_INDEX_PATH, {})
    rows = [
        {"name": user_id, "class": "", "totalScore": sum(int(r.get("score") or 0) for r in results)}
        for user_id, results in index.items()
    ]
    rows.sort(key=lambda r: (-r["totalScore"], r["name"]))
    return rows[: max(0, int(limit))]


class LocalExamStore:
    """Publisher/retriever with the same async contract as the backend."""

    async def create_instant_exam(self, title: str, grade: int, questions: Sequence[Question]) -> Optional[str]:
        return save_exam(title, grade, questions)

    async def fetch_exam(self, exam_id: str) -> Optional[Dict[str, Any]]:
        raw = load_exam(exam_id)
        if not raw:
            return None
        return {
            "title": raw.get("title", ""),
            "grade": int(raw.get("grade") or 0),
            "questions": [Question.from_record(r) for r in raw.get("questions") or []],
        }
