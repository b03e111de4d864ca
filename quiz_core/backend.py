# quiz_core/backend.py
"""Client for the spreadsheet-backed web app that owns persistence and auth.

Every call is ``GET <url>?action=<name>&payload=<json>`` answering
``{"status": "success"|"error", "data": ..., "message": ...}``; large
bodies (published exams) go out as a JSON text POST instead.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from .config import HTTP_TIMEOUT_SEC, RETRY_BASE_DELAY, RETRY_MAX
from .errors import BackendError, TransientNetworkError
from .question_bank import QuestionPool
from .types import Level, Question, SessionHandle

log = logging.getLogger(__name__)


class SheetBackend:
    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        retries: int = RETRY_MAX,
        base_delay: float = RETRY_BASE_DELAY,
        timeout: float = HTTP_TIMEOUT_SEC,
    ):
        if not base_url:
            raise ValueError("backend url is required")
        self.base_url = base_url
        self.retries = max(0, int(retries))
        self.base_delay = max(0.0, float(base_delay))
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "SheetBackend":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ---- transport ----
    @staticmethod
    def _unwrap(action: str, resp: httpx.Response) -> Any:
        if resp.status_code >= 500:
            raise TransientNetworkError(f"{action}: HTTP {resp.status_code}")
        if resp.status_code >= 400:
            raise BackendError(f"{action}: HTTP {resp.status_code}")
        try:
            body = resp.json()
        except ValueError:
            raise BackendError(f"{action}: response is not JSON") from None
        if not isinstance(body, dict) or body.get("status") != "success":
            msg = body.get("message") if isinstance(body, dict) else None
            raise BackendError(f"{action}: {msg or 'request failed'}")
        return body.get("data")

    async def call(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        params = {"action": action, "payload": json.dumps(payload or {}, ensure_ascii=False)}
        try:
            resp = await self._client.get(self.base_url, params=params)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{action}: {e}") from e
        return self._unwrap(action, resp)

    async def post(self, action: str, body: Dict[str, Any]) -> Any:
        content = json.dumps({"action": action, **body}, ensure_ascii=False)
        try:
            resp = await self._client.post(
                self.base_url, content=content.encode("utf-8"),
                headers={"Content-Type": "text/plain;charset=utf-8"},
            )
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{action}: {e}") from e
        return self._unwrap(action, resp)

    async def call_with_retry(self, action: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        """``call`` with bounded exponential backoff on transient failures only."""
        attempt = 0
        while True:
            try:
                return await self.call(action, payload)
            except TransientNetworkError as e:
                if attempt >= self.retries:
                    raise
                delay = self.base_delay * (2 ** attempt)
                attempt += 1
                log.info("retrying %s in %.1fs (%d/%d): %s", action, delay, attempt, self.retries, e)
                await asyncio.sleep(delay)

    # ---- session ----
    async def heartbeat(self, session: SessionHandle) -> Dict[str, Any]:
        payload = {"email": session.user_id, "sessionToken": session.token, "deviceId": session.device_id}
        try:
            data = await self.call("heartbeat", payload)
        except TransientNetworkError as e:
            # flaky wifi must not end an exam
            log.info("heartbeat unreachable, treating as valid: %s", e)
            return {"valid": True}
        except BackendError as e:
            log.info("heartbeat rejected: %s", e)
            return {"valid": False, "reason": "invalid_token"}
        return data if isinstance(data, dict) else {"valid": False, "reason": "invalid_token"}

    async def validate_session(self, session: SessionHandle) -> Dict[str, Any]:
        try:
            data = await self.call("validateSession", {"email": session.user_id, "sessionToken": session.token})
        except (TransientNetworkError, BackendError):
            return {"valid": False, "reason": "invalid_token"}
        return data if isinstance(data, dict) else {"valid": False, "reason": "invalid_token"}

    async def logout(self, session: SessionHandle) -> bool:
        try:
            await self.call("logout", {"email": session.user_id, "sessionToken": session.token})
        except (TransientNetworkError, BackendError) as e:
            log.info("logout call failed: %s", e)
            return False
        return True

    async def ping(self) -> bool:
        try:
            await self.call("ping")
        except (TransientNetworkError, BackendError):
            return False
        return True

    # ---- question bank ----
    async def fetch_topics(self, grade: int) -> List[str]:
        data = await self.call_with_retry("getTopics", {"grade": int(grade)})
        return [str(t) for t in data] if isinstance(data, list) else []

    async def fetch_questions(self, grade: int, topic: str, level: int | Level | str = 1) -> List[Question]:
        lvl = level.value if isinstance(level, Level) else level
        data = await self.call_with_retry("getQuestions", {"grade": int(grade), "topic": topic, "level": lvl})
        return list(QuestionPool.from_records(data if isinstance(data, list) else []).snapshot())

    async def fetch_pool(self) -> QuestionPool:
        data = await self.call_with_retry("getAllQuestions")
        return QuestionPool.from_records(data if isinstance(data, list) else [])

    async def fetch_students(self) -> List[Dict[str, Any]]:
        data = await self.call_with_retry("getAllStudents")
        return [s for s in data if isinstance(s, dict)] if isinstance(data, list) else []

    async def fetch_theory(self, grade: int, topic: str, level: int) -> Optional[Dict[str, Any]]:
        data = await self.call_with_retry("getTheory", {"grade": int(grade), "topic": topic, "level": int(level)})
        return data if isinstance(data, dict) and data else None

    # ---- students ----
    async def fetch_user_progress(self, user_id: str) -> Optional[Dict[str, Any]]:
        """``{totalScore, currentLevel, progress}``; ``progress`` may arrive as a JSON string."""
        data = await self.call_with_retry("getUserProgress", {"email": user_id})
        return data if isinstance(data, dict) else None

    async def fetch_leaderboard(self, limit: int = 20) -> List[Dict[str, Any]]:
        data = await self.call_with_retry("getLeaderboard", {"limit": int(limit)})
        return [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []

    # ---- attempts ----
    async def report_violation(
        self, user_id: str, violation_type: str, details: Dict[str, Any], quiz_info: Dict[str, Any]
    ) -> bool:
        payload = {"email": user_id, "type": violation_type, "details": details, "quizInfo": quiz_info}
        try:
            await self.call("reportViolation", payload)
        except (TransientNetworkError, BackendError) as e:
            log.info("violation report not delivered: %s", e)
            return False
        return True

    async def submit_quiz(self, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        # no retry: a lost submission keeps the local result
        data = await self.call("submitQuiz", payload)
        return data if isinstance(data, dict) else None

    # ---- published exams ----
    async def create_instant_exam(self, title: str, grade: int, questions: Sequence[Question]) -> Optional[str]:
        body = {"title": title, "grade": int(grade), "questions": [q.to_record() for q in questions]}
        try:
            data = await self.post("createInstantExam", body)
        except (TransientNetworkError, BackendError) as e:
            log.warning("publishing %s failed: %s", title, e)
            return None
        exam_id = data.get("examId") if isinstance(data, dict) else None
        return str(exam_id) if exam_id else None

    async def fetch_exam(self, exam_id: str) -> Optional[Dict[str, Any]]:
        try:
            data = await self.call_with_retry("getExamByLink", {"examId": exam_id})
        except BackendError:
            return None
        if not isinstance(data, dict):
            return None
        pool = QuestionPool.from_records(data.get("questions") or [])
        return {
            "title": str(data.get("title") or ""),
            "grade": int(data.get("grade") or 0),
            "questions": list(pool.snapshot()),
        }


__all__ = ["SheetBackend"]
