"""Exam-integrity checks that run beside an active attempt.

Two observers, both of which only ever call ``AttemptEngine.finish``:

* the session heartbeat, polled every ``HEARTBEAT_PERIOD_SEC`` seconds,
  ends the attempt with ``cheat_conflict`` when the account is signed in
  on another device;
* the visibility handler ends it with ``cheat_tab`` when the page is
  hidden, after reporting the violation.

Teachers and admins are exempt from both.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set, Union

from .config import HEARTBEAT_PERIOD_SEC
from .engine import AttemptEngine
from .types import SessionHandle, SubmissionReason

log = logging.getLogger(__name__)


class HeartbeatStatus(str, Enum):
    VALID = "valid"
    NO_SESSION = "no_session"
    INVALID_TOKEN = "invalid_token"
    SESSION_CONFLICT = "session_conflict"


class SessionValidator(Protocol):
    async def heartbeat(self, session: SessionHandle) -> Dict[str, Any]: ...


class ViolationReporter(Protocol):
    async def report_violation(
        self, user_id: str, violation_type: str, details: Dict[str, Any], quiz_info: Dict[str, Any]
    ) -> bool: ...


LogoutHook = Callable[[], Union[None, Awaitable[None]]]


def classify(payload: Optional[Dict[str, Any]]) -> HeartbeatStatus:
    """Map a ``{valid, reason}`` heartbeat payload onto a status."""
    if not payload:
        return HeartbeatStatus.INVALID_TOKEN
    if payload.get("valid"):
        return HeartbeatStatus.VALID
    try:
        status = HeartbeatStatus(str(payload.get("reason") or ""))
    except ValueError:
        return HeartbeatStatus.INVALID_TOKEN
    return HeartbeatStatus.INVALID_TOKEN if status is HeartbeatStatus.VALID else status


class AntiCheatMonitor:
    def __init__(
        self,
        engine: AttemptEngine,
        session: Optional[SessionHandle],
        validator: Optional[SessionValidator] = None,
        reporter: Optional[ViolationReporter] = None,
        *,
        on_logout: Optional[LogoutHook] = None,
        period: float = HEARTBEAT_PERIOD_SEC,
    ):
        self.engine = engine
        self.session = session
        self.validator = validator
        self.reporter = reporter
        self.on_logout = on_logout
        self.period = period
        self.last_status: Optional[HeartbeatStatus] = None
        self._reports: Set[asyncio.Task] = set()

    @property
    def exempt(self) -> bool:
        return self.session is not None and self.session.is_teacher

    def start(self) -> bool:
        """Register the heartbeat on the attempt's scheduler; False when nothing to watch."""
        if self.exempt or self.validator is None or self.session is None:
            return False
        if self.engine.scheduler is None:
            raise RuntimeError("attempt has no scheduler to run the heartbeat on")
        self.engine.scheduler.every(self.period, self.poll_once, name="session-heartbeat")
        return True

    async def poll_once(self) -> HeartbeatStatus:
        if self.exempt:
            self.last_status = HeartbeatStatus.VALID
            return HeartbeatStatus.VALID
        if self.session is None or self.validator is None:
            status = HeartbeatStatus.NO_SESSION
        else:
            status = classify(await self.validator.heartbeat(self.session))
        self.last_status = status

        if status is HeartbeatStatus.SESSION_CONFLICT:
            if self.engine.in_progress:
                log.warning("session conflict for %s, ending attempt", self._user())
                await self.engine.finish(SubmissionReason.CHEAT_CONFLICT)
            else:
                log.warning("session conflict for %s, logging out", self._user())
                await self._logout()
        elif status is not HeartbeatStatus.VALID:
            log.info("heartbeat for %s: %s", self._user(), status.value)
        return status

    async def on_visibility_change(self, hidden: bool) -> bool:
        """Handle a page visibility transition; True when it ended the attempt."""
        if not hidden or self.exempt or not self.engine.in_progress:
            return False
        count = self.engine.record_tab_switch()
        self._report_tab_switch(count)
        await self.engine.finish(SubmissionReason.CHEAT_TAB)
        return True

    def _report_tab_switch(self, count: int) -> None:
        if self.reporter is None or self.session is None:
            return
        ctx = self.engine.context
        coro = self.reporter.report_violation(
            self.session.user_id,
            "tab_switch",
            {"timestamp": int(self.engine.clock() * 1000), "count": count},
            {"topic": ctx.topic, "level": ctx.level},
        )
        task = asyncio.ensure_future(coro)
        self._reports.add(task)
        task.add_done_callback(self._report_done)

    def _report_done(self, task: asyncio.Task) -> None:
        self._reports.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning("violation report failed: %s", exc)

    async def drain_reports(self) -> None:
        """Wait for in-flight violation reports (shutdown and tests)."""
        if self._reports:
            await asyncio.gather(*list(self._reports), return_exceptions=True)

    async def _logout(self) -> None:
        self.session = None
        if self.on_logout is None:
            return
        result = self.on_logout()
        if inspect.isawaitable(result):
            await result

    def _user(self) -> str:
        return self.session.user_id if self.session else "<no session>"


__all__ = [
    "HeartbeatStatus",
    "SessionValidator",
    "ViolationReporter",
    "classify",
    "AntiCheatMonitor",
]
