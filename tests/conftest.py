from __future__ import annotations

import asyncio
import os
import tempfile
import time
from pathlib import Path

os.environ.setdefault("WEBSHOTS_DIR", tempfile.mkdtemp(prefix="webshots-"))
os.environ["DATABASE_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""

import pytest  # noqa: E402

from features.runs.models import StepAction  # noqa: E402
from features.sessions.models import SessionResult  # noqa: E402


class FakeSessionManager:
    """Stands in for SessionManager; records every call it receives."""

    def __init__(self, fail_open: str | None = None, fail_selectors=(), delay: float = 0.0):
        self.fail_open = fail_open
        self.fail_selectors = set(fail_selectors)
        self.delay = delay
        self.hold: asyncio.Event | None = None
        self.opened: list[str] = []
        self.closed: list[str] = []
        self.calls: list[tuple[str, str, dict]] = []
        self._live: dict[str, dict] = {}

    def __len__(self) -> int:
        return len(self._live)

    def _snap(self, session_id: str) -> str:
        state = self._live[session_id]
        state["seq"] += 1
        return f"/webshots/{session_id}-{state['seq']}.png"

    async def open(self, location=None) -> SessionResult:
        if self.fail_open:
            return SessionResult.failure(self.fail_open)
        session_id = f"ws-fake{len(self.opened) + 1}"
        self.opened.append(session_id)
        self._live[session_id] = {"seq": 0, "location": location or "about:blank"}
        return SessionResult(
            ok=True,
            session_id=session_id,
            snapshot_ref=self._snap(session_id),
            current_location=self._live[session_id]["location"],
        )

    async def step(self, session_id, action, arguments=None) -> SessionResult:
        action = StepAction(action)
        arguments = dict(arguments or {})
        self.calls.append((session_id, action.value, arguments))
        if self.hold is not None:
            await self.hold.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if session_id not in self._live:
            return SessionResult.failure("Session not found", session_id=session_id)
        state = self._live[session_id]
        if arguments.get("selector") in self.fail_selectors:
            return SessionResult.failure(
                f"Timeout 10000ms exceeded waiting for {arguments['selector']}",
                session_id=session_id,
                snapshot_ref=self._snap(session_id),
                current_location=state["location"],
            )
        if action is StepAction.NAVIGATE:
            state["location"] = arguments["url"]
        return SessionResult(
            ok=True,
            session_id=session_id,
            snapshot_ref=self._snap(session_id),
            current_location=state["location"],
        )

    async def screenshot(self, session_id) -> SessionResult:
        if session_id not in self._live:
            return SessionResult.failure("Session not found", session_id=session_id)
        return SessionResult(
            ok=True,
            session_id=session_id,
            snapshot_ref=self._snap(session_id),
            current_location=self._live[session_id]["location"],
        )

    async def close(self, session_id) -> SessionResult:
        self.closed.append(session_id)
        self._live.pop(session_id, None)
        return SessionResult(ok=True, session_id=session_id)

    async def shutdown(self) -> None:
        for session_id in list(self._live):
            await self.close(session_id)


def wait_until(predicate, timeout: float = 5.0, interval: float = 0.01):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    raise AssertionError("condition not met before timeout")


async def async_wait_until(predicate, timeout: float = 5.0, interval: float = 0.005):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    raise AssertionError("condition not met before timeout")


@pytest.fixture
def fake_sessions():
    return FakeSessionManager()


@pytest.fixture
def snapshot_dir(tmp_path) -> Path:
    return tmp_path / "webshots"
