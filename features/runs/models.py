"""
Data models for the runs feature.

Step and Run are the core domain objects: a Run is one execution of a
parsed instruction, made of an ordered, fixed list of Steps.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class StepAction(str, Enum):
    NAVIGATE = "navigate"
    CLICK = "click"
    TYPE = "type"
    WAIT_FOR_ELEMENT = "wait-for-element"
    WAIT = "wait"
    SCREENSHOT = "screenshot"
    DIAGNOSTIC_INFO = "diagnostic-info"
    DIAGNOSTIC_ERROR = "diagnostic-error"


DIAGNOSTIC_ACTIONS = {StepAction.DIAGNOSTIC_INFO, StepAction.DIAGNOSTIC_ERROR}


class StepStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class RunStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


TERMINAL_STATUSES = {RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.STOPPED}


class StepTransitionError(RuntimeError):
    """Raised when a step is asked to move backwards or finish twice."""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_step_id() -> str:
    return f"step-{uuid.uuid4().hex[:8]}"


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


@dataclass
class Step:
    """A single unit of automation work inside a run."""
    action: StepAction
    arguments: dict = field(default_factory=dict)
    id: str = field(default_factory=new_step_id)
    status: StepStatus = StepStatus.QUEUED
    result: str | None = None
    error: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_sec: float | None = None
    _t0: float | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: dict) -> "Step":
        """Build a queued step from a ``{action, arguments}`` mapping.

        Raises ValueError for unknown actions.
        """
        action = StepAction(data.get("action"))
        arguments = data.get("arguments", data.get("args")) or {}
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments for {action.value} must be an object")
        return cls(action=action, arguments=dict(arguments))

    @property
    def is_diagnostic(self) -> bool:
        return self.action in DIAGNOSTIC_ACTIONS

    def start(self) -> None:
        if self.status is not StepStatus.QUEUED:
            raise StepTransitionError(f"{self.id}: cannot start from {self.status.value}")
        self.status = StepStatus.RUNNING
        self.started_at = _now_iso()
        self._t0 = time.monotonic()

    def succeed(self, result: str) -> None:
        self._finish(StepStatus.DONE)
        self.result = result

    def fail(self, error: str) -> None:
        self._finish(StepStatus.FAILED)
        self.error = error

    def _finish(self, status: StepStatus) -> None:
        if self.status is not StepStatus.RUNNING:
            raise StepTransitionError(f"{self.id}: cannot finish from {self.status.value}")
        self.status = status
        self.completed_at = _now_iso()
        if self._t0 is not None:
            self.duration_sec = round(time.monotonic() - self._t0, 2)

    def summary(self) -> dict:
        return {"id": self.id, "action": self.action.value, "status": self.status.value}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "action": self.action.value,
            "arguments": dict(self.arguments),
            "status": self.status.value,
            "result": self.result,
            "error": self.error,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "durationSec": self.duration_sec,
        }


class Run:
    """One execution of a parsed instruction.

    The step list is fixed at construction. Status, logs, location, snapshot
    and session fields are mutated by exactly one executor plus the control
    endpoints; every mutation and every external read goes through the
    run's own lock so polling one run never contends with another.
    """

    def __init__(self, steps: list[Step], instruction: str = "", run_id: str | None = None):
        if not steps:
            raise ValueError("a run needs at least one step")
        self.id = run_id or new_run_id()
        self.instruction = instruction
        self.steps: tuple[Step, ...] = tuple(steps)
        self.status = RunStatus.RUNNING
        self.session_id: str | None = None
        self.current_location = ""
        self.last_snapshot_ref = ""
        self.created_at = _now_iso()
        self.completed_at: str | None = None
        self.error: str | None = None
        self._logs: list[str] = []
        self._lock = threading.RLock()
        self._signal: asyncio.Event | None = None

    # ── Logs ──────────────────────────────────────────────────────────

    def log(self, message: str) -> None:
        stamp = datetime.now().strftime("%H:%M:%S")
        with self._lock:
            self._logs.append(f"[{stamp}] {message}")

    def tail(self, n: int) -> list[str]:
        with self._lock:
            return list(self._logs[-n:])

    @property
    def logs(self) -> list[str]:
        with self._lock:
            return list(self._logs)

    # ── Status transitions ────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def pause(self) -> bool:
        with self._lock:
            if self.status is not RunStatus.RUNNING:
                return False
            self.status = RunStatus.PAUSED
        self.log("Run paused")
        return True

    def resume(self) -> bool:
        with self._lock:
            if self.status is not RunStatus.PAUSED:
                return False
            self.status = RunStatus.RUNNING
        self.log("Run resumed")
        self.notify()
        return True

    def stop(self) -> bool:
        with self._lock:
            if self.is_terminal:
                return False
            self.status = RunStatus.STOPPED
            self.completed_at = _now_iso()
        self.log("Run stopped by user")
        self.notify()
        return True

    def complete(self) -> bool:
        with self._lock:
            if self.status is not RunStatus.RUNNING:
                return False
            self.status = RunStatus.COMPLETED
            self.completed_at = _now_iso()
        self.log("Run completed")
        return True

    def fail(self, reason: str) -> bool:
        with self._lock:
            if self.is_terminal:
                return False
            self.status = RunStatus.FAILED
            self.error = reason
            self.completed_at = _now_iso()
        self.log(f"Run failed: {reason}")
        self.notify()
        return True

    # ── Session bookkeeping ───────────────────────────────────────────

    def attach_session(self, session_id: str, location: str, snapshot_ref: str) -> None:
        with self._lock:
            if self.session_id is not None:
                raise RuntimeError(f"run {self.id} already holds session {self.session_id}")
            self.session_id = session_id
            self.current_location = location or self.current_location
            self.last_snapshot_ref = snapshot_ref or self.last_snapshot_ref

    def detach_session(self) -> str | None:
        """Clear and return the session id; only the first caller gets it."""
        with self._lock:
            session_id, self.session_id = self.session_id, None
            return session_id

    def record_view(self, location: str | None, snapshot_ref: str | None) -> None:
        with self._lock:
            if location:
                self.current_location = location
            if snapshot_ref:
                self.last_snapshot_ref = snapshot_ref

    # ── Wake-up signal for a paused executor ─────────────────────────

    @property
    def signal(self) -> asyncio.Event:
        if self._signal is None:
            self._signal = asyncio.Event()
        return self._signal

    def notify(self) -> None:
        if self._signal is not None:
            self._signal.set()

    # ── Views ─────────────────────────────────────────────────────────

    def summary(self) -> dict:
        with self._lock:
            return {
                "runId": self.id,
                "status": self.status.value,
                "instruction": self.instruction,
                "steps": len(self.steps),
                "createdAt": self.created_at,
                "completedAt": self.completed_at,
            }

    def to_dict(self, log_tail: int | None = None) -> dict[str, Any]:
        with self._lock:
            logs = self._logs if log_tail is None else self._logs[-log_tail:]
            return {
                "runId": self.id,
                "status": self.status.value,
                "instruction": self.instruction,
                "steps": [s.to_dict() for s in self.steps],
                "currentLocation": self.current_location,
                "lastSnapshot": self.last_snapshot_ref or None,
                "sessionId": self.session_id,
                "logs": list(logs),
                "createdAt": self.created_at,
                "completedAt": self.completed_at,
                "error": self.error,
            }
