"""
Data models for the sessions feature.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any


def new_session_id() -> str:
    return f"ws-{uuid.uuid4().hex[:10]}"


@dataclass
class Session:
    """One live browsing context and the counter naming its snapshots."""
    browser: Any
    page: Any
    id: str = field(default_factory=new_session_id)
    location: str = ""
    snapshot_sequence: int = 0
    last_snapshot_ref: str = ""
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    closed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)


@dataclass
class SessionResult:
    """Outcome of a session call. Failures are values, never exceptions."""
    ok: bool
    session_id: str | None = None
    snapshot_ref: str | None = None
    current_location: str | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str, **kwargs) -> "SessionResult":
        return cls(ok=False, error=error, **kwargs)

    def to_dict(self) -> dict:
        out: dict = {"ok": self.ok}
        if self.session_id is not None:
            out["sessionId"] = self.session_id
        if self.snapshot_ref is not None:
            out["snapshotRef"] = self.snapshot_ref
        if self.current_location is not None:
            out["currentLocation"] = self.current_location
        if not self.ok:
            out["error"] = self.error
        return out
