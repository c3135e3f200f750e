"""
Run Registry — where live runs are kept while they execute and are polled.

The executor and the control endpoints only talk to the ``RunStore``
protocol, so the in-memory store can be swapped for a shared one without
touching either. ``InMemoryRunStore`` optionally mirrors every saved run to
Postgres; if the DB is unavailable it keeps working in memory only (with a
warning).
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

from features.runs.models import Run, Step

log = logging.getLogger(__name__)


class RunStore(Protocol):
    def create(self, steps: list[Step], instruction: str = "") -> Run: ...

    def get(self, run_id: str) -> Run | None: ...

    def list(self, limit: int = 50, status: str | None = None) -> list[Run]: ...

    def save(self, run: Run) -> None: ...


class InMemoryRunStore:
    """Runs keyed by id.

    The lock only guards the index itself; a run's mutable fields are
    protected by the run's own lock.
    """

    def __init__(self, persist: Callable[[dict], None] | None = None):
        self._runs: dict[str, Run] = {}
        self._index_lock = threading.Lock()
        self._persist = persist

    def create(self, steps: list[Step], instruction: str = "") -> Run:
        run = Run(steps, instruction=instruction)
        run.log(f"Parsed {len(run.steps)} step(s) from instruction")
        with self._index_lock:
            self._runs[run.id] = run
        log.info("[RUN] Created: %s — %d step(s)", run.id, len(run.steps))
        self.save(run)
        return run

    def get(self, run_id: str) -> Run | None:
        return self._runs.get(run_id)

    def list(self, limit: int = 50, status: str | None = None) -> list[Run]:
        with self._index_lock:
            runs = list(self._runs.values())
        if status:
            runs = [r for r in runs if r.status.value == status]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return runs[:limit]

    def save(self, run: Run) -> None:
        """Mirror the current run state to the persistence hook, if any."""
        if self._persist is None:
            return
        try:
            self._persist(run.to_dict())
        except Exception as e:
            log.warning("[RUN] Failed to persist run %s: %s", run.id, e)

    def __len__(self) -> int:
        return len(self._runs)
