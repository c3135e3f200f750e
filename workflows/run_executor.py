"""
Run Executor — drives one run's steps against a browsing session.

For each run:
  1. Open a session (failure here fails the run; no step is attempted)
  2. Execute steps in order, one at a time
     - stopped/failed runs break out before the next step
     - paused runs wait between steps until resumed or stopped
     - diagnostic steps resolve without touching the session
     - a failed step is recorded and the next step still runs
  3. Mark the run completed if nothing else ended it
  4. Close the session, whatever the outcome

Each run executes as its own asyncio task. Pausing is cooperative and only
takes effect between steps: an in-flight session call always finishes
first.
"""

from __future__ import annotations

import asyncio
import logging
import time

import config
from features.runs.models import Run, RunStatus, Step, StepAction, StepStatus
from features.runs.store import RunStore
from features.sessions.manager import SessionManager

log = logging.getLogger(__name__)


class RunExecutor:
    def __init__(
        self,
        store: RunStore,
        sessions: SessionManager,
        step_delay: float | None = None,
        pause_poll_interval: float | None = None,
        max_steps: int | None = None,
        run_timeout: float | None = None,
    ):
        self.store = store
        self.sessions = sessions
        self.step_delay = config.STEP_DELAY_SEC if step_delay is None else step_delay
        self.pause_poll_interval = (
            config.PAUSE_POLL_INTERVAL_SEC if pause_poll_interval is None else pause_poll_interval
        )
        self.max_steps = config.MAX_STEPS_PER_RUN if max_steps is None else max_steps
        self.run_timeout = config.RUN_TIMEOUT_SEC if run_timeout is None else run_timeout
        self._tasks: set[asyncio.Task] = set()

    # ── Task lifecycle ────────────────────────────────────────────────

    def launch(self, run: Run) -> asyncio.Task:
        """Start ``run`` in the background and return its task."""
        task = asyncio.get_running_loop().create_task(self.execute(run), name=run.id)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def shutdown(self) -> None:
        """Cancel every in-flight run; each one still releases its session."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Control ───────────────────────────────────────────────────────

    async def stop(self, run: Run) -> RunStatus:
        """Stop ``run`` and release its session right away."""
        if run.stop():
            log.info("[RUN] Stop requested: %s", run.id)
            await self._release(run)
            self.store.save(run)
        return run.status

    # ── Main loop ─────────────────────────────────────────────────────

    async def execute(self, run: Run) -> Run:
        started = time.monotonic()
        deadline = started + self.run_timeout if self.run_timeout else None
        run.log("Starting run...")
        log.info("[RUN] Starting: %s (%d steps)", run.id, len(run.steps))

        try:
            opened = await self.sessions.open()
            if not opened.ok:
                run.fail(f"Failed to start browser: {opened.error}")
                log.error("[RUN] %s could not open a session: %s", run.id, opened.error)
                return run

            run.attach_session(opened.session_id, opened.current_location or "about:blank",
                               opened.snapshot_ref or "")
            run.log("Browser session started")
            self.store.save(run)

            for index, step in enumerate(run.steps):
                if not await self._wait_for_turn(run, deadline):
                    break
                if self.max_steps and index >= self.max_steps:
                    run.fail(f"Step limit of {self.max_steps} reached; "
                             f"{len(run.steps) - index} step(s) not run")
                    break
                await self._run_step(run, opened.session_id, step)
                self.store.save(run)
                if self.step_delay:
                    await asyncio.sleep(self.step_delay)

            if not run.complete():
                run.log(f"Run ended: {run.status.value}")

        except asyncio.CancelledError:
            for step in run.steps:
                if step.status is StepStatus.RUNNING:
                    step.fail("Run cancelled")
            run.fail("Run cancelled during shutdown")
            raise
        except Exception as e:
            log.error("[RUN] %s executor fault: %s", run.id, e, exc_info=True)
            run.fail(f"Executor fault: {e}")
        finally:
            await self._release(run)
            self.store.save(run)
            log.info(
                "[RUN] %s finished in %.1fs: %s",
                run.id, time.monotonic() - started, run.status.value,
            )
        return run

    async def _wait_for_turn(self, run: Run, deadline: float | None) -> bool:
        """Return True when the next step may start, False when the run is over.

        While paused, wait on the run's signal, re-checking at a fixed
        interval so a stop is honoured promptly even without a signal.
        The time limit only counts against a running run; a paused run
        waits for Resume or Stop.
        """
        while True:
            status = run.status
            if status is RunStatus.RUNNING:
                if deadline is not None and time.monotonic() >= deadline:
                    run.fail(f"Run exceeded its {self.run_timeout:g}s time limit")
                    return False
                return True
            if status is not RunStatus.PAUSED:
                return False

            signal = run.signal
            signal.clear()
            if run.status is not RunStatus.PAUSED:
                continue
            try:
                await asyncio.wait_for(signal.wait(), self.pause_poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _run_step(self, run: Run, session_id: str, step: Step) -> None:
        step.start()
        run.log(f"Executing: {step.action.value}")
        log.info("[STEP] %s %s: %s", run.id, step.id, step.action.value)

        if step.is_diagnostic:
            message = step.arguments.get("message", "")
            if step.action is StepAction.DIAGNOSTIC_ERROR:
                step.fail(message)
            else:
                step.succeed(message)
            run.log(message)
            return

        try:
            result = await self.sessions.step(session_id, step.action, step.arguments)
        except Exception as e:
            log.error("[STEP] %s %s raised: %s", run.id, step.id, e, exc_info=True)
            step.fail(str(e) or type(e).__name__)
            run.log(f"Step failed: {step.error}")
            return

        run.record_view(result.current_location, result.snapshot_ref)
        if result.ok:
            step.succeed("completed")
            run.log(f"Step completed - {run.current_location}")
        else:
            step.fail(result.error or "Step failed")
            run.log(f"Step failed: {step.error}")

    async def _release(self, run: Run) -> None:
        session_id = run.detach_session()
        if session_id is None:
            return
        try:
            result = await self.sessions.close(session_id)
            if not result.ok:
                log.warning("[RUN] %s session %s close reported: %s", run.id, session_id, result.error)
        except Exception as e:
            log.warning("[RUN] %s session %s close raised: %s", run.id, session_id, e)
        run.log("Browser session closed")
