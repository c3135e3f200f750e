"""
Session Manager — owns one Playwright browsing context per session id.

Four operations: open, step, screenshot, close. Each returns a
``SessionResult``; Playwright errors, timeouts and bad arguments come back
as ``ok=False`` results so callers never have to catch anything.

Every call except a plain ``wait`` ends with a fresh snapshot named
``{session_id}-{n}.png``, where ``n`` counts up from 1 per session.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from playwright.async_api import async_playwright

import config
from features.runs.models import DIAGNOSTIC_ACTIONS, StepAction
from features.sessions.models import Session, SessionResult

log = logging.getLogger(__name__)

Launcher = Callable[[], Awaitable[tuple[Any, Any]]]

SELECTOR_ENGINES = ("css", "xpath")
DEFAULT_WAIT_MS = 1000


class SessionArgumentError(ValueError):
    """A step was dispatched without the arguments its action needs."""


class SessionClosedError(RuntimeError):
    """The session was closed while an action was still running."""


class SessionManager:
    def __init__(
        self,
        launcher: Launcher | None = None,
        snapshot_dir: Path | None = None,
        navigation_timeout_ms: int | None = None,
        action_timeout_ms: int | None = None,
        wait_for_timeout_ms: int | None = None,
        max_wait_ms: int | None = None,
    ):
        self._launcher = launcher or self._launch_chromium
        self.snapshot_dir = Path(snapshot_dir or config.WEBSHOTS_DIR)
        self.navigation_timeout_ms = navigation_timeout_ms or config.NAVIGATION_TIMEOUT_MS
        self.action_timeout_ms = action_timeout_ms or config.ACTION_TIMEOUT_MS
        self.wait_for_timeout_ms = wait_for_timeout_ms or config.WAIT_FOR_TIMEOUT_MS
        self.max_wait_ms = config.MAX_WAIT_MS if max_wait_ms is None else max_wait_ms
        self._sessions: dict[str, Session] = {}
        self._playwright = None
        self._driver_lock = asyncio.Lock()
        self._handlers = {
            StepAction.NAVIGATE: self._navigate,
            StepAction.CLICK: self._click,
            StepAction.TYPE: self._type,
            StepAction.WAIT_FOR_ELEMENT: self._wait_for_element,
            StepAction.WAIT: self._wait,
            StepAction.SCREENSHOT: self._noop,
        }

    # ── Launch ────────────────────────────────────────────────────────

    async def _launch_chromium(self) -> tuple[Any, Any]:
        async with self._driver_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        browser = await self._playwright.chromium.launch(
            headless=config.HEADLESS, args=config.BROWSER_ARGS,
        )
        try:
            context = await browser.new_context(
                viewport={"width": config.VIEWPORT_WIDTH, "height": config.VIEWPORT_HEIGHT},
            )
            page = await context.new_page()
        except Exception:
            await browser.close()
            raise
        return browser, page

    # ── Public operations ─────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._sessions)

    def has(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def open(self, location: str | None = None) -> SessionResult:
        """Launch a new isolated context, optionally navigate, then snapshot."""
        log.info("[SESSION] Opening session, URL: %s", location or "(blank)")
        try:
            browser, page = await self._launcher()
        except Exception as e:
            log.error("[SESSION] Failed to launch browser: %s", e)
            return SessionResult.failure(str(e) or "Failed to launch browser")

        session = Session(browser=browser, page=page)
        try:
            if location:
                await page.goto(location, wait_until="domcontentloaded",
                                timeout=self.navigation_timeout_ms)
            session.location = page.url
            snapshot_ref = await self._capture(session)
        except Exception as e:
            log.error("[SESSION] Failed to open session: %s", e)
            await self._close_browser(session)
            return SessionResult.failure(str(e) or "Failed to open session")

        self._sessions[session.id] = session
        log.info("[SESSION] Opened: %s at %s", session.id, session.location)
        return SessionResult(
            ok=True,
            session_id=session.id,
            snapshot_ref=snapshot_ref,
            current_location=session.location,
        )

    async def step(self, session_id: str, action: StepAction | str, arguments: dict | None = None) -> SessionResult:
        """Run one action against a session and return its fresh view."""
        session = self._sessions.get(session_id)
        if session is None:
            return SessionResult.failure("Session not found", session_id=session_id)
        try:
            action = StepAction(action)
        except ValueError:
            return SessionResult.failure(f"Unknown action: {action}", session_id=session_id)
        if action in DIAGNOSTIC_ACTIONS:
            return SessionResult.failure(f"Unknown action: {action.value}", session_id=session_id)

        arguments = arguments or {}
        log.info("[SESSION] Step: %s %s %s", session_id, action.value, arguments)

        async with session.lock:
            try:
                await self._handlers[action](session, arguments)
            except Exception as e:
                error = str(e) or type(e).__name__
                log.error("[SESSION] Step %s failed on %s: %s", action.value, session_id, error)
                snapshot_ref = None
                if session_id in self._sessions:
                    snapshot_ref = await self._capture_quietly(session)
                return SessionResult.failure(
                    error,
                    session_id=session_id,
                    snapshot_ref=snapshot_ref,
                    current_location=session.location,
                )

            if action is StepAction.WAIT:
                return SessionResult(
                    ok=True,
                    session_id=session_id,
                    snapshot_ref=session.last_snapshot_ref,
                    current_location=session.location,
                )
            return await self._view(session)

    async def screenshot(self, session_id: str) -> SessionResult:
        session = self._sessions.get(session_id)
        if session is None:
            return SessionResult.failure("Session not found", session_id=session_id)
        async with session.lock:
            return await self._view(session)

    async def close(self, session_id: str) -> SessionResult:
        """Tear down a session. Unknown or already-closed ids are fine."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            log.info("[SESSION] Close: %s not open, nothing to do", session_id)
            return SessionResult(ok=True, session_id=session_id)
        log.info("[SESSION] Closing session: %s", session_id)
        session.closed.set()
        await self._close_browser(session)
        return SessionResult(ok=True, session_id=session_id)

    async def shutdown(self) -> None:
        """Close every live session and stop the Playwright driver."""
        for session_id in list(self._sessions):
            await self.close(session_id)
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as e:
                log.warning("[SESSION] Playwright driver did not stop cleanly: %s", e)
            self._playwright = None

    # ── Action handlers ───────────────────────────────────────────────

    async def _navigate(self, session: Session, arguments: dict) -> None:
        url = arguments.get("url")
        if not url:
            raise SessionArgumentError("url required for navigate")
        await session.page.goto(url, wait_until="domcontentloaded", timeout=self.navigation_timeout_ms)

    async def _click(self, session: Session, arguments: dict) -> None:
        await self._locate(session.page, arguments, "click").click(timeout=self.action_timeout_ms)

    async def _type(self, session: Session, arguments: dict) -> None:
        text = arguments.get("text")
        if text is None:
            text = ""
        await self._locate(session.page, arguments, "type").fill(str(text), timeout=self.action_timeout_ms)

    async def _wait_for_element(self, session: Session, arguments: dict) -> None:
        locator = self._locate(session.page, arguments, "wait-for-element")
        await locator.wait_for(state="visible", timeout=self.wait_for_timeout_ms)

    async def _wait(self, session: Session, arguments: dict) -> None:
        raw = arguments.get("ms", DEFAULT_WAIT_MS)
        try:
            ms = int(raw)
        except (TypeError, ValueError):
            raise SessionArgumentError(f"ms must be an integer, got {raw!r}")
        if ms < 0:
            raise SessionArgumentError("ms must not be negative")
        if ms > self.max_wait_ms:
            raise SessionArgumentError(f"ms must not exceed {self.max_wait_ms}")

        # Closing the session ends the wait early and fails the step.
        pause = asyncio.ensure_future(session.page.wait_for_timeout(ms))
        closing = asyncio.ensure_future(session.closed.wait())
        try:
            await asyncio.wait({pause, closing}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pause.cancel()
            closing.cancel()
        if session.closed.is_set():
            if pause.done() and not pause.cancelled():
                pause.exception()
            raise SessionClosedError("Session closed during wait")
        pause.result()

    async def _noop(self, session: Session, arguments: dict) -> None:
        return None

    def _locate(self, page, arguments: dict, action: str):
        selector = arguments.get("selector")
        if not selector:
            raise SessionArgumentError(f"selector required for {action}")
        engine = arguments.get("engine") or "css"
        if engine not in SELECTOR_ENGINES:
            raise SessionArgumentError(f"Unsupported selector engine: {engine}")
        if engine == "xpath":
            return page.locator(f"xpath={selector}").first
        return page.locator(selector).first

    # ── Snapshots ─────────────────────────────────────────────────────

    async def _view(self, session: Session) -> SessionResult:
        try:
            session.location = session.page.url
            snapshot_ref = await self._capture(session)
        except Exception as e:
            log.error("[SESSION] Screenshot error on %s: %s", session.id, e)
            return SessionResult.failure(
                str(e) or "Screenshot failed",
                session_id=session.id,
                current_location=session.location,
            )
        return SessionResult(
            ok=True,
            session_id=session.id,
            snapshot_ref=snapshot_ref,
            current_location=session.location,
        )

    async def _capture(self, session: Session) -> str:
        session.snapshot_sequence += 1
        filename = f"{session.id}-{session.snapshot_sequence}.png"
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        await session.page.screenshot(path=str(self.snapshot_dir / filename), full_page=False)
        session.last_snapshot_ref = f"{config.WEBSHOTS_URL_PREFIX}/{filename}"
        return session.last_snapshot_ref

    async def _capture_quietly(self, session: Session) -> str | None:
        try:
            session.location = session.page.url
            return await self._capture(session)
        except Exception as e:
            log.warning("[SESSION] Could not snapshot %s after failure: %s", session.id, e)
            return None

    async def _close_browser(self, session: Session) -> None:
        try:
            await session.browser.close()
        except Exception as e:
            log.warning("[SESSION] Close error on %s: %s", session.id, e)
