from __future__ import annotations

import asyncio
import time

import pytest

from features.runs import InMemoryRunStore, RunStatus, Step, StepAction, StepStatus
from features.sessions import SessionManager
from workflows.run_executor import RunExecutor


class FakeTimeout(Exception):
    pass


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self) -> "FakeLocator":
        return self

    def _check(self, timeout: int) -> None:
        if self.selector in self.page.missing:
            raise FakeTimeout(f"Timeout {timeout}ms exceeded waiting for locator('{self.selector}')")

    async def click(self, timeout: int) -> None:
        self.page.actions.append(("click", self.selector, timeout))
        self._check(timeout)

    async def fill(self, text: str, timeout: int) -> None:
        self.page.actions.append(("fill", self.selector, text, timeout))
        self._check(timeout)

    async def wait_for(self, state: str, timeout: int) -> None:
        self.page.actions.append(("wait_for", self.selector, state, timeout))
        self._check(timeout)


class FakePage:
    def __init__(self, unreachable=(), missing=()):
        self.url = "about:blank"
        self.unreachable = set(unreachable)
        self.missing = set(missing)
        self.actions: list[tuple] = []
        self.shots: list[str] = []

    async def wait_for_timeout(self, timeout: int) -> None:
        self.actions.append(("wait_for_timeout", timeout))
        await asyncio.sleep(timeout / 1000)

    async def goto(self, url: str, wait_until: str, timeout: int) -> None:
        self.actions.append(("goto", url, wait_until, timeout))
        if url in self.unreachable:
            raise FakeTimeout(f"Timeout {timeout}ms exceeded navigating to {url}")
        self.url = url

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def screenshot(self, path: str, full_page: bool) -> None:
        self.shots.append(path)
        with open(path, "wb") as f:
            f.write(b"\x89PNG")


class FakeBrowser:
    def __init__(self):
        self.close_calls = 0

    async def close(self) -> None:
        self.close_calls += 1


class Harness:
    def __init__(self, snapshot_dir, **page_kwargs):
        self.page_kwargs = page_kwargs
        self.browsers: list[FakeBrowser] = []
        self.pages: list[FakePage] = []
        self.manager = SessionManager(launcher=self._launch, snapshot_dir=snapshot_dir)

    async def _launch(self):
        browser, page = FakeBrowser(), FakePage(**self.page_kwargs)
        self.browsers.append(browser)
        self.pages.append(page)
        return browser, page


@pytest.fixture
def harness(snapshot_dir):
    return Harness(snapshot_dir)


def run(coro):
    return asyncio.run(coro)


def test_open_takes_first_snapshot(harness, snapshot_dir):
    result = run(harness.manager.open())
    assert result.ok
    assert result.session_id.startswith("ws-")
    assert result.snapshot_ref == f"/webshots/{result.session_id}-1.png"
    assert result.current_location == "about:blank"
    assert (snapshot_dir / f"{result.session_id}-1.png").exists()
    assert len(harness.manager) == 1


def test_open_with_location_navigates_before_snapshot(harness):
    result = run(harness.manager.open("https://example.com/"))
    page = harness.pages[0]
    assert result.current_location == "https://example.com/"
    assert page.actions[0] == ("goto", "https://example.com/", "domcontentloaded", 30000)
    assert len(page.shots) == 1


def test_open_failure_is_reported_and_browser_closed(snapshot_dir):
    h = Harness(snapshot_dir, unreachable={"https://down.example/"})
    result = run(h.manager.open("https://down.example/"))
    assert not result.ok
    assert "Timeout" in result.error
    assert h.browsers[0].close_calls == 1
    assert len(h.manager) == 0


def test_launch_failure_is_reported(snapshot_dir):
    async def broken():
        raise RuntimeError("Executable doesn't exist at /ms-playwright/chromium")

    manager = SessionManager(launcher=broken, snapshot_dir=snapshot_dir)
    result = run(manager.open())
    assert not result.ok
    assert "Executable doesn't exist" in result.error


def test_snapshots_count_up_per_session(harness):
    async def scenario():
        m = harness.manager
        opened = await m.open()
        sid = opened.session_id
        nav = await m.step(sid, "navigate", {"url": "https://example.com/"})
        click = await m.step(sid, "click", {"selector": "text=Rentals"})
        shot = await m.screenshot(sid)
        return sid, nav, click, shot

    sid, nav, click, shot = run(scenario())
    assert nav.snapshot_ref.endswith(f"{sid}-2.png")
    assert nav.current_location == "https://example.com/"
    assert click.snapshot_ref.endswith(f"{sid}-3.png")
    assert shot.snapshot_ref.endswith(f"{sid}-4.png")


def test_click_type_and_wait_for_use_their_timeouts(harness):
    async def scenario():
        m = harness.manager
        sid = (await m.open()).session_id
        await m.step(sid, "click", {"selector": "text=Search"})
        await m.step(sid, "type", {"selector": "input[name=q]", "text": "Austin"})
        await m.step(sid, "wait-for-element", {"selector": "#results"})

    run(scenario())
    actions = harness.pages[0].actions
    assert ("click", "text=Search", 10000) in actions
    assert ("fill", "input[name=q]", "Austin", 10000) in actions
    assert ("wait_for", "#results", "visible", 15000) in actions


def test_xpath_engine_prefixes_selector(harness):
    async def scenario():
        m = harness.manager
        sid = (await m.open()).session_id
        return await m.step(sid, "click", {"selector": "//button[1]", "engine": "xpath"})

    assert run(scenario()).ok
    assert ("click", "xpath=//button[1]", 10000) in harness.pages[0].actions


def test_missing_element_fails_but_still_snapshots(snapshot_dir):
    h = Harness(snapshot_dir, missing={"#nope"})

    async def scenario():
        sid = (await h.manager.open()).session_id
        return sid, await h.manager.step(sid, "click", {"selector": "#nope"})

    sid, result = run(scenario())
    assert not result.ok
    assert "Timeout 10000ms" in result.error
    assert result.snapshot_ref.endswith(f"{sid}-2.png")


def test_plain_wait_does_not_snapshot(harness):
    async def scenario():
        m = harness.manager
        sid = (await m.open()).session_id
        return await m.step(sid, "wait", {"ms": 10})

    result = run(scenario())
    assert result.ok
    assert result.snapshot_ref.endswith("-1.png")
    assert len(harness.pages[0].shots) == 1


@pytest.mark.parametrize("action, arguments, message", [
    ("navigate", {}, "url required"),
    ("click", {}, "selector required"),
    ("type", {"text": "x"}, "selector required"),
    ("wait-for-element", {"selector": ""}, "selector required"),
    ("click", {"selector": "a", "engine": "regex"}, "Unsupported selector engine"),
    ("wait", {"ms": "soon"}, "ms must be an integer"),
    ("wait", {"ms": -5}, "must not be negative"),
    ("wait", {"ms": 60001}, "must not exceed 60000"),
    ("goto", {"url": "https://example.com/"}, "Unknown action"),
    ("diagnostic-info", {"message": "hi"}, "Unknown action"),
])
def test_bad_steps_are_errors(harness, action, arguments, message):
    async def scenario():
        sid = (await harness.manager.open()).session_id
        return await harness.manager.step(sid, action, arguments)

    result = run(scenario())
    assert not result.ok
    assert message in result.error


def test_closing_session_cuts_a_wait_short(harness):
    async def scenario():
        m = harness.manager
        sid = (await m.open()).session_id
        waiting = asyncio.ensure_future(m.step(sid, "wait", {"ms": 3000}))
        await asyncio.sleep(0.05)
        started = time.monotonic()
        await m.close(sid)
        result = await asyncio.wait_for(waiting, 1)
        return result, time.monotonic() - started

    result, elapsed = run(scenario())
    assert elapsed < 1.0
    assert not result.ok
    assert result.error == "Session closed during wait"
    assert ("wait_for_timeout", 3000) in harness.pages[0].actions


def test_stop_fails_a_running_wait_promptly(harness):
    async def scenario():
        store = InMemoryRunStore()
        executor = RunExecutor(store, harness.manager, step_delay=0, pause_poll_interval=0.01,
                               max_steps=0, run_timeout=0)
        agent_run = store.create([Step(StepAction.WAIT, {"ms": 3000}), Step(StepAction.SCREENSHOT, {})])
        task = executor.launch(agent_run)
        while agent_run.steps[0].status is not StepStatus.RUNNING:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        started = time.monotonic()
        await executor.stop(agent_run)
        await asyncio.wait_for(task, 1)
        return agent_run, time.monotonic() - started

    agent_run, elapsed = run(scenario())
    assert elapsed < 1.0
    assert agent_run.status is RunStatus.STOPPED
    assert agent_run.steps[0].status is StepStatus.FAILED
    assert agent_run.steps[1].status is StepStatus.QUEUED
    assert harness.browsers[0].close_calls == 1


class FakeContext:
    def __init__(self, fail: bool):
        self.fail = fail

    async def new_page(self):
        if self.fail:
            raise RuntimeError("Target page, context or browser has been closed")
        return FakePage()


class FakeChromium:
    def __init__(self, fail_context: bool = False, fail_page: bool = False):
        self.fail_context = fail_context
        self.fail_page = fail_page
        self.browsers: list[FakeBrowser] = []

    async def launch(self, headless: bool, args: list[str]):
        chromium = self
        browser = FakeBrowser()

        async def new_context(viewport):
            if chromium.fail_context:
                raise RuntimeError("Browser.newContext: browser has disconnected")
            return FakeContext(chromium.fail_page)

        browser.new_context = new_context
        self.browsers.append(browser)
        return browser


@pytest.mark.parametrize("fail_context, fail_page", [(True, False), (False, True)])
def test_partial_launch_closes_browser(snapshot_dir, fail_context, fail_page):
    chromium = FakeChromium(fail_context=fail_context, fail_page=fail_page)
    manager = SessionManager(snapshot_dir=snapshot_dir)
    manager._playwright = type("FakePlaywright", (), {"chromium": chromium})()

    result = run(manager.open())
    assert not result.ok
    assert [b.close_calls for b in chromium.browsers] == [1]
    assert len(manager) == 0


def test_unknown_session_is_an_error(harness):
    result = run(harness.manager.step("ws-missing", "click", {"selector": "a"}))
    assert not result.ok
    assert result.error == "Session not found"
    assert not run(harness.manager.screenshot("ws-missing")).ok


def test_close_is_idempotent(harness):
    async def scenario():
        m = harness.manager
        sid = (await m.open()).session_id
        first = await m.close(sid)
        second = await m.close(sid)
        unknown = await m.close("ws-never-opened")
        after = await m.step(sid, "screenshot", {})
        return first, second, unknown, after

    first, second, unknown, after = run(scenario())
    assert first.ok and second.ok and unknown.ok
    assert harness.browsers[0].close_calls == 1
    assert not after.ok


def test_reopen_starts_new_counter(harness):
    async def scenario():
        m = harness.manager
        a = await m.open()
        await m.screenshot(a.session_id)
        b = await m.open()
        return a, b

    a, b = run(scenario())
    assert a.session_id != b.session_id
    assert b.snapshot_ref.endswith(f"{b.session_id}-1.png")


def test_shutdown_closes_all_sessions(harness):
    async def scenario():
        m = harness.manager
        await m.open()
        await m.open()
        await m.shutdown()

    run(scenario())
    assert len(harness.manager) == 0
    assert [b.close_calls for b in harness.browsers] == [1, 1]


def test_result_to_dict_shapes():
    from features.sessions import SessionResult

    ok = SessionResult(ok=True, session_id="ws-1", snapshot_ref="/webshots/ws-1-1.png", current_location="about:blank")
    assert ok.to_dict() == {
        "ok": True,
        "sessionId": "ws-1",
        "snapshotRef": "/webshots/ws-1-1.png",
        "currentLocation": "about:blank",
    }
    assert SessionResult.failure("Session not found").to_dict() == {"ok": False, "error": "Session not found"}
