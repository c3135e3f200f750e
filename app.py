"""
FastAPI application — REST API for Web Pilot.

Endpoints:
  POST /agent/execute              — Parse an instruction and start a run
  GET  /agent/runs                 — List runs
  GET  /agent/runs/{run_id}        — Get run status, steps and recent logs
  POST /agent/runs/{run_id}/pause  — Pause between steps
  POST /agent/runs/{run_id}/resume — Resume a paused run
  POST /agent/runs/{run_id}/stop   — Stop a run and release its browser
  POST /agent/web/open|step|screenshot|close — Session protocol
  GET  /agent/web/recipes          — List saved recipes
  POST /agent/web/recipes          — Save a recipe
  POST /agent/recipes/{name}/run   — Start a run from a saved recipe
  GET  /health                     — Health check
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.staticfiles import StaticFiles

import config
from activities.parse import UrlNormalizationError, normalize_url, parse_instruction
from activities.plan_llm import plan_with_llm
from features.recipes import RecipeError, RecipeStore, build_steps
from features.runs import InMemoryRunStore, Run
from features.runs import db as run_db
from features.sessions import SessionManager, SessionResult
from models.schemas import (
    ExecuteRequest,
    ExecuteResponse,
    OpenSessionRequest,
    RecipeRequest,
    RunStatusResponse,
    SessionRefRequest,
    StepSessionRequest,
    StepSummary,
)
from workflows.run_executor import RunExecutor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

PARSERS = {
    "heuristic": parse_instruction,
    "llm": plan_with_llm,
}

db_ready = False


def _persist_run(record: dict) -> None:
    if db_ready:
        run_db.upsert_run(record)


run_store = InMemoryRunStore(persist=_persist_run)
session_manager = SessionManager()
executor = RunExecutor(run_store, session_manager)
recipe_store = RecipeStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    global db_ready
    if config.DATABASE_URL:
        try:
            run_db.init_db()
            db_ready = True
            log.info("Postgres database initialized")
        except Exception as e:
            log.warning("Could not connect to Postgres: %s (runs will be in-memory only)", e)
    yield
    await executor.shutdown()
    await session_manager.shutdown()


app = FastAPI(
    title="Web Pilot",
    description="Turns natural-language instructions into browser automation runs you can poll, pause and stop",
    version="1.0.0",
    lifespan=lifespan,
)

config.WEBSHOTS_DIR.mkdir(parents=True, exist_ok=True)
app.mount(config.WEBSHOTS_URL_PREFIX, StaticFiles(directory=config.WEBSHOTS_DIR), name="webshots")


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "web-pilot",
        "db_connected": db_ready,
        "planner": config.PLANNER,
        "sessions": len(session_manager),
        "active_runs": executor.active,
    }


# ── Runs ──────────────────────────────────────────────────────────────

def _get_run(run_id: str) -> Run:
    run = run_store.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")
    return run


def _start(run: Run) -> ExecuteResponse:
    response = ExecuteResponse(
        run_id=run.id,
        steps=[StepSummary(**s.summary()) for s in run.steps],
    )
    executor.launch(run)
    return response


@app.post("/agent/execute", response_model=ExecuteResponse)
async def execute_instruction(req: ExecuteRequest | None = None):
    """Parse an instruction into steps and start executing them in the background."""
    instruction = (req.instruction if req else None) or ""
    if not instruction.strip():
        raise HTTPException(status_code=400, detail="instruction is required")

    log.info("[AGENT] Execute request: %s", instruction)
    parser = PARSERS.get(config.PLANNER, parse_instruction)
    loop = asyncio.get_running_loop()
    steps = await loop.run_in_executor(None, parser, instruction)
    run = run_store.create(steps, instruction=instruction.strip())
    return _start(run)


@app.get("/agent/runs")
async def list_runs(status: str | None = None, limit: int = 50):
    """List live runs, newest first; falls back to the Postgres history."""
    runs = [r.summary() for r in run_store.list(limit=limit, status=status)]
    if runs or not db_ready:
        return {"runs": runs}
    try:
        rows = run_db.list_runs(limit=limit, status=status)
    except Exception as e:
        log.warning("Could not list runs from Postgres: %s", e)
        return {"runs": []}
    return {"runs": [_serialize(_row_summary(r)) for r in rows]}


@app.get("/agent/runs/{run_id}")
async def get_run(run_id: str):
    """Get a run's status, steps, location, last snapshot and recent logs."""
    run = run_store.get(run_id)
    if run is not None:
        return run.to_dict(log_tail=config.LOG_TAIL)

    if db_ready:
        try:
            row = run_db.get_run(run_id)
        except Exception as e:
            log.warning("Could not read run %s from Postgres: %s", run_id, e)
            row = None
        if row:
            return _serialize(_row_to_run(row))

    raise HTTPException(status_code=404, detail=f"Run not found: {run_id}")


@app.post("/agent/runs/{run_id}/pause", response_model=RunStatusResponse)
async def pause_run(run_id: str):
    run = _get_run(run_id)
    if run.pause():
        run_store.save(run)
    return RunStatusResponse(status=run.status.value)


@app.post("/agent/runs/{run_id}/resume", response_model=RunStatusResponse)
async def resume_run(run_id: str):
    run = _get_run(run_id)
    if run.resume():
        run_store.save(run)
    return RunStatusResponse(status=run.status.value)


@app.post("/agent/runs/{run_id}/stop", response_model=RunStatusResponse)
async def stop_run(run_id: str):
    run = _get_run(run_id)
    status = await executor.stop(run)
    return RunStatusResponse(status=status.value)


# ── Session protocol ──────────────────────────────────────────────────

@app.post("/agent/web/open")
async def open_session(req: OpenSessionRequest | None = None):
    location = req.location if req else None
    if location:
        try:
            location = normalize_url(location)
        except UrlNormalizationError as e:
            return SessionResult.failure(str(e)).to_dict()
    result = await session_manager.open(location)
    return result.to_dict()


@app.post("/agent/web/step")
async def step_session(req: StepSessionRequest):
    if not req.session_id or not req.action:
        return SessionResult.failure("sessionId and action required").to_dict()
    result = await session_manager.step(req.session_id, req.action, req.arguments)
    return result.to_dict()


@app.post("/agent/web/screenshot")
async def screenshot_session(req: SessionRefRequest):
    if not req.session_id:
        return SessionResult.failure("sessionId required").to_dict()
    result = await session_manager.screenshot(req.session_id)
    return result.to_dict()


@app.post("/agent/web/close")
async def close_session(req: SessionRefRequest):
    if not req.session_id:
        return SessionResult.failure("sessionId required").to_dict()
    result = await session_manager.close(req.session_id)
    return result.to_dict()


# ── Recipes ───────────────────────────────────────────────────────────

@app.get("/agent/web/recipes")
async def list_recipes():
    return [r.to_dict() for r in recipe_store.list()]


@app.post("/agent/web/recipes")
async def save_recipe(req: RecipeRequest):
    try:
        recipe_store.save(req.name or "", req.steps or [])
    except RecipeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [r.to_dict() for r in recipe_store.list()]


@app.post("/agent/recipes/{name}/run", response_model=ExecuteResponse)
async def run_recipe(name: str):
    """Start a new run from a saved recipe."""
    recipe = recipe_store.get(name)
    if recipe is None:
        raise HTTPException(status_code=404, detail=f"Recipe not found: {name}")
    try:
        steps = build_steps(recipe.steps)
    except RecipeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    run = run_store.create(steps, instruction=f"recipe:{name}")
    return _start(run)


# ── Helpers ───────────────────────────────────────────────────────────

def _row_to_run(row: dict) -> dict:
    return {
        "runId": row["run_id"],
        "status": row["status"],
        "instruction": row.get("instruction", ""),
        "steps": row.get("steps") or [],
        "currentLocation": row.get("current_location", ""),
        "lastSnapshot": row.get("last_snapshot"),
        "sessionId": None,
        "logs": (row.get("logs") or [])[-config.LOG_TAIL:],
        "createdAt": row.get("created_at"),
        "completedAt": row.get("completed_at"),
        "error": row.get("error"),
    }


def _row_summary(row: dict) -> dict:
    return {
        "runId": row["run_id"],
        "status": row["status"],
        "instruction": row.get("instruction", ""),
        "steps": len(row.get("steps") or []),
        "createdAt": row.get("created_at"),
        "completedAt": row.get("completed_at"),
    }


def _serialize(obj: Any) -> Any:
    """Make a dict JSON-serializable (handle datetimes, Decimals, etc)."""
    if isinstance(obj, dict):
        return {k: _serialize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_serialize(v) for v in obj]
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return obj


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.HOST, port=config.PORT)
