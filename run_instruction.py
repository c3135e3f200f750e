"""
Run one instruction in-process, without the HTTP server.

Usage:
    python run_instruction.py "go to zillow.com and take a screenshot"
    python run_instruction.py --headed --planner llm "open redfin.com"

Prints the final run record as JSON and exits non-zero unless the run
completed.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

import config
from activities.parse import parse_instruction
from activities.plan_llm import plan_with_llm
from features.runs import InMemoryRunStore, RunStatus
from features.sessions import SessionManager
from workflows.run_executor import RunExecutor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)


async def main(instruction: str, planner: str) -> int:
    parse = plan_with_llm if planner == "llm" else parse_instruction
    steps = parse(instruction)

    store = InMemoryRunStore()
    sessions = SessionManager()
    executor = RunExecutor(store, sessions)
    run = store.create(steps, instruction=instruction)

    log.info("Executing %s", run.id)
    try:
        await executor.execute(run)
    finally:
        await sessions.shutdown()

    print(json.dumps(run.to_dict(), indent=2))
    return 0 if run.status is RunStatus.COMPLETED else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Execute a browser instruction once")
    parser.add_argument("instruction")
    parser.add_argument("--planner", choices=["heuristic", "llm"], default=config.PLANNER)
    parser.add_argument("--headed", action="store_true", help="show the browser window")
    args = parser.parse_args()
    if args.headed:
        config.HEADLESS = False
    sys.exit(asyncio.run(main(args.instruction, args.planner)))
