"""
Activity: Plan with LLM — model-backed alternative to the heuristic parser.

Same contract as ``parse_instruction``: text in, non-empty step list out,
never raises. The model proposes steps as JSON; each is validated (known
action, safe URL for navigation) and anything unusable sends the whole
instruction back through the heuristic parser.
"""

from __future__ import annotations

import logging

import config

from activities.parse import UrlNormalizationError, normalize_url, parse_instruction
from features.runs.models import DIAGNOSTIC_ACTIONS, Step, StepAction
from utils import llm

log = logging.getLogger(__name__)

MAX_PLANNED_STEPS = 20

SYSTEM_PROMPT = """You convert a property manager's browser instruction into automation steps.

Return a JSON object: {"steps": [{"action": ..., "arguments": {...}}, ...]}

Allowed actions and their arguments:
- navigate: {"url": "<absolute http(s) URL or bare domain>"}
- click: {"selector": "<Playwright selector, prefer text=Visible Text>"}
- type: {"selector": "<CSS selector of the field>", "text": "<text to enter>"}
- wait-for-element: {"selector": "<selector>"}
- wait: {"ms": <milliseconds>}
- screenshot: {}

Optional "engine": "xpath" in arguments when the selector is an XPath.
Keep the order the user asked for. Return {"steps": []} if nothing is actionable."""


def _validate(raw: dict) -> Step:
    step = Step.from_dict(raw)
    if step.action in DIAGNOSTIC_ACTIONS:
        raise ValueError(f"planner may not emit {step.action.value}")
    if step.action is StepAction.NAVIGATE:
        step.arguments["url"] = normalize_url(str(step.arguments.get("url", "")))
    elif step.action in (StepAction.CLICK, StepAction.TYPE, StepAction.WAIT_FOR_ELEMENT):
        if not step.arguments.get("selector"):
            raise ValueError(f"{step.action.value} needs a selector")
    elif step.action is StepAction.WAIT:
        step.arguments["ms"] = min(max(int(step.arguments.get("ms", 1000)), 0), config.MAX_WAIT_MS)
    return step


def plan_with_llm(text: str) -> list[Step]:
    """Ask the model for steps; fall back to the heuristic parser on any problem."""
    if not llm.is_configured():
        log.warning("[PLAN] OPENAI_API_KEY not set, using heuristic parser")
        return parse_instruction(text)

    try:
        data = llm.chat_json(SYSTEM_PROMPT, text if isinstance(text, str) else "")
        proposed = data.get("steps") or []
        if not isinstance(proposed, list):
            raise ValueError("steps must be a list")
        steps = [_validate(item) for item in proposed[:MAX_PLANNED_STEPS]]
    except UrlNormalizationError as e:
        log.info("[PLAN] Model proposed an unsafe address: %s", e)
        return [Step(StepAction.DIAGNOSTIC_ERROR, {"message": str(e)})]
    except Exception as e:
        log.warning("[PLAN] LLM planning failed (%s), using heuristic parser", e)
        return parse_instruction(text)

    if not steps:
        return parse_instruction(text)
    log.info("[PLAN] %d step(s) from model", len(steps))
    return steps
