"""
OpenAI helpers for the model-backed instruction planner.
"""

from __future__ import annotations

import json
import logging
import time

from openai import APITimeoutError, OpenAI, RateLimitError

import config

log = logging.getLogger(__name__)

_client: OpenAI | None = None

MAX_RETRIES = 3
BASE_DELAY = 2  # seconds
REQUEST_TIMEOUT = 20  # seconds


def get_client() -> OpenAI:
    global _client
    if _client is None:
        _client = OpenAI(api_key=config.OPENAI_API_KEY, timeout=REQUEST_TIMEOUT)
    return _client


def is_configured() -> bool:
    return bool(config.OPENAI_API_KEY)


def chat(
    system: str,
    user: str,
    model: str | None = None,
    json_mode: bool = False,
    temperature: float = 0.0,
    max_tokens: int = 1024,
) -> str:
    """Send a chat completion request and return the assistant message.

    Retries rate limits and timeouts with exponential backoff; any other
    API error propagates.
    """
    client = get_client()
    kwargs: dict = {
        "model": model or config.OPENAI_MODEL,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    for attempt in range(MAX_RETRIES):
        try:
            resp = client.chat.completions.create(**kwargs)
            return resp.choices[0].message.content or ""
        except (RateLimitError, APITimeoutError) as e:
            if attempt == MAX_RETRIES - 1:
                raise
            delay = BASE_DELAY * (2 ** attempt)
            log.warning(
                "[LLM] %s (attempt %d/%d), retrying in %ds",
                type(e).__name__, attempt + 1, MAX_RETRIES, delay,
            )
            time.sleep(delay)

    return ""


def chat_json(system: str, user: str, **kwargs) -> dict:
    """Send a chat completion and parse the JSON response.

    Raises ValueError when the model does not return a JSON object.
    """
    raw = chat(system, user, json_mode=True, **kwargs)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        log.error("[LLM] Failed to parse JSON response: %s", raw[:500])
        raise ValueError("model returned invalid JSON")
    if not isinstance(data, dict):
        raise ValueError("model returned JSON that is not an object")
    return data
