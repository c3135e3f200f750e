"""
Activity: Parse Instruction — turns free-form text into an ordered step list.

Heuristic and pattern-first: each category (navigate, click, type, wait,
screenshot) contributes at most one step, first matching pattern wins.
The parser never raises and never returns an empty list; when nothing
actionable is recognised it returns one diagnostic step explaining why.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urlsplit

import config
from features.runs.models import Step, StepAction

log = logging.getLogger(__name__)

BLOCKED_SCHEMES = ("file://", "javascript:", "data:")

GENERIC_INPUT_SELECTOR = 'input[type="text"], input:not([type]), textarea'
SEARCH_INPUT_SELECTOR = 'input[type="search"], input[name="q"], input[name="search"], input'

EXAMPLE_PHRASINGS = ('"go to zillow.com"', '"click the search button"')

_VERB = r"\b(?:go to|navigate to|open|visit|browse to)"
_TAIL = r"(?:\s+and\b|\s+then\b|[,;]|$)"

NAVIGATE_PATTERNS = [
    re.compile(_VERB + r"\s+(?:the\s+)?(?:website\s+)?[\"']?([^\s\"',;]+)[\"']?", re.I),
    re.compile(_VERB + r"\s+(.+?)" + _TAIL, re.I),
]

CLICK_PATTERNS = [
    re.compile(r"\bclick\s+(?:on\s+)?(?:the\s+)?[\"']([^\"']+)[\"']", re.I),
    re.compile(r"\bclick\s+(?:on\s+)?(?:the\s+)?(\S+)\s+(?:button|link|element)", re.I),
    re.compile(r"\bclick\s+(?:on\s+)?(?:the\s+)?(.+?)" + _TAIL, re.I),
]

# (pattern, text group, field group or None, is_search)
TYPE_PATTERNS = [
    (re.compile(r"\btype\s+[\"']([^\"']+)[\"']\s+(?:in|into)\s+(?:the\s+)?[\"']?([^\"',;]+?)[\"']?(?:\s+(?:field|box|input))?" + _TAIL, re.I), 1, 2, False),
    (re.compile(r"\benter\s+[\"']([^\"']+)[\"']\s+(?:in|into)\s+(?:the\s+)?[\"']?([^\"',;]+?)[\"']?(?:\s+(?:field|box|input))?" + _TAIL, re.I), 1, 2, False),
    (re.compile(r"\bfill\s+(?:in\s+)?(?:the\s+)?[\"']?([^\"']+?)[\"']?\s+with\s+[\"']([^\"']+)[\"']", re.I), 2, 1, False),
    (re.compile(r"\b(?:type|enter)\s+[\"']([^\"']+)[\"']", re.I), 1, None, False),
    (re.compile(r"\bsearch\s+(?:for\s+)?[\"']([^\"']+)[\"']", re.I), 1, None, True),
    (re.compile(r"\bsearch\s+for\s+(.+?)" + _TAIL, re.I), 1, None, True),
]

WAIT_SECONDS_PATTERN = re.compile(
    r"\bwait\s+(?:for\s+)?(\d+)(?:\s*(?:seconds?|secs?|s)\b|(?=\s+and\b|\s+then\b|\s*[,;.]|\s*$))", re.I,
)
WAIT_ELEMENT_PATTERN = re.compile(r"\bwait\s+(?:for\s+)?(?:the\s+)?[\"']([^\"']+)[\"']", re.I)

SCREENSHOT_PATTERN = re.compile(r"screenshot|snapshot|\bcapture\b|take a picture", re.I)


class UrlNormalizationError(ValueError):
    """The candidate address is unsafe or not a web address."""


def normalize_url(raw: str) -> str:
    """Return an absolute http(s) URL for ``raw`` or raise UrlNormalizationError.

    Bare domains ("zillow.com", "www.example.com") get an https:// prefix.
    file:, javascript: and data: addresses are refused outright.
    """
    if not raw or not isinstance(raw, str) or not raw.strip():
        raise UrlNormalizationError("URL is required")

    url = raw.strip()
    if url.lower().startswith(BLOCKED_SCHEMES):
        raise UrlNormalizationError("Only http and https URLs are supported")

    if not re.match(r"^https?://", url, re.I):
        if re.match(r"^[a-z][a-z0-9+.-]*:(?!\d)", url, re.I):
            raise UrlNormalizationError("Only http and https URLs are supported")
        if url.lower().startswith("www.") or ("." in url and " " not in url):
            url = "https://" + url
        else:
            raise UrlNormalizationError(
                f'Invalid URL format: "{raw}". Please provide a valid web address.'
            )

    try:
        parts = urlsplit(url)
        host = parts.hostname
    except ValueError:
        raise UrlNormalizationError(f'Could not parse URL: "{raw}"')
    if parts.scheme.lower() not in ("http", "https"):
        raise UrlNormalizationError("Only http and https URLs are supported")
    if not host or " " in url:
        raise UrlNormalizationError(f'Could not parse URL: "{raw}"')
    return parts._replace(scheme=parts.scheme.lower(), path=parts.path or "/").geturl()


def _field_selector(field: str) -> str:
    field = field.strip().replace('"', "")
    return f'[placeholder*="{field}" i], [name*="{field}" i], [aria-label*="{field}" i], input'


def _navigate_step(text: str) -> Step | None:
    for pattern in NAVIGATE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        candidate = match.group(1).strip().rstrip(".,!?")
        try:
            url = normalize_url(candidate)
        except UrlNormalizationError as e:
            return Step(StepAction.DIAGNOSTIC_ERROR, {"message": str(e)})
        return Step(StepAction.NAVIGATE, {"url": url})
    return None


def _click_step(text: str) -> Step | None:
    for pattern in CLICK_PATTERNS:
        match = pattern.search(text)
        if match:
            target = match.group(1).strip().rstrip(".,!?")
            if target:
                return Step(StepAction.CLICK, {"selector": f"text={target}", "description": target})
    return None


def _type_step(text: str) -> Step | None:
    for pattern, text_group, field_group, is_search in TYPE_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        value = match.group(text_group).strip()
        if is_search:
            selector = SEARCH_INPUT_SELECTOR
        elif field_group is not None and match.group(field_group).strip():
            selector = _field_selector(match.group(field_group))
        else:
            selector = GENERIC_INPUT_SELECTOR
        return Step(StepAction.TYPE, {"selector": selector, "text": value})
    return None


def _wait_step(text: str) -> Step | None:
    match = WAIT_SECONDS_PATTERN.search(text)
    if match:
        return Step(StepAction.WAIT, {"ms": min(int(match.group(1)) * 1000, config.MAX_WAIT_MS)})
    match = WAIT_ELEMENT_PATTERN.search(text)
    if match:
        target = match.group(1).strip()
        return Step(StepAction.WAIT_FOR_ELEMENT, {"selector": f"text={target}", "description": target})
    return None


def _listing_site_step(text: str) -> Step | None:
    lower = text.lower()
    for name, domain in config.LISTING_SITES.items():
        if re.search(rf"\b{name}\b", lower):
            return Step(StepAction.NAVIGATE, {"url": f"https://www.{domain}/"})
    return None


def parse_instruction(text: str) -> list[Step]:
    """Parse ``text`` into steps. Total and deterministic in actions/arguments."""
    if not isinstance(text, str):
        text = ""
    text = text.strip()
    steps: list[Step] = []

    navigate = _navigate_step(text)
    if navigate is not None:
        steps.append(navigate)
        if navigate.action is StepAction.DIAGNOSTIC_ERROR:
            log.info("[PARSE] Unsafe or invalid address: %s", navigate.arguments["message"])
            return steps

    for extract in (_click_step, _type_step, _wait_step):
        step = extract(text)
        if step is not None:
            steps.append(step)

    if SCREENSHOT_PATTERN.search(text):
        steps.append(Step(StepAction.SCREENSHOT, {}))

    if not steps:
        site = _listing_site_step(text)
        if site is not None:
            steps.append(site)

    if not steps:
        steps.append(Step(StepAction.DIAGNOSTIC_INFO, {
            "message": (
                f'Could not parse actionable steps from: "{text}". '
                f"Try commands like {EXAMPLE_PHRASINGS[0]} or {EXAMPLE_PHRASINGS[1]}."
            ),
        }))

    log.info("[PARSE] %d step(s): %s", len(steps), ", ".join(s.action.value for s in steps))
    return steps
