"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))

# Paths
PROJECT_ROOT = Path(__file__).parent
WEBSHOTS_DIR = Path(os.getenv("WEBSHOTS_DIR", str(PROJECT_ROOT / "webshots")))
WEBSHOTS_URL_PREFIX = "/webshots"

# Browser
HEADLESS = os.getenv("HEADLESS", "true").lower() != "false"
VIEWPORT_WIDTH = int(os.getenv("VIEWPORT_WIDTH", "1280"))
VIEWPORT_HEIGHT = int(os.getenv("VIEWPORT_HEIGHT", "800"))
BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]

# Per-action timeouts (milliseconds)
NAVIGATION_TIMEOUT_MS = int(os.getenv("NAVIGATION_TIMEOUT_MS", "30000"))
ACTION_TIMEOUT_MS = int(os.getenv("ACTION_TIMEOUT_MS", "10000"))
WAIT_FOR_TIMEOUT_MS = int(os.getenv("WAIT_FOR_TIMEOUT_MS", "15000"))
MAX_WAIT_MS = int(os.getenv("MAX_WAIT_MS", "60000"))

# Executor
STEP_DELAY_SEC = float(os.getenv("STEP_DELAY_SEC", "0.3"))
PAUSE_POLL_INTERVAL_SEC = float(os.getenv("PAUSE_POLL_INTERVAL_SEC", "0.5"))
LOG_TAIL = max(50, int(os.getenv("LOG_TAIL", "50")))

# Ceilings (0 disables)
MAX_STEPS_PER_RUN = int(os.getenv("MAX_STEPS_PER_RUN", "0"))
RUN_TIMEOUT_SEC = float(os.getenv("RUN_TIMEOUT_SEC", "0"))

# Instruction planner: "heuristic" or "llm"
PLANNER = os.getenv("PLANNER", "heuristic").lower()

# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1")

# Postgres (optional run audit trail)
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Listing sites the parser knows by name
LISTING_SITES = {
    "zillow": "zillow.com",
    "redfin": "redfin.com",
    "realtor": "realtor.com",
    "trulia": "trulia.com",
    "apartments": "apartments.com",
}
