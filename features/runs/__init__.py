"""
Runs feature — the registry of agent runs and their steps.

Public API:
    from features.runs import Run, RunStatus, Step, StepAction, StepStatus
    from features.runs import InMemoryRunStore, RunStore
    from features.runs import db as run_db
"""

from features.runs.models import (
    Run,
    RunStatus,
    Step,
    StepAction,
    StepStatus,
    StepTransitionError,
    TERMINAL_STATUSES,
)
from features.runs.store import InMemoryRunStore, RunStore

__all__ = [
    "Run",
    "RunStatus",
    "Step",
    "StepAction",
    "StepStatus",
    "StepTransitionError",
    "TERMINAL_STATUSES",
    "InMemoryRunStore",
    "RunStore",
]
