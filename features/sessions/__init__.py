"""
Sessions feature — controllable browsing contexts used by runs.

Public API:
    from features.sessions import SessionManager, Session, SessionResult
"""

from features.sessions.manager import SessionArgumentError, SessionClosedError, SessionManager
from features.sessions.models import Session, SessionResult

__all__ = ["Session", "SessionArgumentError", "SessionClosedError", "SessionManager", "SessionResult"]
