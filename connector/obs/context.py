"""Context variables attached to every structured log line.

``request_id_var`` is set per outgoing HTTP call, ``session_generation_var``
whenever the session manager moves to a new generation.
"""

from contextvars import ContextVar
from typing import Optional


# Public ContextVars (names are stable API)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
session_generation_var: ContextVar[Optional[int]] = ContextVar("session_generation", default=None)


def clear_context() -> None:
    """Reset context variables to defaults."""
    request_id_var.set(None)
    session_generation_var.set(None)
