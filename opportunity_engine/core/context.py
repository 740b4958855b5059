"""
Run context management for log correlation.

Every optimization run gets a run_id that is bound into structlog's
contextvars, so every log line and captured error emitted while the run is
active carries it.

Usage:
    run_id = start_run_context()
    try:
        logger.info("Starting")  # includes run_id=run_...
    finally:
        clear_context()
"""

from contextvars import ContextVar
from typing import Optional
import uuid

import structlog

__all__ = [
    "generate_run_id",
    "start_run_context",
    "get_run_id",
    "set_iteration",
    "get_iteration",
    "clear_context",
    "get_context_dict",
]

_run_id: ContextVar[Optional[str]] = ContextVar("run_id", default=None)
_iteration: ContextVar[Optional[int]] = ContextVar("iteration", default=None)


def generate_run_id() -> str:
    """
    Generate a new run ID.

    Format: run_{16 hex chars}
    """
    return f"run_{uuid.uuid4().hex[:16]}"


def start_run_context(run_id: Optional[str] = None) -> str:
    """Set the run ID for the current context and bind it for logging."""
    run_id = run_id or generate_run_id()
    _run_id.set(run_id)
    _iteration.set(None)
    structlog.contextvars.bind_contextvars(run_id=run_id)
    return run_id


def get_run_id() -> Optional[str]:
    return _run_id.get()


def set_iteration(iteration: Optional[int]) -> None:
    """Record the iteration currently executing (None between iterations)."""
    _iteration.set(iteration)
    if iteration is None:
        structlog.contextvars.unbind_contextvars("iteration")
    else:
        structlog.contextvars.bind_contextvars(iteration=iteration)


def get_iteration() -> Optional[int]:
    return _iteration.get()


def clear_context() -> None:
    """
    Clear all context variables.

    Called at the end of a run to prevent context leaking into the next one.
    """
    _run_id.set(None)
    _iteration.set(None)
    structlog.contextvars.unbind_contextvars("run_id", "iteration")


def get_context_dict() -> dict:
    """Get all context variables as dict, for enriching error reports."""
    return {
        "run_id": get_run_id(),
        "iteration": get_iteration(),
    }
