"""Run-scoped log context for digest executions.

Every log line emitted during a digest run carries the run's correlation id
and, once the execution row exists, its ``execution_id``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from uuid import uuid4

from event_digest.config.logging_config import bind_context, unbind_context

CORRELATION_ID_KEY = "correlation_id"
EXECUTION_ID_KEY = "execution_id"


@dataclass
class RunScope:
    """Handle returned by :func:`run_scope`."""

    correlation_id: str
    execution_id: int | None = None
    _bound: list[str] = field(default_factory=list)

    def attach_execution(self, execution_id: int | None) -> None:
        """Bind the execution row id once the reporter has created it."""
        self.execution_id = execution_id
        if execution_id is None:
            return
        bind_context(**{EXECUTION_ID_KEY: execution_id})
        if EXECUTION_ID_KEY not in self._bound:
            self._bound.append(EXECUTION_ID_KEY)


@contextmanager
def run_scope(existing_id: str | None = None) -> Iterator[RunScope]:
    """Bind a correlation id (and later an execution id) for one run."""

    scope = RunScope(correlation_id=existing_id or uuid4().hex)
    bind_context(**{CORRELATION_ID_KEY: scope.correlation_id})
    scope._bound.append(CORRELATION_ID_KEY)
    try:
        yield scope
    finally:
        unbind_context(*scope._bound)


__all__ = ["CORRELATION_ID_KEY", "EXECUTION_ID_KEY", "RunScope", "run_scope"]
