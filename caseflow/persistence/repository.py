"""Repository abstraction for action run persistence."""

from __future__ import annotations

from typing import Any, Protocol

from .models import ActionRun


class RunRepository(Protocol):
    """Protocol for action run persistence backends."""

    async def create_run(
        self,
        run_id: str,
        action_name: str,
        definition: dict,
        input: dict | None = None,
    ) -> None:
        """Persist initial run state."""

    async def mark_step_started(self, run_id: str, step_id: str, service: str) -> None:
        """Record start of a step."""

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        """Record completion of a step."""

    async def mark_run_completed(
        self, run_id: str, status: str = "completed", error: str | None = None
    ) -> None:
        """Mark the run as finished."""

    async def get_run(self, run_id: str) -> ActionRun | None:
        """Retrieve the run by id."""

    async def list_runs(self) -> list[ActionRun]:
        """Return all persisted runs."""
