"""In-memory implementation of the run repository."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from .models import ActionRun, StepRecord
from .repository import RunRepository


class InMemoryRunRepository(RunRepository):
    """Store action runs in local memory.

    Used when no database is configured. Data is not persisted across
    process restarts.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, ActionRun] = {}
        self._step_id = 0

    # ------------------------------------------------------------------
    async def create_run(
        self,
        run_id: str,
        action_name: str,
        definition: dict,
        input: dict | None = None,
    ) -> None:
        self._runs[run_id] = ActionRun(
            run_id=run_id,
            action_name=action_name,
            definition=definition,
            input=input or {},
        )

    async def mark_step_started(self, run_id: str, step_id: str, service: str) -> None:
        run = self._runs.get(run_id)
        if not run:
            return
        # ignore duplicate starts
        if any(step.step_id == step_id for step in run.steps):
            return
        self._step_id += 1
        run.steps.append(
            StepRecord(
                id=self._step_id,
                run_id=run_id,
                step_id=step_id,
                service=service,
                started_at=datetime.now(timezone.utc),
                status="running",
            )
        )

    async def mark_step_completed(
        self,
        run_id: str,
        step_id: str,
        status: str,
        output: Any = None,
        error: str | None = None,
    ) -> None:
        run = self._runs.get(run_id)
        if not run:
            return
        for step in run.steps:
            if step.step_id == step_id and step.completed_at is None:
                step.completed_at = datetime.now(timezone.utc)
                step.status = status
                step.output = output
                step.error = error
                break

    async def mark_run_completed(
        self, run_id: str, status: str = "completed", error: str | None = None
    ) -> None:
        run = self._runs.get(run_id)
        if run:
            run.status = status
            run.error = error

    async def get_run(self, run_id: str) -> ActionRun | None:
        return self._runs.get(run_id)

    async def list_runs(self) -> list[ActionRun]:
        return list(self._runs.values())
