"""Data models for persisted action runs."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    """Record of an individual step execution."""

    id: Optional[int] = None
    run_id: str
    step_id: str
    service: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    status: Optional[str] = None
    output: Optional[Any] = None
    error: Optional[str] = None


class ActionRun(BaseModel):
    """Persisted action run."""

    run_id: str
    action_name: str = ""
    definition: dict[str, Any] = Field(default_factory=dict)
    input: dict[str, Any] = Field(default_factory=dict)
    status: str = "running"
    error: Optional[str] = None
    steps: list[StepRecord] = Field(default_factory=list)

    def outputs(self) -> dict[str, Any]:
        """Outputs of completed steps keyed by step id."""
        return {s.step_id: s.output for s in self.steps if s.status == "completed"}
