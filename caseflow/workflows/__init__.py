"""Execution of remote workflows over selected vault documents."""

from .runner import RunMode, WorkflowRunner, failed_result

__all__ = ["RunMode", "WorkflowRunner", "failed_result"]
