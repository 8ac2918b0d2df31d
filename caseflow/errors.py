"""Exception hierarchy for caseflow."""

from __future__ import annotations

from typing import Optional


class CaseflowError(Exception):
    """Base class for all caseflow errors."""


class CaseApiError(CaseflowError):
    """Non-2xx response from the Case.dev API."""

    def __init__(self, status_code: int, message: Optional[str] = None) -> None:
        self.status_code = status_code
        self.message = message or f"API Error: {status_code}"
        super().__init__(self.message)


class CaseConnectionError(CaseApiError):
    """The Case.dev API could not be reached; no response was received."""

    def __init__(self, message: str) -> None:
        super().__init__(0, message)


class TemplateResolutionError(CaseflowError):
    """A ``{{...}}`` placeholder could not be resolved."""

    def __init__(self, placeholder: str, reason: Optional[str] = None) -> None:
        self.placeholder = placeholder
        detail = f": {reason}" if reason else ""
        super().__init__(f"Unresolved placeholder {{{{{placeholder}}}}}{detail}")


class StepReferenceError(CaseflowError):
    """An action definition fails its authoring checks."""


class RunNotReadyError(CaseflowError):
    """Workflow execution requested without a workflow or documents."""


class SubmissionInProgressError(CaseflowError):
    """A submission is already outstanding for this trigger."""


class GridLockedError(CaseflowError):
    """Structural grid edit attempted while an extraction run is active."""


class InvalidColumnError(CaseflowError, ValueError):
    """Extraction columns are missing or malformed."""


class StepExecutionError(CaseflowError):
    """A service call made for an action step did not succeed."""

    def __init__(self, step_id: str, message: str) -> None:
        self.step_id = step_id
        super().__init__(f"Step '{step_id}' failed: {message}")
