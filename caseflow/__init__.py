"""caseflow: orchestration for Case.dev legal-ops services."""

from .actions import ActionBuilder, ActionRunner
from .api import CaseClient
from .config import CaseflowConfig, load_config
from .events import EventBus
from .jobs import JobSubmitter, OcrJobView, TranscriptionJobView
from .live import LiveTranscriptionSession
from .persistence import get_repository
from .polling import Poller, poll_until_terminal
from .tabular import ExtractionGrid, compute_progress
from .workflows import RunMode, WorkflowRunner

__version__ = "0.1.0"
__all__ = [
    "ActionBuilder",
    "ActionRunner",
    "CaseClient",
    "CaseflowConfig",
    "EventBus",
    "ExtractionGrid",
    "JobSubmitter",
    "LiveTranscriptionSession",
    "OcrJobView",
    "Poller",
    "RunMode",
    "TranscriptionJobView",
    "WorkflowRunner",
    "compute_progress",
    "get_repository",
    "load_config",
    "poll_until_terminal",
]
