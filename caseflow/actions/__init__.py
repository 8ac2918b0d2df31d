"""Locally authored multi-service actions."""

from .builder import SAMPLE_ACTIONS, ActionBuilder, load_sample
from .runner import ActionRunner, CaseServiceHandlers
from .steps import (
    Action,
    ActionDefinition,
    LlmStep,
    OcrStep,
    Step,
    VaultStep,
    VoiceStep,
    WorkflowStep,
)
from .templates import TemplateContext, resolve

__all__ = [
    "Action",
    "ActionBuilder",
    "ActionDefinition",
    "ActionRunner",
    "CaseServiceHandlers",
    "LlmStep",
    "OcrStep",
    "SAMPLE_ACTIONS",
    "Step",
    "TemplateContext",
    "VaultStep",
    "VoiceStep",
    "WorkflowStep",
    "load_sample",
    "resolve",
]
