"""Client for the Case.dev vault, OCR, voice, workflow and LLM services."""

from .client import CaseClient
from .models import (
    AnalysisRow,
    CellValue,
    DocumentRef,
    ExtractionColumn,
    OcrJob,
    TabularAnalysis,
    TranscriptionJob,
    VaultObject,
    WorkflowResult,
    WorkflowSummary,
)

__all__ = [
    "CaseClient",
    "AnalysisRow",
    "CellValue",
    "DocumentRef",
    "ExtractionColumn",
    "OcrJob",
    "TabularAnalysis",
    "TranscriptionJob",
    "VaultObject",
    "WorkflowResult",
    "WorkflowSummary",
]
