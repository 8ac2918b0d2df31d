"""Pydantic models for records exchanged with the Case.dev API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ApiRecord(BaseModel):
    """Base for API records; unknown fields are preserved."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Vault(ApiRecord):
    id: str
    name: str = ""
    description: Optional[str] = None


class VaultObject(ApiRecord):
    """A document stored in a vault."""

    id: str
    vault_id: str = Field(alias="vaultId")
    name: str = Field(default="", alias="filename")
    content_type: Optional[str] = Field(default=None, alias="contentType")
    size_bytes: Optional[int] = Field(default=None, alias="sizeBytes")
    ingestion_status: Optional[str] = Field(default=None, alias="ingestionStatus")


class DocumentRef(ApiRecord):
    """Reference sent to the combined workflow endpoint."""

    id: str
    vault_id: str = Field(alias="vaultId")
    name: str

    @classmethod
    def from_object(cls, obj: VaultObject) -> "DocumentRef":
        return cls(id=obj.id, vaultId=obj.vault_id, name=obj.name)


class SearchChunk(ApiRecord):
    id: Optional[str] = None
    object_id: Optional[str] = None
    object_name: Optional[str] = None
    text: str = ""
    score: float = 0.0


class WorkflowSummary(ApiRecord):
    id: str
    name: str = ""
    description: Optional[str] = None


class WorkflowOutput(ApiRecord):
    format: Literal["json", "text", "pdf"] = "text"
    data: Any = None
    url: Optional[str] = None


class WorkflowUsage(ApiRecord):
    total_tokens: int = 0
    cost: float = 0.0


class WorkflowResult(ApiRecord):
    """Normalized execution result shown in the results list."""

    id: str
    status: str
    output: WorkflowOutput = Field(default_factory=WorkflowOutput)
    workflow_id: Optional[str] = None
    workflow_name: Optional[str] = None
    usage: Optional[WorkflowUsage] = None
    duration_ms: Optional[int] = None
    created_at: Optional[str] = None
    document_name: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class OcrJob(ApiRecord):
    id: str
    status: Optional[str] = None
    filename: Optional[str] = None
    document_id: Optional[str] = None
    engine: Optional[str] = None
    page_count: int = 0
    chunk_count: int = 0
    chunks_completed: int = 0
    chunks_processing: int = 0
    chunks_failed: int = 0
    error: Optional[str] = None

    @field_validator(
        "page_count", "chunk_count", "chunks_completed", "chunks_processing", "chunks_failed",
        mode="before",
    )
    @classmethod
    def _cleared_counter(cls, value: Any) -> Any:
        # An explicit null clears the counter.
        return 0 if value is None else value

    @property
    def progress(self) -> int:
        """Percentage of chunks completed, rounded."""
        if self.chunk_count <= 0:
            return 0
        return round_percent(self.chunks_completed, self.chunk_count)


class Utterance(ApiRecord):
    speaker: Optional[str] = None
    text: str = ""
    start: Optional[int] = None
    end: Optional[int] = None


class TranscriptionJob(ApiRecord):
    id: str
    status: Optional[str] = None
    text: Optional[str] = None
    utterances: List[Utterance] = Field(default_factory=list)
    words: List[Dict[str, Any]] = Field(default_factory=list)
    audio_duration: Optional[float] = None
    error: Optional[str] = None

    @field_validator("utterances", "words", mode="before")
    @classmethod
    def _cleared_list(cls, value: Any) -> Any:
        return [] if value is None else value


DataType = Literal["text", "number", "boolean", "date"]


class ExtractionColumn(ApiRecord):
    id: str
    name: str
    prompt: str = ""
    data_type: DataType = Field(default="text", alias="dataType")
    order: int = 0
    model_id: Optional[str] = Field(default=None, alias="modelId")


class CellValue(ApiRecord):
    """Result of one (document, column) extraction.

    ``value is None`` means not yet computed (or not found), which is distinct
    from a computed falsy value.
    """

    value: Union[bool, float, int, str, None] = None
    confidence: Optional[float] = None
    reasoning: Optional[str] = None
    sources: Optional[List[str]] = None
    tokens_used: Optional[int] = Field(default=None, alias="tokensUsed")
    error: Optional[str] = None


class AnalysisRow(ApiRecord):
    id: Optional[str] = None
    document_id: str = Field(alias="documentId")
    document_title: Optional[str] = Field(default=None, alias="documentTitle")
    data: Dict[str, CellValue] = Field(default_factory=dict)
    tokens_used: Optional[int] = Field(default=None, alias="tokensUsed")
    extracted_at: Optional[datetime] = Field(default=None, alias="extractedAt")


class AnalysisDocument(ApiRecord):
    id: str
    title: str = ""


class TabularAnalysis(ApiRecord):
    id: str
    name: str = ""
    status: str = "draft"
    model_id: Optional[str] = Field(default=None, alias="modelId")
    vault_id: Optional[str] = Field(default=None, alias="vaultId")
    document_ids: List[str] = Field(default_factory=list, alias="documentIds")
    documents: List[AnalysisDocument] = Field(default_factory=list)
    columns: List[ExtractionColumn] = Field(default_factory=list)
    rows: List[AnalysisRow] = Field(default_factory=list)


def round_percent(part: int, total: int) -> int:
    """Percentage rounded half up, matching what the dashboard displays."""
    if total <= 0:
        return 0
    return int(part * 100 / total + 0.5)
