"""Step and action definitions.

A step is a tagged union keyed by ``service``; each variant declares the
input and option fields it accepts so malformed steps fail at construction.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any, ClassVar, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..errors import StepReferenceError
from .templates import unresolved_references

ServiceType = Literal["llm", "ocr", "vault", "voice", "workflows"]
OcrEngine = Literal["doctr", "tesseract", "paddle", "google"]
SERVICES: Tuple[str, ...] = ("llm", "ocr", "vault", "voice", "workflows")

STEP_ID_PATTERN = r"^[A-Za-z0-9_-]+$"


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid")


class LlmInput(_Strict):
    text: str = ""
    system: Optional[str] = None


class LlmOptions(_Strict):
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)


class OcrInput(_Strict):
    document_url: str = ""


class OcrOptions(_Strict):
    engine: OcrEngine = "doctr"
    tables: bool = False


class VoiceInput(_Strict):
    audio_url: str = ""


class VoiceOptions(_Strict):
    language_code: str = "en"
    speaker_labels: bool = True


class VaultInput(_Strict):
    filename: Optional[str] = None
    content: Any = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    query: Optional[str] = None
    top_k: int = Field(default=10, gt=0)


class WorkflowOptions(_Strict):
    model: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0)


class BaseStep(_Strict):
    id: Annotated[str, Field(min_length=1, pattern=STEP_ID_PATTERN)]
    description: Optional[str] = None

    required_fields: ClassVar[Tuple[str, ...]] = ()

    def missing_fields(self) -> List[str]:
        """Dotted names of required fields that are still empty."""
        missing = []
        for name in self.required_fields:
            value: Any = self
            for part in name.split("."):
                value = getattr(value, part)
            if value in (None, ""):
                missing.append(name)
        return missing

    def template_fields(self) -> Dict[str, Any]:
        """Fields that may carry ``{{...}}`` placeholders."""
        return self.model_dump(exclude={"id", "service", "description"})


class LlmStep(BaseStep):
    service: Literal["llm"] = "llm"
    input: LlmInput = Field(default_factory=LlmInput)
    options: LlmOptions = Field(default_factory=LlmOptions)

    required_fields: ClassVar[Tuple[str, ...]] = ("input.text",)


class OcrStep(BaseStep):
    service: Literal["ocr"] = "ocr"
    input: OcrInput = Field(default_factory=OcrInput)
    options: OcrOptions = Field(default_factory=OcrOptions)

    required_fields: ClassVar[Tuple[str, ...]] = ("input.document_url",)


class VoiceStep(BaseStep):
    service: Literal["voice"] = "voice"
    input: VoiceInput = Field(default_factory=VoiceInput)
    options: VoiceOptions = Field(default_factory=VoiceOptions)

    required_fields: ClassVar[Tuple[str, ...]] = ("input.audio_url",)


class VaultStep(BaseStep):
    service: Literal["vault"] = "vault"
    action: Literal["upload", "search"] = "upload"
    vault_id: str = ""
    input: VaultInput = Field(default_factory=VaultInput)
    options: Dict[str, Any] = Field(default_factory=dict)

    def missing_fields(self) -> List[str]:
        missing = ["vault_id"] if not self.vault_id else []
        if self.action == "upload":
            if not self.input.filename:
                missing.append("input.filename")
            if self.input.content in (None, ""):
                missing.append("input.content")
        elif not self.input.query:
            missing.append("input.query")
        return missing


class WorkflowStep(BaseStep):
    service: Literal["workflows"] = "workflows"
    workflow_id: str = ""
    # Workflow inputs are defined by the remote workflow (text, document_url, ...).
    input: Dict[str, Any] = Field(default_factory=dict)
    options: WorkflowOptions = Field(default_factory=WorkflowOptions)

    required_fields: ClassVar[Tuple[str, ...]] = ("workflow_id",)


Step = Annotated[
    Union[LlmStep, OcrStep, VaultStep, VoiceStep, WorkflowStep],
    Field(discriminator="service"),
]

STEP_TYPES: Dict[str, type] = {
    "llm": LlmStep,
    "ocr": OcrStep,
    "vault": VaultStep,
    "voice": VoiceStep,
    "workflows": WorkflowStep,
}


def new_step(service: str, step_id: str) -> BaseStep:
    """Create an empty step of the given service."""
    try:
        return STEP_TYPES[service](id=step_id)
    except KeyError:
        raise ValueError(f"Unknown service: {service}") from None


def definition_problems(steps: List[BaseStep]) -> List[str]:
    """Describe every authoring problem in an ordered step list.

    Checks id uniqueness, required fields, and that each step only refers
    to outputs of steps placed strictly before it.
    """
    problems: List[str] = []
    seen: set = set()
    for index, step in enumerate(steps):
        if step.id in seen:
            problems.append(f"step {index + 1}: duplicate id '{step.id}'")
        for name in step.missing_fields():
            problems.append(f"step '{step.id}': missing {name}")
        for expression in unresolved_references(step.template_fields(), seen):
            problems.append(
                f"step '{step.id}': {{{{{expression}}}}} is not input or an earlier step"
            )
        seen.add(step.id)
    return problems


class ActionDefinition(BaseModel):
    steps: List[Step] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_steps(self) -> "ActionDefinition":
        problems = definition_problems(self.steps)
        if problems:
            raise StepReferenceError("; ".join(problems))
        return self


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Action(BaseModel):
    """Saved action record."""

    id: str
    name: str
    description: str = ""
    definition: ActionDefinition = Field(default_factory=ActionDefinition)
    webhook_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
