"""Structural editor for action definitions."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter, ValidationError

from .steps import (
    Action,
    ActionDefinition,
    BaseStep,
    Step,
    definition_problems,
    new_step,
)
from .templates import referenced_steps

logger = logging.getLogger(__name__)

_STEP_ADAPTER: TypeAdapter = TypeAdapter(Step)


class ActionBuilder:
    """Edit an action as a list of steps or as raw JSON.

    Edits never execute anything. The step list may be temporarily invalid
    (for example after reordering); ``problems()`` reports what ``build()``
    would reject.
    """

    def __init__(self, action: Optional[Action] = None) -> None:
        self.action_id: Optional[str] = None
        self.name = ""
        self.description = ""
        self.webhook_id: Optional[str] = None
        self.steps: List[BaseStep] = []
        self.dirty = False
        self.code_error: Optional[str] = None
        if action is not None:
            self.action_id = action.id
            self.name = action.name
            self.description = action.description
            self.webhook_id = action.webhook_id
            self.steps = list(action.definition.steps)

    # ------------------------------------------------------------------
    # Visual mode
    def add_step(self, service: str) -> BaseStep:
        step = new_step(service, self._next_step_id())
        self.steps.append(step)
        self.dirty = True
        return step

    def _next_step_id(self) -> str:
        taken = {s.id for s in self.steps}
        n = len(self.steps) + 1
        while f"step_{n}" in taken:
            n += 1
        return f"step_{n}"

    def remove_step(self, index: int) -> List[str]:
        """Remove a step and return ids of steps that referenced it."""
        removed = self.steps.pop(index)
        self.dirty = True
        dependents = [
            s.id for s in self.steps if removed.id in referenced_steps(s.template_fields())
        ]
        if dependents:
            logger.warning(
                f"Removed step {removed.id} is still referenced by: {', '.join(dependents)}"
            )
        return dependents

    def move_step(self, index: int, direction: str) -> bool:
        """Swap a step with its neighbour; no-op at either end."""
        if direction not in ("up", "down"):
            raise ValueError(f"direction must be 'up' or 'down', got {direction!r}")
        target = index - 1 if direction == "up" else index + 1
        if target < 0 or target >= len(self.steps):
            return False
        self.steps[index], self.steps[target] = self.steps[target], self.steps[index]
        self.dirty = True
        return True

    def duplicate_step(self, index: int) -> BaseStep:
        source = self.steps[index]
        copy_id = f"{source.id}_copy"
        while any(s.id == copy_id for s in self.steps):
            copy_id += "_copy"
        clone = source.model_copy(update={"id": copy_id}, deep=True)
        self.steps.insert(index + 1, clone)
        self.dirty = True
        return clone

    def update_step(self, index: int, **changes: Any) -> BaseStep:
        """Replace top-level fields of a step, revalidating the result.

        Changing ``service`` yields a fresh step of the new service with the
        same id.
        """
        current = self.steps[index]
        if "service" in changes and changes["service"] != current.service:
            data: Dict[str, Any] = {"id": current.id, "description": current.description}
        else:
            data = current.model_dump()
        data.update(changes)
        updated = _STEP_ADAPTER.validate_python(data)
        self.steps[index] = updated
        self.dirty = True
        return updated

    def set_nested(self, index: int, parent: str, key: str, value: Any) -> BaseStep:
        """Set ``input[key]`` or ``options[key]`` on a step."""
        if parent not in ("input", "options"):
            raise ValueError(f"parent must be 'input' or 'options', got {parent!r}")
        current = self.steps[index].model_dump()
        nested = dict(current.get(parent) or {})
        nested[key] = value
        return self.update_step(index, **{parent: nested})

    # ------------------------------------------------------------------
    # Code mode
    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "definition": {"steps": [s.model_dump(exclude_none=True) for s in self.steps]},
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def load_json(self, text: str) -> Optional[str]:
        """Apply an edited JSON document.

        Returns the parse or validation error instead of raising so the
        editor can show it; on error the previous state is kept.
        """
        try:
            parsed = json.loads(text)
            steps_data = (parsed.get("definition") or {}).get("steps")
            steps = (
                [_STEP_ADAPTER.validate_python(s) for s in steps_data]
                if steps_data is not None
                else None
            )
        except (ValueError, AttributeError, ValidationError) as e:
            self.code_error = str(e)
            return self.code_error

        if parsed.get("name"):
            self.name = parsed["name"]
        if parsed.get("description"):
            self.description = parsed["description"]
        if steps is not None:
            self.steps = steps
        self.code_error = None
        self.dirty = True
        return None

    # ------------------------------------------------------------------
    def problems(self) -> List[str]:
        return definition_problems(self.steps)

    def build(self, action_id: Optional[str] = None) -> Action:
        """Return a validated action.

        Raises:
            pydantic.ValidationError: If a step is malformed.
            StepReferenceError: If the step list has authoring problems.
        """
        definition = ActionDefinition.model_validate(
            {"steps": [s.model_dump() for s in self.steps]}
        )
        action = Action(
            id=action_id or self.action_id or _slug(self.name),
            name=self.name,
            description=self.description,
            definition=definition,
            webhook_id=self.webhook_id,
        )
        self.dirty = False
        return action


def _slug(name: str) -> str:
    slug = "".join(c if c.isalnum() else "_" for c in name.lower()).strip("_")
    return f"act_{slug or 'untitled'}"


SAMPLE_ACTIONS: Dict[str, Dict[str, Any]] = {
    "act_dep_summary": {
        "id": "act_dep_summary",
        "name": "Deposition Summary Action",
        "description": "Process deposition transcript end-to-end",
        "definition": {
            "steps": [
                {
                    "id": "summarize",
                    "service": "workflows",
                    "workflow_id": "deposition_summary_workflow",
                    "input": {"text": "{{input.transcript}}"},
                    "options": {"model": "anthropic/claude-sonnet-4.5", "max_tokens": 3000},
                },
                {
                    "id": "extract_timeline",
                    "service": "llm",
                    "input": {
                        "text": "From this summary, extract a timeline of events as JSON: "
                        "{{steps.summarize.output.text}}"
                    },
                    "options": {"model": "anthropic/claude-sonnet-4.5", "max_tokens": 1000},
                },
                {
                    "id": "store_summary",
                    "service": "vault",
                    "action": "upload",
                    "vault_id": "case_vault_123",
                    "input": {
                        "filename": "deposition_summary.json",
                        "content": "{{steps.summarize.output}}",
                        "metadata": {
                            "case_id": "{{input.case_id}}",
                            "document_type": "deposition_summary",
                            "processed_at": "{{timestamp}}",
                        },
                    },
                },
            ]
        },
    },
    "act_contract_analysis": {
        "id": "act_contract_analysis",
        "name": "Contract Analysis",
        "description": "OCR contract, analyze clauses, identify risks",
        "definition": {
            "steps": [
                {
                    "id": "ocr",
                    "service": "ocr",
                    "input": {"document_url": "{{input.contract_url}}"},
                },
                {
                    "id": "extract_clauses",
                    "service": "llm",
                    "input": {
                        "text": "Extract all indemnification clauses from this contract "
                        "as JSON: {{steps.ocr.output.text}}"
                    },
                    "options": {"model": "openai/gpt-5", "max_tokens": 2000, "temperature": 0},
                },
                {
                    "id": "risk_analysis",
                    "service": "llm",
                    "input": {
                        "text": "Analyze these clauses for risks: "
                        "{{steps.extract_clauses.output.content}}"
                    },
                    "options": {"model": "anthropic/claude-opus-4.1", "max_tokens": 1500},
                },
            ]
        },
    },
    "act_meeting_transcribe": {
        "id": "act_meeting_transcribe",
        "name": "Audio Transcription Pipeline",
        "description": "Transcribe audio, summarize, extract action items",
        "webhook_id": "webhook_notifications",
        "definition": {
            "steps": [
                {
                    "id": "transcribe",
                    "service": "voice",
                    "input": {"audio_url": "{{input.audio_url}}"},
                },
                {
                    "id": "summarize",
                    "service": "llm",
                    "input": {
                        "text": "Summarize this meeting transcript: "
                        "{{steps.transcribe.output.text}}"
                    },
                    "options": {"max_tokens": 1000},
                },
                {
                    "id": "action_items",
                    "service": "llm",
                    "input": {
                        "text": "Extract action items as JSON from: "
                        "{{steps.transcribe.output.text}}"
                    },
                    "options": {"max_tokens": 500},
                },
            ]
        },
    },
}


def load_sample(action_id: str) -> Action:
    return Action.model_validate(SAMPLE_ACTIONS[action_id])
