"""Local execution engine for action definitions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from ..api.client import CaseClient
from ..api.models import WorkflowResult
from ..errors import StepExecutionError
from ..persistence import ActionRun, RunRepository, get_repository
from ..polling import OCR_STATUSES, TRANSCRIPTION_STATUSES, poll_until_terminal
from .steps import Action, ActionDefinition, BaseStep
from .templates import TemplateContext, _to_text, resolve

logger = logging.getLogger(__name__)

StepHandler = Callable[[BaseStep, Dict[str, Any]], Awaitable[Any]]


def workflow_output(result: WorkflowResult) -> Dict[str, Any]:
    """Shape a workflow result for ``{{steps.<id>.output...}}`` lookups."""
    output = result.output
    if isinstance(output.data, dict):
        data = dict(output.data)
        data.setdefault("text", _to_text(output.data))
        return data
    shaped: Dict[str, Any] = {"text": _to_text(output.data)}
    if output.url:
        shaped["url"] = output.url
    return shaped


class CaseServiceHandlers:
    """Default step handlers backed by the Case.dev API."""

    def __init__(self, client: CaseClient, default_model: Optional[str] = None) -> None:
        self._client = client
        self._default_model = default_model or client.config.default_model

    def as_mapping(self) -> Dict[str, StepHandler]:
        return {
            "llm": self.llm,
            "ocr": self.ocr,
            "vault": self.vault,
            "voice": self.voice,
            "workflows": self.workflows,
        }

    async def llm(self, step: BaseStep, resolved: Dict[str, Any]) -> Any:
        fields = resolved["input"]
        options = resolved["options"]
        messages = []
        if fields.get("system"):
            messages.append({"role": "system", "content": fields["system"]})
        messages.append({"role": "user", "content": _to_text(fields["text"])})
        response = await self._client.llm.chat(
            model=options.get("model") or self._default_model,
            messages=messages,
            temperature=options.get("temperature"),
            max_tokens=options.get("max_tokens"),
        )
        choices = response.get("choices") or []
        if not choices:
            raise StepExecutionError(step.id, "LLM returned no choices")
        content = choices[0].get("message", {}).get("content") or ""
        return {"text": content, "content": content, "usage": response.get("usage")}

    async def ocr(self, step: BaseStep, resolved: Dict[str, Any]) -> Any:
        options = resolved["options"]
        job_id = await self._client.ocr.submit(
            document_url=resolved["input"]["document_url"],
            engine=options["engine"],
            tables=options["tables"],
        )
        job = await poll_until_terminal(
            lambda: self._client.ocr.get(job_id),
            OCR_STATUSES,
            interval=self._client.config.polling.ocr_interval,
        )
        job = job or {}
        if job.get("status") != "completed":
            raise StepExecutionError(
                step.id, f"OCR job {job_id} ended {job.get('status')}: {job.get('error')}"
            )
        text = job.get("text")
        if text is None:
            text = (await self._client.ocr.results(job_id)).get("text", "")
        return {"job_id": job_id, "text": text, "page_count": job.get("page_count")}

    async def voice(self, step: BaseStep, resolved: Dict[str, Any]) -> Any:
        options = resolved["options"]
        job_id = await self._client.transcription.submit(
            audio_url=resolved["input"]["audio_url"],
            language_code=options["language_code"],
            speaker_labels=options["speaker_labels"],
        )
        job = await poll_until_terminal(
            lambda: self._client.transcription.get(job_id),
            TRANSCRIPTION_STATUSES,
            interval=self._client.config.polling.transcription_interval,
        )
        job = job or {}
        if job.get("status") != "completed":
            raise StepExecutionError(
                step.id,
                f"Transcription {job_id} ended {job.get('status')}: {job.get('error')}",
            )
        return {
            "job_id": job_id,
            "text": job.get("text") or "",
            "utterances": job.get("utterances") or [],
        }

    async def vault(self, step: BaseStep, resolved: Dict[str, Any]) -> Any:
        fields = resolved["input"]
        vault_id = resolved["vault_id"]
        if resolved["action"] == "upload":
            return await self._client.vaults.upload_text(
                vault_id,
                filename=fields["filename"],
                content=_to_text(fields["content"]),
                metadata=fields.get("metadata") or None,
            )
        chunks = await self._client.vaults.search(
            vault_id, _to_text(fields["query"]), top_k=fields["top_k"]
        )
        return {
            "chunks": [c.model_dump() for c in chunks],
            "text": "\n\n".join(c.text for c in chunks),
        }

    async def workflows(self, step: BaseStep, resolved: Dict[str, Any]) -> Any:
        options = {k: v for k, v in resolved["options"].items() if v is not None}
        result = await self._client.workflows.execute(
            resolved["workflow_id"], input=resolved["input"], options=options or None
        )
        if result.status == "failed":
            raise StepExecutionError(step.id, _to_text(result.output.data) or "workflow failed")
        return workflow_output(result)


class ActionRunner:
    """Execute steps strictly in order, threading outputs through templates.

    Step ``k`` sees ``input``, ``timestamp`` and the outputs of steps
    ``0..k-1`` only. Outputs are stored as copies and never modified. The
    first failing step stops the run; its error is recorded and re-raised.
    """

    def __init__(
        self,
        client: Optional[CaseClient] = None,
        handlers: Optional[Mapping[str, StepHandler]] = None,
        repository: Optional[RunRepository] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if handlers is None:
            if client is None:
                raise ValueError("Either client or handlers must be provided")
            handlers = CaseServiceHandlers(client).as_mapping()
        self._handlers = dict(handlers)
        self._repository = repository if repository is not None else get_repository()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def run(
        self,
        action: Union[Action, ActionDefinition],
        input: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> ActionRun:
        definition = action.definition if isinstance(action, Action) else action
        name = action.name if isinstance(action, Action) else ""
        run_id = run_id or str(uuid.uuid4())
        context = TemplateContext(
            input=dict(input or {}), timestamp=self._clock().isoformat()
        )

        await self._repository.create_run(
            run_id, name, definition.model_dump(mode="json"), context.input
        )
        logger.info(f"Starting action run {run_id} with {len(definition.steps)} steps")

        for step in definition.steps:
            await self._run_step(run_id, step, context)

        await self._repository.mark_run_completed(run_id, "completed")
        logger.info(f"Action run {run_id} completed")
        return await self._repository.get_run(run_id)

    async def _run_step(
        self, run_id: str, step: BaseStep, context: TemplateContext
    ) -> None:
        await self._repository.mark_step_started(run_id, step.id, step.service)
        try:
            handler = self._handlers.get(step.service)
            if handler is None:
                raise StepExecutionError(step.id, f"no handler for service {step.service}")
            resolved = resolve(step.template_fields(), context)
            output = await handler(step, resolved)
        except Exception as e:
            logger.error(f"Step {step.id} of run {run_id} failed: {e}")
            await self._repository.mark_step_completed(
                run_id, step.id, status="failed", error=str(e)
            )
            await self._repository.mark_run_completed(run_id, "failed", error=str(e))
            raise

        context.bind_output(step.id, output)
        await self._repository.mark_step_completed(
            run_id, step.id, status="completed", output=output
        )
        logger.info(f"Step {step.id} ({step.service}) completed for run {run_id}")
