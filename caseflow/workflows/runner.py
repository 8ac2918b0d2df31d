"""Fan-out of workflow executions over vault documents."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from ..api.client import CaseClient
from ..api.models import DocumentRef, VaultObject, WorkflowOutput, WorkflowResult
from ..errors import CaseApiError, RunNotReadyError
from ..events import EventBus
from ..guard import InFlightGuard

logger = logging.getLogger(__name__)


class RunMode(str, Enum):
    COMBINED = "combined"
    SEPARATE = "separate"


def failed_result(
    document: VaultObject, workflow_name: Optional[str], message: str
) -> WorkflowResult:
    """Build the terminal result shown for a document whose execution failed."""
    return WorkflowResult(
        id=f"error-{document.id}-{int(time.time() * 1000)}",
        status="failed",
        workflow_name=workflow_name,
        document_name=document.name,
        output=WorkflowOutput(format="text", data=message),
        created_at=datetime.now(timezone.utc).isoformat(),
    )


class WorkflowRunner:
    """Selection state and execution for one workflow page.

    In separate mode each selected document runs independently and a failure
    becomes a ``failed`` result for that document. In combined mode a single
    request covers every document and its failure propagates.
    """

    def __init__(
        self,
        client: CaseClient,
        bus: Optional[EventBus] = None,
        mode: RunMode = RunMode.SEPARATE,
    ) -> None:
        self._client = client
        self._bus = bus
        self.run_mode = RunMode(mode)
        self.workflow_id: Optional[str] = None
        self.workflow_name: Optional[str] = None
        self.selected_vaults: List[str] = []
        self.selected_documents: Dict[str, VaultObject] = {}
        self.results: List[WorkflowResult] = []
        self._guard = InFlightGuard("workflow execution")

    # ------------------------------------------------------------------
    # Selection
    def select_workflow(self, workflow_id: Optional[str], name: Optional[str] = None) -> None:
        self.workflow_id = workflow_id
        self.workflow_name = name

    def toggle_vault(self, vault_id: str) -> bool:
        """Toggle a vault; deselecting it also drops its documents."""
        if vault_id in self.selected_vaults:
            self.selected_vaults.remove(vault_id)
            self.selected_documents = {
                doc_id: doc
                for doc_id, doc in self.selected_documents.items()
                if doc.vault_id != vault_id
            }
            return False
        self.selected_vaults.append(vault_id)
        return True

    def toggle_document(self, document: VaultObject) -> bool:
        if document.id in self.selected_documents:
            del self.selected_documents[document.id]
            return False
        self.selected_documents[document.id] = document
        return True

    def clear_results(self) -> None:
        self.results = []

    @property
    def can_run(self) -> bool:
        return bool(self.workflow_id) and bool(self.selected_documents)

    @property
    def is_running(self) -> bool:
        return self._guard.busy

    # ------------------------------------------------------------------
    # Execution
    async def run(self) -> List[WorkflowResult]:
        """Execute the selected workflow and return this batch's results.

        Raises:
            RunNotReadyError: If no workflow or no document is selected.
            SubmissionInProgressError: If a run is already outstanding.
            CaseApiError: If a combined execution fails.
        """
        if not self.can_run:
            raise RunNotReadyError("Select a workflow and at least one document")

        documents = list(self.selected_documents.values())
        async with self._guard.hold():
            logger.info(
                f"Running workflow {self.workflow_id} in {self.run_mode.value} mode "
                f"over {len(documents)} documents"
            )
            if self.run_mode is RunMode.COMBINED:
                batch = [await self._run_combined(documents)]
            else:
                batch = await self._run_separate(documents)

        self.results = batch + self.results
        await self._notify_batch(batch)
        return batch

    async def _run_combined(self, documents: List[VaultObject]) -> WorkflowResult:
        try:
            result = await self._client.workflows.execute_combined(
                self.workflow_id, [DocumentRef.from_object(d) for d in documents]
            )
        except CaseApiError as e:
            logger.error(f"Combined execution of {self.workflow_id} failed: {e}")
            if self._bus is not None:
                await self._bus.notify("error", f"Workflow execution failed: {e.message}")
            raise
        result.workflow_name = result.workflow_name or self.workflow_name
        result.document_name = f"Combined ({len(documents)} files)"
        return result

    async def _run_separate(self, documents: List[VaultObject]) -> List[WorkflowResult]:
        return list(await asyncio.gather(*(self._run_one(d) for d in documents)))

    async def _run_one(self, document: VaultObject) -> WorkflowResult:
        try:
            text = await self._client.vaults.object_text(document.vault_id, document.id)
            result = await self._client.workflows.execute(
                self.workflow_id, input={"text": text}
            )
        except Exception as e:
            logger.warning(f"Workflow {self.workflow_id} failed for {document.name}: {e}")
            return failed_result(document, self.workflow_name, str(e))
        result.workflow_name = result.workflow_name or self.workflow_name
        result.document_name = document.name
        return result

    async def _notify_batch(self, batch: List[WorkflowResult]) -> None:
        if self._bus is None:
            return
        failures = sum(1 for r in batch if r.failed)
        if failures:
            await self._bus.notify(
                "error", f"{failures} of {len(batch)} workflow executions failed"
            )
        else:
            await self._bus.notify("success", f"Workflow completed for {len(batch)} result(s)")
