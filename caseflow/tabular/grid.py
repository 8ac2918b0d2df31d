"""Document by column extraction grid with remote progress tracking."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, List, Mapping, Optional, Set, Union

from ..api.client import CaseClient
from ..api.models import (
    AnalysisRow,
    CellValue,
    ExtractionColumn,
    TabularAnalysis,
    round_percent,
)
from ..errors import CaseApiError, GridLockedError, InvalidColumnError
from ..events import EventBus
from ..guard import InFlightGuard
from ..polling import TABULAR_STATUSES, Poller, Snapshot, merge_keyed_rows

logger = logging.getLogger(__name__)

RowLike = Union[AnalysisRow, Mapping[str, Any]]

DEFAULT_COLUMN_NAME = "New Column"


def compute_progress(
    rows: Iterable[RowLike], document_count: int, column_count: int
) -> int:
    """Percentage of extracted cells.

    A cell counts once its column id appears in the row's ``data``; pending
    cells are absent rather than present with ``None``.
    """
    total = document_count * column_count
    if total <= 0:
        return 0
    completed = 0
    for row in rows:
        data = row.data if isinstance(row, AnalysisRow) else row.get("data")
        completed += len(data or {})
    return round_percent(completed, total)


class ExtractionGrid:
    """Local state of one tabular analysis.

    Structural edits are saved with a PUT and applied locally only once the
    server accepts them. They are refused while an extraction run is active.
    """

    def __init__(
        self,
        client: CaseClient,
        analysis: TabularAnalysis,
        interval: Optional[float] = None,
        bus: Optional[EventBus] = None,
    ) -> None:
        self._client = client
        self._bus = bus
        self.analysis = analysis
        self.interval = (
            interval if interval is not None else client.config.polling.tabular_interval
        )
        self.progress = compute_progress(
            analysis.rows, self.document_count, len(analysis.columns)
        )
        self.selected_rows: Set[str] = set()
        self._guard = InFlightGuard("extraction run")
        self._poller: Optional[Poller] = None

    @classmethod
    async def load(
        cls,
        client: CaseClient,
        analysis_id: str,
        interval: Optional[float] = None,
        bus: Optional[EventBus] = None,
    ) -> "ExtractionGrid":
        return cls(client, await client.tabular.load(analysis_id), interval, bus)

    # ------------------------------------------------------------------
    # Read side
    @property
    def analysis_id(self) -> str:
        return self.analysis.id

    @property
    def status(self) -> str:
        return self.analysis.status

    @property
    def columns(self) -> List[ExtractionColumn]:
        return sorted(self.analysis.columns, key=lambda c: c.order)

    @property
    def document_count(self) -> int:
        return len(self.analysis.documents) or len(self.analysis.document_ids)

    @property
    def is_running(self) -> bool:
        return self._guard.busy or (self._poller is not None and self._poller.running)

    def row(self, document_id: str) -> Optional[AnalysisRow]:
        for row in self.analysis.rows:
            if row.document_id == document_id:
                return row
        return None

    def get_cell(self, document_id: str, column_id: str) -> Optional[CellValue]:
        row = self.row(document_id)
        if row is None:
            return None
        return row.data.get(column_id)

    def completed_cells(self, document_id: str) -> int:
        row = self.row(document_id)
        return len(row.data) if row else 0

    # ------------------------------------------------------------------
    # Row selection
    def toggle_row(self, document_id: str) -> None:
        if document_id in self.selected_rows:
            self.selected_rows.discard(document_id)
        else:
            self.selected_rows.add(document_id)

    def toggle_all_rows(self) -> None:
        ids = [d.id for d in self.analysis.documents]
        if ids and len(self.selected_rows) == len(ids):
            self.selected_rows = set()
        else:
            self.selected_rows = set(ids)

    # ------------------------------------------------------------------
    # Structural edits
    def _ensure_unlocked(self) -> None:
        if self.is_running:
            raise GridLockedError(
                f"Analysis {self.analysis_id} is running; column edits are locked"
            )

    async def _save_columns(self, columns: List[ExtractionColumn]) -> None:
        await self._client.tabular.update(
            self.analysis_id,
            columns=[c.model_dump(by_alias=True, exclude_none=True) for c in columns],
        )
        self.analysis.columns = columns

    async def add_column(
        self,
        name: str = DEFAULT_COLUMN_NAME,
        prompt: str = "",
        data_type: str = "text",
        model_id: Optional[str] = None,
    ) -> ExtractionColumn:
        self._ensure_unlocked()
        column = ExtractionColumn(
            id=str(uuid.uuid4()),
            name=name,
            prompt=prompt,
            dataType=data_type,
            order=len(self.analysis.columns),
            modelId=model_id,
        )
        await self._save_columns([*self.analysis.columns, column])
        return column

    async def update_column(self, column_id: str, **changes: Any) -> ExtractionColumn:
        self._ensure_unlocked()
        updated: Optional[ExtractionColumn] = None
        columns = []
        for column in self.analysis.columns:
            if column.id == column_id:
                data = column.model_dump()
                data.update(changes)
                column = updated = ExtractionColumn.model_validate(data)
            columns.append(column)
        if updated is None:
            raise InvalidColumnError(f"Unknown column: {column_id}")
        await self._save_columns(columns)
        return updated

    async def delete_column(self, column_id: str) -> None:
        """Remove a column, renumber ``order`` and drop that column's cells."""
        self._ensure_unlocked()
        remaining = [c for c in self.columns if c.id != column_id]
        if len(remaining) == len(self.analysis.columns):
            raise InvalidColumnError(f"Unknown column: {column_id}")
        renumbered = [c.model_copy(update={"order": i}) for i, c in enumerate(remaining)]
        await self._save_columns(renumbered)
        for row in self.analysis.rows:
            row.data.pop(column_id, None)
        self._refresh_progress()

    async def set_default_model(self, model_id: str) -> None:
        await self._client.tabular.update(self.analysis_id, modelId=model_id)
        self.analysis.model_id = model_id

    # ------------------------------------------------------------------
    # Extraction
    def _refresh_progress(self) -> None:
        self.progress = compute_progress(
            self.analysis.rows, self.document_count, len(self.analysis.columns)
        )

    def _apply_snapshot(self, snapshot: Snapshot) -> None:
        known = {c.id for c in self.analysis.columns}
        rows = []
        for raw in snapshot.get("rows") or []:
            row = AnalysisRow.model_validate(raw)
            orphaned = [key for key in row.data if key not in known]
            for key in orphaned:
                del row.data[key]
            if orphaned:
                logger.debug(f"Dropped cells for unknown columns {orphaned} in {row.document_id}")
            rows.append(row)
        if "rows" in snapshot:
            self.analysis.rows = rows
        if snapshot.get("status"):
            self.analysis.status = snapshot["status"]
        self._refresh_progress()

    def _start_polling(self) -> Poller:
        self._poller = Poller(
            lambda: self._client.tabular.get(self.analysis_id),
            TABULAR_STATUSES.is_terminal,
            merge=merge_keyed_rows("documentId"),
            interval=self.interval,
            on_update=self._apply_snapshot,
            name=f"analysis {self.analysis_id}",
        )
        self._poller.start()
        return self._poller

    async def run_extraction(self, wait: bool = True) -> TabularAnalysis:
        """Trigger the remote extraction and follow it until it finishes.

        Raises:
            InvalidColumnError: If the analysis has no columns.
            SubmissionInProgressError: If a run is already being started.
            GridLockedError: If a run is still being polled.
            CaseApiError: If the run could not be started.
        """
        if not self.analysis.columns:
            raise InvalidColumnError("Add at least one column before running extraction")
        if self._poller is not None and self._poller.running:
            raise GridLockedError(f"Analysis {self.analysis_id} is already running")

        async with self._guard.hold():
            self.progress = 0
            try:
                await self._client.tabular.run_workflow(self.analysis_id)
            except CaseApiError as e:
                if self._bus is not None:
                    await self._bus.notify("error", e.message or "Failed to start extraction")
                raise
            logger.info(f"Started extraction for analysis {self.analysis_id}")
            self._start_polling()

        if wait:
            await self.wait()
        return self.analysis

    def resume(self) -> bool:
        """Follow a run that was already in progress when the grid was opened."""
        if self.analysis.status != "processing" or self.is_running:
            return False
        self._start_polling()
        return True

    async def wait(self) -> TabularAnalysis:
        poller = self._poller
        if poller is None or not (poller.running or poller.finished):
            return self.analysis
        await poller.wait()
        await self._finish()
        return self.analysis

    async def _finish(self) -> None:
        if self.status == "completed":
            self.progress = 100
        if self._bus is None:
            return
        if self.status == "completed":
            await self._bus.notify("success", f"Extraction completed for {self.analysis.name}")
        elif self.status == "failed":
            await self._bus.notify("error", f"Extraction failed for {self.analysis.name}")

    async def close(self) -> None:
        if self._poller is not None:
            await self._poller.stop()
