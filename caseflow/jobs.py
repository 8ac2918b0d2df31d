"""Job detail views and submit triggers for OCR and transcription."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Generic, Optional, Type, TypeVar

from pydantic import BaseModel

from .api.client import CaseClient
from .api.models import OcrJob, TranscriptionJob
from .errors import CaseApiError
from .events import EventBus
from .guard import InFlightGuard
from .polling import (
    OCR_STATUSES,
    TRANSCRIPTION_STATUSES,
    Poller,
    Snapshot,
    StatusPartition,
)

logger = logging.getLogger(__name__)

JobT = TypeVar("JobT", bound=BaseModel)

FAILED_STATUSES = frozenset({"failed", "error", "canceled"})


class JobView(Generic[JobT]):
    """Live view over one remote job.

    ``open()`` starts polling, ``close()`` stops it. The merged snapshot is
    exposed as a typed model through ``job``.
    """

    model: Type[JobT]
    statuses: StatusPartition

    def __init__(
        self,
        job_id: str,
        fetch: Callable[[str], Awaitable[Snapshot]],
        interval: float,
        on_update: Optional[Callable[[JobT], Any]] = None,
    ) -> None:
        self.job_id = job_id
        self._on_update = on_update
        self._poller = Poller(
            lambda: fetch(job_id),
            self.statuses.is_terminal,
            interval=interval,
            on_update=self._handle_update,
            name=f"{self.model.__name__} {job_id}",
        )

    def _handle_update(self, snapshot: Snapshot) -> Any:
        if self._on_update is not None:
            return self._on_update(self.model.model_validate(snapshot))
        return None

    @property
    def job(self) -> Optional[JobT]:
        snapshot = self._poller.snapshot
        if snapshot is None:
            return None
        return self.model.model_validate(snapshot)

    @property
    def status(self) -> Optional[str]:
        return self._poller.status

    @property
    def is_polling(self) -> bool:
        return self._poller.running

    @property
    def fetch_count(self) -> int:
        return self._poller.fetch_count

    @property
    def error_text(self) -> Optional[str]:
        """Server-supplied error for a job in a failed terminal state."""
        snapshot = self._poller.snapshot or {}
        if snapshot.get("status") in FAILED_STATUSES:
            return snapshot.get("error")
        return None

    def open(self) -> None:
        self._poller.start()

    async def wait(self) -> Optional[JobT]:
        await self._poller.wait()
        return self.job

    async def close(self) -> None:
        await self._poller.stop()

    async def __aenter__(self) -> "JobView[JobT]":
        self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class OcrJobView(JobView[OcrJob]):
    model = OcrJob
    statuses = OCR_STATUSES

    def __init__(
        self,
        client: CaseClient,
        job_id: str,
        interval: Optional[float] = None,
        on_update: Optional[Callable[[OcrJob], Any]] = None,
    ) -> None:
        super().__init__(
            job_id,
            client.ocr.get,
            interval if interval is not None else client.config.polling.ocr_interval,
            on_update,
        )

    @property
    def progress(self) -> int:
        job = self.job
        return job.progress if job else 0


class TranscriptionJobView(JobView[TranscriptionJob]):
    model = TranscriptionJob
    statuses = TRANSCRIPTION_STATUSES

    def __init__(
        self,
        client: CaseClient,
        job_id: str,
        interval: Optional[float] = None,
        on_update: Optional[Callable[[TranscriptionJob], Any]] = None,
    ) -> None:
        super().__init__(
            job_id,
            client.transcription.get,
            interval
            if interval is not None
            else client.config.polling.transcription_interval,
            on_update,
        )


class JobSubmitter:
    """Submit trigger allowing one outstanding request at a time.

    Successes and failures are published as notifications when a bus is set.
    """

    def __init__(self, label: str, bus: Optional[EventBus] = None) -> None:
        self.label = label
        self._bus = bus
        self._guard = InFlightGuard(label)

    @property
    def busy(self) -> bool:
        return self._guard.busy

    async def submit(self, submit: Callable[..., Awaitable[str]], **kwargs: Any) -> str:
        async with self._guard.hold():
            try:
                job_id = await submit(**kwargs)
            except CaseApiError as e:
                if self._bus is not None:
                    await self._bus.notify("error", e.message or f"Failed to submit {self.label}")
                raise
        if self._bus is not None:
            await self._bus.notify("success", f"{self.label} job {job_id} submitted")
        return job_id
