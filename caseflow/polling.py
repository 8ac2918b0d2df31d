"""Poll-until-terminal routine shared by OCR, transcription and tabular runs."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Optional,
)

from .constants import (
    OCR_ACTIVE_STATUSES,
    TABULAR_ACTIVE_STATUSES,
    TRANSCRIPTION_ACTIVE_STATUSES,
)

logger = logging.getLogger(__name__)

Snapshot = Dict[str, Any]
FetchStatus = Callable[[], Awaitable[Snapshot]]
MergeFn = Callable[[Optional[Snapshot], Snapshot], Snapshot]
UpdateCallback = Callable[[Snapshot], Any]


@dataclass(frozen=True)
class StatusPartition:
    """Splits a service's status enum into active and terminal values."""

    active: FrozenSet[str]

    def is_terminal(self, status: Optional[str]) -> bool:
        # No status means no information yet, so keep polling.
        if status is None:
            return False
        return status not in self.active


OCR_STATUSES = StatusPartition(OCR_ACTIVE_STATUSES)
TRANSCRIPTION_STATUSES = StatusPartition(TRANSCRIPTION_ACTIVE_STATUSES)
TABULAR_STATUSES = StatusPartition(TABULAR_ACTIVE_STATUSES)


def merge_snapshot(previous: Optional[Snapshot], incoming: Snapshot) -> Snapshot:
    """Overlay ``incoming`` on ``previous``.

    A key absent from ``incoming`` keeps its previous value; a key present
    with ``None`` clears it.
    """
    merged = dict(previous or {})
    merged.update(incoming)
    return merged


def merge_keyed_rows(
    key: str, rows_field: str = "rows"
) -> MergeFn:
    """Build a merge function that accumulates list rows by ``key``.

    Rows in the incoming snapshot replace rows with the same key; rows the
    server omitted are kept. Other fields follow ``merge_snapshot``.
    """

    def merge(previous: Optional[Snapshot], incoming: Snapshot) -> Snapshot:
        merged = merge_snapshot(previous, incoming)
        if rows_field not in incoming or incoming[rows_field] is None:
            if previous and rows_field in previous:
                merged[rows_field] = previous[rows_field]
            return merged

        by_key: Dict[Any, Any] = {}
        for row in (previous or {}).get(rows_field) or []:
            by_key[row.get(key)] = row
        for row in incoming[rows_field]:
            by_key[row.get(key)] = row
        merged[rows_field] = list(by_key.values())
        return merged

    return merge


class Poller:
    """Fetch a remote job until its status leaves the active set.

    One fetch happens immediately, then one every ``interval`` seconds.
    Ticks are strictly sequential. When a fetch reports a terminal status a
    single final fetch is made and the loop ends. A failing fetch, merge or
    update callback is logged and the next tick proceeds as scheduled.
    """

    def __init__(
        self,
        fetch_status: FetchStatus,
        is_terminal: Callable[[Optional[str]], bool],
        merge: MergeFn = merge_snapshot,
        interval: float = 3.0,
        on_update: Optional[UpdateCallback] = None,
        final_fetch: bool = True,
        name: str = "job",
    ) -> None:
        self._fetch_status = fetch_status
        self._is_terminal = is_terminal
        self._merge = merge
        self.interval = interval
        self._on_update = on_update
        self._final_fetch = final_fetch
        self.name = name
        self.snapshot: Optional[Snapshot] = None
        self.fetch_count = 0
        self.finished = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def status(self) -> Optional[str]:
        return (self.snapshot or {}).get("status")

    async def _tick(self) -> bool:
        """Fetch once and merge. Returns ``True`` if the fetch succeeded."""
        self.fetch_count += 1
        try:
            incoming = await self._fetch_status()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Polling {self.name} failed, retrying next tick: {e}")
            return False

        try:
            self.snapshot = self._merge(self.snapshot, incoming)
        except Exception as e:
            logger.warning(f"Discarding unmergeable snapshot for {self.name}: {e}")
            return False

        if self._on_update is not None:
            try:
                result = self._on_update(self.snapshot)
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Update callback for {self.name} failed: {e}")
        return True

    async def run(self) -> Optional[Snapshot]:
        """Poll to completion and return the last merged snapshot."""
        await self._tick()
        while not self._is_terminal(self.status):
            await asyncio.sleep(self.interval)
            await self._tick()

        if self._final_fetch:
            await self._tick()
        self.finished = True
        logger.info(f"Polling {self.name} stopped with status {self.status}")
        return self.snapshot

    def start(self) -> asyncio.Task:
        """Run the loop in a background task."""
        if self.running:
            return self._task
        self._task = asyncio.create_task(self.run())
        return self._task

    async def wait(self) -> Optional[Snapshot]:
        if self._task is None:
            return await self.run()
        return await self._task

    async def stop(self) -> None:
        """Cancel the loop; no further fetches are issued afterwards."""
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.debug(f"Polling {self.name} cancelled")

    async def __aenter__(self) -> "Poller":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()


async def poll_until_terminal(
    fetch_status: FetchStatus,
    statuses: StatusPartition,
    interval: float,
    merge: MergeFn = merge_snapshot,
    on_update: Optional[UpdateCallback] = None,
) -> Optional[Snapshot]:
    """Convenience wrapper running a :class:`Poller` inline."""
    poller = Poller(
        fetch_status,
        statuses.is_terminal,
        merge=merge,
        interval=interval,
        on_update=on_update,
    )
    return await poller.run()
