"""At-most-one-in-flight discipline for submit triggers."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from .errors import SubmissionInProgressError


class InFlightGuard:
    """Refuse a second submission while one is outstanding.

    Mirrors a submit button that stays disabled until its request settles.
    """

    def __init__(self, name: str = "submission") -> None:
        self.name = name
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    @asynccontextmanager
    async def hold(self) -> AsyncIterator[None]:
        if self._busy:
            raise SubmissionInProgressError(f"{self.name} already in progress")
        self._busy = True
        try:
            yield
        finally:
            self._busy = False
