"""In-process publish/subscribe channel for cross-component refresh."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

logger = logging.getLogger(__name__)

Subscriber = Callable[[Any], Union[None, Awaitable[None]]]

VAULT_CREATED = "vault.created"
NOTIFY = "notify"


class EventBus:
    """Topic-based observer registry.

    Subscribers may be plain callables or coroutine functions. Delivery is
    sequential in subscription order; one failing subscriber does not stop
    the others.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Subscriber]] = {}

    def subscribe(self, topic: str, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for ``topic`` and return an unsubscribe handle."""
        self._subscribers.setdefault(topic, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(topic, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    async def publish(self, topic: str, payload: Any = None) -> None:
        """Deliver ``payload`` to every subscriber of ``topic``."""
        callbacks = list(self._subscribers.get(topic, []))
        for callback in callbacks:
            try:
                result = callback(payload)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on topic {topic}: {e}")

    async def notify(self, level: str, message: str) -> None:
        """Publish a user-facing notification (success or error)."""
        await self.publish(NOTIFY, {"level": level, "message": message})

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))
