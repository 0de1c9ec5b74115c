"""Cooperative cancellation for graph traversals."""
from __future__ import annotations

import asyncio
import threading

from .exceptions import OperationCancelledError


class CancellationToken:
    """Signal checked between traversal expansion steps.

    The token may be cancelled from any thread. Traversals call
    ``await token.checkpoint()`` between steps, which raises
    ``OperationCancelledError`` once the token fires and otherwise yields
    to the event loop so task cancellation can also land.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation was cancelled")

    async def checkpoint(self) -> None:
        self.raise_if_cancelled()
        await asyncio.sleep(0)
