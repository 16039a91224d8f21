"""Turn event stream utilities."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional

from .types import TurnEvent, TurnResult


class TurnEventStream(AsyncIterator[TurnEvent]):
    def __init__(self) -> None:
        self._queue: asyncio.Queue[TurnEvent | None] = asyncio.Queue()
        self._done = False
        self._result: Optional[TurnResult] = None
        self._result_event = asyncio.Event()

    def push(self, event: TurnEvent) -> None:
        if self._done:
            return
        self._queue.put_nowait(event)

    def end(self, result: Optional[TurnResult] = None) -> None:
        if result is not None and self._result is None:
            self._result = result
            self._result_event.set()
        if not self._done:
            self._done = True
            self._queue.put_nowait(None)

    async def result(self) -> TurnResult:
        await self._result_event.wait()
        if self._result is None:
            raise RuntimeError("Turn finished without a result.")
        return self._result

    def __aiter__(self) -> "TurnEventStream":
        return self

    async def __anext__(self) -> TurnEvent:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item
