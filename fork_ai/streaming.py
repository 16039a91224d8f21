"""Single-consumer event channel for chat responses."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from .types import ChatResult

ChatEvent = Dict[str, Any]


class ChatEventStream(AsyncIterator[ChatEvent]):
    def __init__(self) -> None:
        self._queue: asyncio.Queue[ChatEvent | None] = asyncio.Queue()
        self._done = False
        self._result: Optional[ChatResult] = None
        self._result_event = asyncio.Event()

    @property
    def done(self) -> bool:
        return self._done

    def push(self, event: ChatEvent) -> None:
        if self._done:
            return
        self._queue.put_nowait(event)

    def end(self, result: Optional[ChatResult] = None) -> None:
        if result is not None:
            self._set_result(result)
        if not self._done:
            self._done = True
            self._queue.put_nowait(None)

    async def result(self) -> ChatResult:
        await self._result_event.wait()
        if self._result is None:
            raise RuntimeError("Stream finished without a result.")
        return self._result

    def _set_result(self, result: ChatResult) -> None:
        if self._result is None:
            self._result = result
            self._result_event.set()

    def __aiter__(self) -> "ChatEventStream":
        return self

    async def __anext__(self) -> ChatEvent:
        item = await self._queue.get()
        if item is None:
            raise StopAsyncIteration
        return item
