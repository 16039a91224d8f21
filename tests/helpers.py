"""Test helpers for fork-chat."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, List, Optional

from fork_ai.streaming import ChatEventStream
from fork_ai.types import ChatResult, Message


def user_msg(text: str) -> Message:
    return Message(role="user", content=text)


def assistant_msg(text: str) -> Message:
    return Message(role="assistant", content=text)


def delta(text: str) -> Dict[str, Any]:
    return {"type": "text_delta", "delta": text}


def ndjson(*records: Dict[str, Any]) -> bytes:
    return "".join(json.dumps(record, ensure_ascii=False) + "\n" for record in records).encode("utf-8")


def make_stream_fn(
    events: List[Dict[str, Any]],
    *,
    result: Optional[ChatResult] = None,
    wait_for_abort: bool = False,
    release: Optional[asyncio.Event] = None,
    calls: Optional[list] = None,
):
    """Fake ``stream_chat`` that replays ``events``.

    ``wait_for_abort`` keeps the stream open until the turn's signal fires.
    ``release`` holds every event back until the event is set and ignores
    the signal entirely, like a transport that keeps delivering after abort.
    """

    def stream_fn(messages, settings, options=None):
        if calls is not None:
            calls.append((list(messages), settings, options))
        stream = ChatEventStream()
        signal = options.signal if options else None

        async def run() -> None:
            text = ""
            if release is not None:
                await release.wait()
            for event in events:
                if release is None and signal is not None and signal.is_set():
                    break
                if event.get("type") == "text_delta":
                    text += event["delta"]
                stream.push(event)
                await asyncio.sleep(0)
            if wait_for_abort:
                while not signal.is_set():
                    await asyncio.sleep(0.01)
                stream.end(ChatResult(status="aborted", text=text))
                return
            stream.end(result or ChatResult(status="completed", text=text))

        asyncio.create_task(run())
        return stream

    return stream_fn
