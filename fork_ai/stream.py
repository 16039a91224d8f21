"""Streaming helpers for model server responses."""

from __future__ import annotations

from typing import Optional, Sequence

from .providers import ollama as ollama_provider
from .providers.ollama import ChatOptions
from .streaming import ChatEventStream
from .types import ChatResult, Message, Settings


def stream(
    messages: Sequence[Message],
    settings: Settings,
    options: Optional[ChatOptions] = None,
) -> ChatEventStream:
    return ollama_provider.stream_chat(messages, settings, options)


async def complete(
    messages: Sequence[Message],
    settings: Settings,
    options: Optional[ChatOptions] = None,
) -> ChatResult:
    response = stream(messages, settings, options)
    return await response.result()
