"""Abstract provider interface."""

from __future__ import annotations

from typing import Optional, Protocol, Sequence

from ..streaming import ChatEventStream
from ..types import Message, Settings
from .ollama import ChatOptions


class StreamFunction(Protocol):
    def __call__(
        self,
        messages: Sequence[Message],
        settings: Settings,
        options: Optional[ChatOptions] = None,
    ) -> ChatEventStream: ...
