"""Provider implementations and interfaces."""

from __future__ import annotations

from .ollama import ChatOptions, list_models, normalize_base_url, stream_chat

__all__ = [
    "base",
    "ollama",
    "ChatOptions",
    "list_models",
    "normalize_base_url",
    "stream_chat",
]
