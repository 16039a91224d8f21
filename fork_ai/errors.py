"""Error taxonomy for model server communication."""

from __future__ import annotations

from typing import Literal, Optional

import httpx

from .types import Settings

ErrorKind = Literal[
    "model_not_found",
    "unreachable",
    "protocol",
    "http",
    "network",
    "empty_response",
    "unknown",
]


class ChatError(Exception):
    def __init__(self, message: str, kind: ErrorKind = "unknown", detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.kind: ErrorKind = kind
        self.detail = detail


def mentions_missing_model(message: str) -> bool:
    lowered = message.lower()
    return "404" in lowered or ("model" in lowered and "not found" in lowered)


def classify_exception(error: BaseException) -> ChatError:
    """Map a transport or protocol failure onto a ``ChatError``."""
    if isinstance(error, ChatError):
        return error
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        kind: ErrorKind = "model_not_found" if status == 404 or mentions_missing_model(str(error)) else "http"
        return ChatError(str(error), kind=kind, detail=f"HTTP {status}")
    if isinstance(error, (httpx.ConnectError, httpx.ConnectTimeout)):
        return ChatError(str(error) or "connection failed", kind="unreachable", detail=type(error).__name__)
    if isinstance(error, httpx.TransportError):
        return ChatError(str(error) or "network failure", kind="network", detail=type(error).__name__)
    return ChatError(str(error) or type(error).__name__, kind="unknown", detail=type(error).__name__)


def describe_error(kind: Optional[str], message: Optional[str], settings: Settings) -> str:
    if kind == "model_not_found":
        return (
            f'Model "{settings.model}" was not found.\n'
            "Check the model name, pick an available model in settings, "
            f"or pull it with `ollama pull {settings.model}`."
        )
    if kind == "unreachable":
        return (
            f'Could not connect to the model server at "{settings.base_url}".\n'
            "Check the URL and make sure the server is running."
        )
    if kind == "empty_response":
        return "The model returned an empty response."
    return f"Error while talking to the model server: {message or 'unknown error'}"
