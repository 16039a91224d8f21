"""Ollama-compatible chat API provider."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx

from ..decoder import StreamDecoder, StreamEvent
from ..errors import ChatError, classify_exception
from ..streaming import ChatEventStream
from ..types import ChatResult, GenerationStats, Message, Settings

logger = logging.getLogger(__name__)


@dataclass
class ChatOptions:
    signal: Optional[asyncio.Event] = None
    headers: Optional[Dict[str, str]] = None
    timeout: Optional[float] = None
    transport: Optional[httpx.AsyncBaseTransport] = None
    on_payload: Optional[Callable[[Dict[str, Any]], None]] = None


def normalize_base_url(url: str) -> str:
    base = url.strip().rstrip("/")
    if base.endswith("/api"):
        base = base[: -len("/api")]
    return base


def build_chat_body(messages: Sequence[Message], settings: Settings) -> Dict[str, Any]:
    return {
        "model": settings.model,
        "messages": [{"role": message.role, "content": message.content} for message in messages],
        "stream": True,
        "keep_alive": settings.keep_alive,
        "options": {
            "temperature": settings.temperature,
            "num_predict": settings.num_predict(),
        },
    }


def _is_aborted(signal: Optional[asyncio.Event]) -> bool:
    return bool(signal and signal.is_set())


async def _status_error(response: httpx.Response) -> ChatError:
    await response.aread()
    body = response.text
    message = f"Model server request failed: {response.status_code} {response.reason_phrase} - {body}"
    if response.status_code == 404:
        return ChatError(message, kind="model_not_found", detail=f"HTTP {response.status_code}")
    return ChatError(message, kind="http", detail=f"HTTP {response.status_code}")


def stream_chat(
    messages: Sequence[Message],
    settings: Settings,
    options: Optional[ChatOptions] = None,
) -> ChatEventStream:
    stream = ChatEventStream()
    signal = options.signal if options else None

    async def run() -> None:
        text_parts: List[str] = []
        stats: Optional[GenerationStats] = None

        def forward(events: List[StreamEvent]) -> bool:
            nonlocal stats
            for event in events:
                if _is_aborted(signal):
                    return False
                if event["type"] == "error":
                    raise ChatError(event["message"], kind=event["kind"])
                if event["type"] == "text_delta":
                    text_parts.append(event["delta"])
                elif event["type"] == "stats":
                    stats = event["stats"]
                stream.push(event)
            return True

        try:
            body = build_chat_body(messages, settings)
            if options and options.on_payload:
                options.on_payload(body)

            headers = {"Content-Type": "application/json"}
            if options and options.headers:
                headers.update(options.headers)
            url = f"{normalize_base_url(settings.base_url)}/api/chat"
            if _is_aborted(signal):
                stream.end(ChatResult(status="aborted"))
                return

            async with httpx.AsyncClient(
                timeout=options.timeout if options else None,
                transport=options.transport if options else None,
            ) as client:
                async with client.stream("POST", url, json=body, headers=headers) as response:
                    if response.is_error:
                        raise await _status_error(response)
                    stream.push({"type": "start", "model": settings.model})

                    decoder = StreamDecoder()
                    async for chunk in response.aiter_bytes():
                        if _is_aborted(signal) or not forward(decoder.feed(chunk)):
                            break
                        if decoder.closed:
                            break
                    else:
                        forward(decoder.finish())

            text = "".join(text_parts)
            if _is_aborted(signal):
                logger.info("Chat stream for %s aborted", settings.model)
                stream.end(ChatResult(status="aborted", text=text))
                return
            stream.end(ChatResult(status="completed", text=text, stats=stats))
        except Exception as error:
            text = "".join(text_parts)
            if _is_aborted(signal):
                stream.end(ChatResult(status="aborted", text=text))
                return
            failure = classify_exception(error)
            logger.warning("Chat stream failed (%s): %s", failure.kind, failure)
            stream.push(
                {"type": "error", "kind": failure.kind, "message": str(failure), "detail": failure.detail}
            )
            stream.end(
                ChatResult(
                    status="error",
                    text=text,
                    error_kind=failure.kind,
                    error_message=str(failure),
                )
            )

    asyncio.create_task(run())
    return stream


async def list_models(
    base_url: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: Optional[float] = 10.0,
) -> List[str]:
    """Return the sorted model names the server advertises; empty means none available."""
    url = f"{normalize_base_url(base_url)}/api/tags"
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
            if response.is_error:
                raise await _status_error(response)
            data = response.json()
    except json.JSONDecodeError as exc:
        logger.warning("Model list from %s is not valid JSON: %s", url, exc)
        return []
    except ChatError as exc:
        if exc.kind == "model_not_found":
            exc.kind = "http"
        raise
    except httpx.HTTPError as exc:
        raise classify_exception(exc) from exc

    models = data.get("models") if isinstance(data, dict) else None
    if not isinstance(models, list):
        logger.warning("Model list response is not in the expected format: %r", data)
        return []
    return sorted(
        str(model["name"]) for model in models if isinstance(model, dict) and model.get("name")
    )
