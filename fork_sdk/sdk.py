"""SDK entry points for embedding fork-chat."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping, Optional

import httpx

from fork_agent.orchestrator import Orchestrator
from fork_ai.errors import ChatError
from fork_ai.providers.base import StreamFunction
from fork_ai.providers.ollama import ChatOptions, list_models
from fork_ai.types import Settings
from fork_session.manager import TreeStore
from fork_session.storage import FileStorage, KeyValueStorage

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = "~/.fork-chat"

_ENV_FIELDS = {
    "FORK_CHAT_MODEL": ("model", str),
    "FORK_CHAT_BASE_URL": ("base_url", str),
    "FORK_CHAT_SYSTEM_PROMPT": ("system_prompt", str),
    "FORK_CHAT_TEMPERATURE": ("temperature", float),
    "FORK_CHAT_MAX_OUTPUT_TOKENS": ("max_output_tokens", int),
    "FORK_CHAT_HISTORY_LENGTH": ("history_length", int),
}


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    env = os.environ if environ is None else environ
    values = {}
    for env_key, (field_name, cast) in _ENV_FIELDS.items():
        raw = env.get(env_key)
        if raw is None or raw == "":
            continue
        try:
            values[field_name] = cast(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {env_key}: {raw!r}") from exc
    return Settings(**values)


def data_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    return Path(env.get("FORK_CHAT_DATA_DIR") or DEFAULT_DATA_DIR).expanduser()


def create_store(
    *,
    storage: Optional[KeyValueStorage] = None,
    data_path: Optional[str] = None,
    consume_import: bool = True,
) -> TreeStore:
    resolved = storage or FileStorage(data_path or str(data_dir()))
    store = TreeStore(resolved)
    if consume_import:
        store.consume_import_handoff()
    return store


def create_orchestrator(
    *,
    settings: Optional[Settings] = None,
    store: Optional[TreeStore] = None,
    storage: Optional[KeyValueStorage] = None,
    data_path: Optional[str] = None,
    stream_fn: Optional[StreamFunction] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Orchestrator:
    resolved_store = store or create_store(storage=storage, data_path=data_path)
    return Orchestrator(
        resolved_store,
        settings or load_settings(),
        stream_fn=stream_fn,
        chat_options=ChatOptions(transport=transport),
    )


async def validate_model(
    settings: Settings,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Settings:
    """Fall back to the first available model when the configured one is missing."""
    try:
        available = await list_models(settings.base_url, transport=transport)
    except ChatError as exc:
        logger.error("Could not fetch the model list for validation: %s", exc)
        return settings
    if not available:
        if settings.model:
            logger.warning("No models available; check the connection to %s", settings.base_url)
        return settings
    if settings.model not in available:
        logger.warning(
            'Model "%s" is not available; switching to "%s"', settings.model, available[0]
        )
        return settings.model_copy(update={"model": available[0]})
    return settings
