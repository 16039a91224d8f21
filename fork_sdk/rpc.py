"""JSON-over-stdin/stdout RPC bridge for fork-chat."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Set

from dotenv import load_dotenv

from fork_agent.events import TurnEventStream
from fork_agent.orchestrator import Orchestrator
from fork_ai.errors import ChatError
from fork_ai.providers.ollama import list_models
from fork_session.batch import (
    DEFAULT_BRANCH_SEPARATOR,
    DEFAULT_CHAIN_SEPARATOR,
    create_sibling_branches,
    import_chain,
)
from fork_session.errors import TreeValidationError
from fork_sdk.sdk import create_orchestrator, validate_model

logger = logging.getLogger(__name__)


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump()  # type: ignore[call-arg]
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {field.name: _to_jsonable(getattr(value, field.name)) for field in dataclasses.fields(value)}
    if isinstance(value, dict):
        return {key: _to_jsonable(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    return value


def _emit(obj: Any) -> None:
    sys.stdout.write(json.dumps(_to_jsonable(obj), ensure_ascii=False) + "\n")
    sys.stdout.flush()


def _success(command: str, request_id: Optional[str] = None, data: Optional[dict] = None) -> dict:
    payload = {"type": "response", "command": command, "success": True}
    if request_id:
        payload["id"] = request_id
    if data is not None:
        payload["data"] = data
    return payload


def _error(command: str, message: str, request_id: Optional[str] = None) -> dict:
    payload = {"type": "response", "command": command, "success": False, "error": message}
    if request_id:
        payload["id"] = request_id
    return payload


def _error_text(exc: Exception) -> str:
    if isinstance(exc, KeyError) and exc.args:
        return str(exc.args[0])
    return str(exc)


async def _stream_events(stream: TurnEventStream) -> None:
    async for event in stream:
        _emit({"type": "event", "event": event})


def _build_state(orchestrator: Orchestrator) -> dict:
    state = orchestrator.state
    return {
        "settings": state.settings,
        "phase": state.phase,
        "is_streaming": state.is_streaming,
        "active_node_id": orchestrator.store.active_node_id,
        "target_node_id": state.target_node_id,
        "stream_message": state.stream_message,
        "stats": state.stats,
        "error": state.error,
        "node_count": len(orchestrator.store.tree),
    }


def _require_str(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ValueError(f"'{key}' must be a string")
    return value


def _optional_str(payload: Dict[str, Any], key: str) -> Optional[str]:
    if payload.get(key) is None:
        return None
    return _require_str(payload, key)


class RpcServer:
    def __init__(self, orchestrator: Orchestrator) -> None:
        self._orchestrator = orchestrator
        self._tasks: Set[asyncio.Task] = set()

    def _spawn_stream(self, stream: TurnEventStream) -> None:
        task = asyncio.create_task(_stream_events(stream))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def handle(self, data: Dict[str, Any]) -> None:
        command = data.get("type")
        if not isinstance(command, str) or not command:
            command = "unknown"
        request_id = data.get("id")
        try:
            result = await self._dispatch(command, data)
        except (TreeValidationError, ChatError, KeyError, ValueError, RuntimeError, OSError) as exc:
            _emit(_error(command, _error_text(exc), request_id))
            return
        _emit(_success(command, request_id, result))

    async def _dispatch(self, command: str, data: Dict[str, Any]) -> Optional[dict]:
        orchestrator = self._orchestrator
        store = orchestrator.store

        if command in {"send", "prompt"}:
            stream = orchestrator.submit(_require_str(data, "message"))
            self._spawn_stream(stream)
            return {"node_id": store.active_node_id}
        if command == "branch":
            stream = orchestrator.branch_from(_require_str(data, "message"), _optional_str(data, "parent_id"))
            self._spawn_stream(stream)
            return {"node_id": store.active_node_id}
        if command == "abort":
            return {"aborted": orchestrator.abort()}
        if command == "select":
            self._ensure_idle()
            store.set_active(_require_str(data, "node_id"))
            return {"active_node_id": store.active_node_id}
        if command == "rename":
            if not store.rename_node(_require_str(data, "node_id"), _require_str(data, "name")):
                raise KeyError(f"Node not found: {data['node_id']}")
            return None
        if command == "toggle_collapse":
            if not store.toggle_collapse(_require_str(data, "node_id")):
                raise KeyError(f"Node not found: {data['node_id']}")
            return None
        if command == "delete":
            self._ensure_idle()
            store.delete_node(_require_str(data, "node_id"))
            return {"active_node_id": store.active_node_id}
        if command in {"reset", "new_tree"}:
            self._ensure_idle()
            store.reset_tree()
            return None
        if command == "get_tree":
            return {"tree": store.tree.to_dict(), "active_node_id": store.active_node_id}
        if command == "get_history":
            node_id = _optional_str(data, "node_id") or store.active_node_id
            return {"messages": store.reconstruct_history(node_id)}
        if command == "get_state":
            return _build_state(orchestrator)
        if command == "export":
            directory = _optional_str(data, "directory")
            if directory is not None:
                return {"path": str(store.export_to_file(directory))}
            return {"tree": store.tree.to_dict()}
        if command == "import":
            self._ensure_idle()
            path = _optional_str(data, "path")
            if path is not None:
                store.import_json(Path(path).expanduser().read_text(encoding="utf-8"))
            else:
                store.load_tree(data.get("tree"))
            return {"active_node_id": store.active_node_id}
        if command == "batch_import":
            self._ensure_idle()
            created = import_chain(
                store,
                _require_str(data, "text"),
                _optional_str(data, "separator") or DEFAULT_CHAIN_SEPARATOR,
                _optional_str(data, "parent_id"),
            )
            return {"node_ids": created}
        if command == "batch_branch":
            self._ensure_idle()
            created = create_sibling_branches(
                store,
                _require_str(data, "text"),
                _optional_str(data, "separator") or DEFAULT_BRANCH_SEPARATOR,
                _optional_str(data, "node_id"),
            )
            return {"node_ids": created}
        if command == "list_models":
            return {"models": await list_models(orchestrator.settings.base_url)}
        if command == "set_model":
            model = _require_str(data, "model")
            orchestrator.set_settings(orchestrator.settings.model_copy(update={"model": model}))
            return {"model": model}
        raise ValueError("Unknown message type")

    def _ensure_idle(self) -> None:
        if self._orchestrator.state.is_streaming:
            raise RuntimeError("A response is being generated; abort it first.")


async def _read_lines() -> None:
    orchestrator = create_orchestrator()
    orchestrator.set_settings(await validate_model(orchestrator.settings))
    server = RpcServer(orchestrator)

    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            break
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            _emit(_error("parse", f"Invalid JSON: {exc}"))
            continue
        if not isinstance(data, dict):
            _emit(_error("parse", "Request must be a JSON object"))
            continue
        await server.handle(data)

    await orchestrator.wait_for_idle()
    await server.drain()


def main() -> None:
    load_dotenv(override=False)
    logging.basicConfig(
        level=os.getenv("FORK_CHAT_LOG_LEVEL", "WARNING").upper(),
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(_read_lines())


if __name__ == "__main__":
    main()
