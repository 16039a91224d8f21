"""Per-turn generation lifecycle on top of the conversation tree."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Callable, List, Optional

from fork_ai.errors import classify_exception, describe_error
from fork_ai.providers.base import StreamFunction
from fork_ai.providers.ollama import ChatOptions, stream_chat
from fork_ai.types import GenerationStats, Message, Settings
from fork_session.batch import short_label
from fork_session.manager import TreeStore

from .events import TurnEventStream
from .types import OrchestratorState, TurnEvent, TurnOutcome, TurnPhase, TurnResult

logger = logging.getLogger(__name__)


class Orchestrator:
    """Drives one request/stream/commit cycle at a time against a ``TreeStore``.

    Partial output lives only in ``state.stream_message`` until the turn
    completes cleanly; aborted and failed turns leave the tree untouched.
    """

    def __init__(
        self,
        store: TreeStore,
        settings: Settings,
        *,
        stream_fn: Optional[StreamFunction] = None,
        chat_options: Optional[ChatOptions] = None,
    ) -> None:
        self._store = store
        self._state = OrchestratorState(settings=settings)
        self._stream_fn = stream_fn or stream_chat
        self._chat_options = chat_options or ChatOptions()
        self._listeners: set[Callable[[TurnEvent], None]] = set()
        self._abort_event: Optional[asyncio.Event] = None
        self._turn_id = 0
        self._running_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def store(self) -> TreeStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._state.settings

    def set_settings(self, settings: Settings) -> None:
        if self._state.is_streaming:
            raise RuntimeError("Cannot change settings while a response is being generated.")
        self._state.settings = settings

    def subscribe(self, fn: Callable[[TurnEvent], None]) -> Callable[[], None]:
        self._listeners.add(fn)

        def unsubscribe() -> None:
            self._listeners.discard(fn)

        return unsubscribe

    def build_request(self, node_id: str) -> List[Message]:
        settings = self._state.settings
        history = self._store.reconstruct_history(node_id)
        if settings.history_length > 0 and len(history) > settings.history_length:
            history = history[-settings.history_length :]
        if settings.system_prompt:
            history.insert(0, Message(role="system", content=settings.system_prompt))
        return history

    def submit(self, text: str) -> TurnEventStream:
        self._check_ready(text)
        node_id = self._store.active_node_id
        self._store.append_message(node_id, Message(role="user", content=text))
        return self.start_turn(node_id)

    def branch_from(self, text: str, parent_id: Optional[str] = None) -> TurnEventStream:
        self._check_ready(text)
        node_id = self._store.add_branch(
            Message(role="user", content=text),
            parent_id or self._store.active_node_id,
        )
        self._store.rename_node(node_id, short_label(text))
        return self.start_turn(node_id)

    def start_turn(self, node_id: str) -> TurnEventStream:
        if self._state.is_streaming:
            raise RuntimeError("A response is already being generated.")
        self._store.get_node(node_id)

        self._turn_id += 1
        turn_id = self._turn_id
        signal = asyncio.Event()
        self._abort_event = signal

        self._state.target_node_id = node_id
        self._state.stream_message = None
        self._state.stats = None
        self._state.error = None
        self._state.error_kind = None
        self._set_phase("requesting")

        output = TurnEventStream()
        self._running_task = asyncio.create_task(self._run_turn(turn_id, node_id, signal, output))
        return output

    def abort(self) -> bool:
        signal = self._abort_event
        if signal is None or signal.is_set() or not self._state.is_streaming:
            return False
        signal.set()
        logger.info("Turn for node %s aborted", self._state.target_node_id)
        self._set_phase("aborted")
        self._handle_event(
            {"type": "turn_end", "node_id": self._state.target_node_id, "outcome": "aborted", "error": None}
        )
        return True

    async def wait_for_idle(self) -> None:
        if self._running_task:
            await self._running_task

    def _check_ready(self, text: str) -> None:
        if self._state.is_streaming:
            raise RuntimeError("A response is already being generated.")
        if not text.strip():
            raise ValueError("Message must not be empty.")
        if not self._state.settings.model:
            raise ValueError("No model selected. Choose a model in settings.")

    async def _run_turn(
        self,
        turn_id: int,
        node_id: str,
        signal: asyncio.Event,
        output: TurnEventStream,
    ) -> None:
        settings = self._state.settings
        accumulated: List[str] = []
        stats: Optional[GenerationStats] = None

        def live() -> bool:
            return turn_id == self._turn_id and not signal.is_set()

        def emit(event: TurnEvent) -> None:
            if live():
                self._handle_event(event)
            output.push(event)

        def finish(outcome: TurnOutcome, error_kind: Optional[str] = None, message: Optional[str] = None) -> None:
            error = describe_error(error_kind, message, settings) if outcome in {"error", "empty"} else None
            event = {
                "type": "turn_end",
                "node_id": node_id,
                "outcome": outcome,
                "error": error,
                "error_kind": error_kind,
            }
            if live():
                if error is not None:
                    self._set_phase("errored")
                self._handle_event(event)
            output.push(event)
            output.end(
                TurnResult(
                    node_id=node_id,
                    outcome=outcome,
                    text="".join(accumulated) if outcome == "completed" else "",
                    stats=stats,
                    error=error,
                    error_kind=error_kind,
                )
            )

        try:
            emit({"type": "turn_start", "node_id": node_id, "model": settings.model})
            messages = self.build_request(node_id)
            options = dataclasses.replace(self._chat_options, signal=signal)
            upstream = self._stream_fn(messages, settings, options)
            if live():
                self._set_phase("streaming")

            async for event in upstream:
                if not live():
                    break
                event_type = event.get("type")
                if event_type == "text_delta":
                    accumulated.append(event["delta"])
                    emit(
                        {
                            "type": "message_update",
                            "delta": event["delta"],
                            "message": Message(role="assistant", content="".join(accumulated)),
                        }
                    )
                elif event_type == "stats":
                    stats = event["stats"]
                    emit({"type": "stats", "stats": stats})

            if not live():
                finish("aborted")
                return

            result = await upstream.result()
            if result.status == "aborted":
                finish("aborted")
                return
            if result.status == "error":
                finish("error", result.error_kind, result.error_message)
                return

            text = "".join(accumulated)
            if not text.strip():
                logger.warning("Model %s returned an empty response", settings.model)
                finish("empty", "empty_response")
                return

            if not live():
                finish("aborted")
                return
            self._set_phase("committing")
            self._store.append_message(node_id, Message(role="assistant", content=text))
            finish("completed")
        except Exception as exc:
            failure = classify_exception(exc)
            logger.warning("Turn for node %s failed (%s): %s", node_id, failure.kind, failure)
            finish("error", failure.kind, str(failure))

    def _set_phase(self, phase: TurnPhase) -> None:
        self._state.phase = phase
        for listener in list(self._listeners):
            listener({"type": "phase_change", "phase": phase})

    def _handle_event(self, event: TurnEvent) -> None:
        event_type = event.get("type")
        if event_type == "message_update":
            self._state.stream_message = event["message"]
        elif event_type == "stats":
            self._state.stats = event["stats"]
        elif event_type == "turn_end":
            self._state.stream_message = None
            self._state.error = event.get("error")
            self._state.error_kind = event.get("error_kind")
            self._state.last_outcome = event["outcome"]
            self._state.target_node_id = None
            self._state.phase = "idle"

        for listener in list(self._listeners):
            listener(event)
