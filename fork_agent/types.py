"""Core orchestrator types for fork-chat."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from fork_ai.types import GenerationStats, Message, Settings

TurnPhase = Literal["idle", "requesting", "streaming", "committing", "aborted", "errored"]
TurnOutcome = Literal["completed", "aborted", "error", "empty"]

ACTIVE_PHASES = frozenset({"requesting", "streaming", "committing"})

TurnEvent = Dict[str, Any]


@dataclass
class OrchestratorState:
    settings: Settings
    phase: TurnPhase = "idle"
    target_node_id: Optional[str] = None
    stream_message: Optional[Message] = None
    stats: Optional[GenerationStats] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    last_outcome: Optional[TurnOutcome] = None

    @property
    def is_streaming(self) -> bool:
        return self.phase in ACTIVE_PHASES


@dataclass
class TurnResult:
    node_id: str
    outcome: TurnOutcome
    text: str = ""
    stats: Optional[GenerationStats] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
