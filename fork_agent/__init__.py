"""Generation orchestration for fork-chat."""

from .events import TurnEventStream
from .orchestrator import Orchestrator
from .types import OrchestratorState, TurnEvent, TurnOutcome, TurnPhase, TurnResult

__all__ = [
    "Orchestrator",
    "OrchestratorState",
    "TurnEvent",
    "TurnEventStream",
    "TurnOutcome",
    "TurnPhase",
    "TurnResult",
]
