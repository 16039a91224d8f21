"""Core types for messages, settings, and generation results."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "system"]
ChatStatus = Literal["completed", "aborted", "error"]

DEFAULT_MODEL = "llama3"
DEFAULT_BASE_URL = "http://localhost:11434"


class Message(BaseModel):
    # Imported trees may carry extra per-message keys; keep them for round-trips.
    model_config = ConfigDict(extra="allow", frozen=True)

    role: Role
    content: str


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    system_prompt: str = ""
    temperature: float = 0.8
    max_output_tokens: int = 1024
    history_length: int = Field(default=10, ge=0)
    keep_alive: str = "5m"

    def num_predict(self) -> int:
        return self.max_output_tokens if self.max_output_tokens > 0 else -1


class GenerationStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    tokens_per_second: float
    eval_count: int = 0
    eval_duration: int = 0
    total_duration: int = 0


class ChatResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: ChatStatus
    text: str = ""
    stats: Optional[GenerationStats] = None
    error_kind: Optional[str] = None
    error_message: Optional[str] = None
