"""Embedding entry points for fork-chat."""

from .sdk import create_orchestrator, create_store, load_settings, validate_model

__all__ = ["create_orchestrator", "create_store", "load_settings", "validate_model"]
