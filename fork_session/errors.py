"""Validation errors raised by the conversation tree store."""

from __future__ import annotations


class TreeValidationError(ValueError):
    """A rejected tree operation or payload; the live tree is left unchanged."""


class BatchSplitError(TreeValidationError):
    pass
