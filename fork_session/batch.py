"""Split pasted text into message chunks for chained imports and sibling branches."""

from __future__ import annotations

from typing import List, Optional

from fork_ai.types import Message

from .errors import BatchSplitError
from .manager import TreeStore

DEFAULT_CHAIN_SEPARATOR = "\\n---\\n"
DEFAULT_BRANCH_SEPARATOR = "\\n"
LABEL_LENGTH = 35


def decode_separator(separator: str) -> str:
    r"""Translate the literal escapes ``\n`` and ``\t`` into control characters."""
    return separator.replace("\\n", "\n").replace("\\t", "\t")


def split_batch(text: str, separator: str) -> List[str]:
    actual = decode_separator(separator)
    if not actual:
        raise BatchSplitError("The separator must not be empty.")
    chunks = [chunk.strip() for chunk in text.strip().split(actual)]
    chunks = [chunk for chunk in chunks if chunk]
    if not chunks:
        raise BatchSplitError("No content chunks found. Check the text and the separator.")
    return chunks


def short_label(text: str, limit: int = LABEL_LENGTH) -> str:
    text = text.strip()
    return text[:limit] + ("..." if len(text) > limit else "")


def import_chain(
    store: TreeStore,
    text: str,
    separator: str = DEFAULT_CHAIN_SEPARATOR,
    parent_id: Optional[str] = None,
) -> List[str]:
    """Append chunks as a chain of nodes, alternating user and assistant roles."""
    chunks = split_batch(text, separator)
    parent = parent_id or store.active_node_id
    store.get_node(parent)

    created: List[str] = []
    for index, chunk in enumerate(chunks):
        role = "user" if index % 2 == 0 else "assistant"
        parent = store.add_branch(Message(role=role, content=chunk), parent)
        created.append(parent)
    store.rename_node(created[0], short_label(chunks[0]))
    return created


def create_sibling_branches(
    store: TreeStore,
    text: str,
    separator: str = DEFAULT_BRANCH_SEPARATOR,
    parent_id: Optional[str] = None,
) -> List[str]:
    """Create one user branch per chunk under a common parent."""
    chunks = split_batch(text, separator)
    parent = parent_id or store.active_node_id
    store.get_node(parent)

    created = [store.add_branch(Message(role="user", content=chunk), parent) for chunk in chunks]
    store.rename_node(created[0], short_label(chunks[0]))
    store.set_active(created[0])
    return created
