"""Write-through store for the live conversation tree."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from fork_ai.types import Message

from .errors import TreeValidationError
from .storage import IMPORT_KEY, TREE_KEY, KeyValueStorage, MemoryStorage
from .tree import ROOT_ID, ConversationTree, TreeNode

logger = logging.getLogger(__name__)


def _timestamp_slug() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S.%fZ")


class TreeStore:
    """Owns the live tree and the active node pointer.

    Every mutation is persisted immediately through the injected storage;
    the last write wins.
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._tree = self._load_persisted()
        self._active_node_id = ROOT_ID

    @classmethod
    def in_memory(cls) -> "TreeStore":
        return cls(MemoryStorage())

    @property
    def tree(self) -> ConversationTree:
        return self._tree

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    @property
    def active_node_id(self) -> str:
        return self._active_node_id

    def set_active(self, node_id: str) -> None:
        if node_id not in self._tree:
            raise KeyError(f"Node not found: {node_id}")
        self._active_node_id = node_id

    def get_node(self, node_id: str) -> TreeNode:
        return self._tree.get_node(node_id)

    def add_branch(self, message: Message, parent_id: str) -> str:
        node_id = self._tree.add_branch(message, parent_id)
        self._active_node_id = node_id
        self._persist()
        return node_id

    def append_message(self, node_id: str, message: Message) -> bool:
        if not self._tree.append_message(node_id, message):
            logger.debug("append_message ignored for unknown node %s", node_id)
            return False
        self._persist()
        return True

    def rename_node(self, node_id: str, name: str) -> bool:
        changed = self._tree.rename_node(node_id, name)
        if changed:
            self._persist()
        return changed

    def toggle_collapse(self, node_id: str) -> bool:
        changed = self._tree.toggle_collapse(node_id)
        if changed:
            self._persist()
        return changed

    def delete_node(self, node_id: str) -> None:
        parent_id = self._tree.delete_node(node_id)
        if self._active_node_id == node_id:
            self._active_node_id = parent_id if parent_id in self._tree else ROOT_ID
        self._persist()

    def reset_tree(self) -> None:
        self._tree = ConversationTree.fresh()
        self._active_node_id = ROOT_ID
        self._storage.remove(TREE_KEY)

    def load_tree(self, candidate: Any) -> None:
        """Replace the live tree; raises ``TreeValidationError`` and keeps the old one on bad input."""
        tree = ConversationTree.from_dict(candidate)
        self._tree = tree
        self._active_node_id = ROOT_ID
        self._persist()
        logger.info("Loaded conversation tree with %d nodes", len(tree))

    def reconstruct_history(self, leaf_node_id: Optional[str] = None) -> List[Message]:
        return self._tree.reconstruct_history(leaf_node_id or self._active_node_id)

    def path_to(self, node_id: Optional[str] = None) -> List[TreeNode]:
        return self._tree.path_to(node_id or self._active_node_id)

    def consume_import_handoff(self) -> bool:
        """Apply a one-shot tree left by the external importer, then clear it."""
        raw = self._storage.read(IMPORT_KEY)
        if raw is None:
            return False
        try:
            tree = ConversationTree.from_dict(json.loads(raw))
        except (json.JSONDecodeError, TreeValidationError) as exc:
            logger.warning("Discarding invalid import handoff: %s", exc)
            return False
        else:
            logger.info("Importing conversation tree handed off by the external importer")
            self._tree = tree
            self._active_node_id = tree.last_leaf()
            self._persist()
            return True
        finally:
            self._storage.remove(IMPORT_KEY)

    def export_json(self) -> str:
        return json.dumps(self._tree.to_dict(), indent=2, ensure_ascii=False)

    def export_to_file(self, directory: str) -> Path:
        target_dir = Path(directory).expanduser()
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"fork-chat-conversation-{_timestamp_slug()}.json"
        path.write_text(self.export_json(), encoding="utf-8")
        return path

    def import_json(self, text: str) -> None:
        try:
            candidate = json.loads(text)
        except json.JSONDecodeError as exc:
            raise TreeValidationError(f"Could not parse tree file: {exc}") from exc
        self.load_tree(candidate)

    def _load_persisted(self) -> ConversationTree:
        try:
            raw = self._storage.read(TREE_KEY)
        except OSError as exc:
            logger.error("Failed to read persisted tree: %s", exc)
            return ConversationTree.fresh()
        if not raw:
            return ConversationTree.fresh()
        try:
            data = json.loads(raw)
            if isinstance(data, dict) and data:
                return ConversationTree.from_dict(data)
        except (json.JSONDecodeError, TreeValidationError) as exc:
            logger.error("Failed to load persisted tree, starting fresh: %s", exc)
        return ConversationTree.fresh()

    def _persist(self) -> None:
        try:
            self._storage.write(TREE_KEY, json.dumps(self._tree.to_dict(), ensure_ascii=False))
        except OSError:
            logger.exception("Failed to save conversation tree")
        else:
            logger.debug("Persisted conversation tree (%d nodes)", len(self._tree))
