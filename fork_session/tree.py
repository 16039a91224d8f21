"""Arena-style conversation tree for branching chats."""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from pydantic import ValidationError

from fork_ai.types import Message

from .errors import TreeValidationError
from .migration import migrate_tree

ROOT_ID = "root"
WELCOME_TEXT = (
    "Hello! I'm your AI assistant. Send a message to start our conversation. "
    "You can branch from any message to explore different conversation paths."
)

_NODE_KEYS = {"id", "messages", "parentId", "childrenIds", "name", "isCollapsed"}


def create_welcome_message() -> Message:
    return Message(role="assistant", content=WELCOME_TEXT)


def generate_node_id() -> str:
    return f"node-{int(time.time() * 1000)}-{uuid4().hex[:7]}"


@dataclass
class TreeNode:
    node_id: str
    messages: List[Message]
    parent_id: Optional[str]
    children: List[str] = field(default_factory=list)
    name: Optional[str] = None
    is_collapsed: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update(
            {
                "id": self.node_id,
                "messages": [message.model_dump() for message in self.messages],
                "parentId": self.parent_id,
                "childrenIds": list(self.children),
                "isCollapsed": self.is_collapsed,
            }
        )
        if self.name is not None:
            data["name"] = self.name
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TreeNode":
        if not isinstance(data, dict):
            raise TreeValidationError(f"Tree node must be an object, got {type(data).__name__}")
        node_id = data.get("id")
        if not isinstance(node_id, str):
            raise TreeValidationError(f"Node id must be a string, got {node_id!r}")
        raw_messages = data.get("messages") or []
        if not isinstance(raw_messages, list):
            raise TreeValidationError(f"messages of node {node_id!r} must be a list")
        try:
            messages = [Message.model_validate(item) for item in raw_messages]
        except ValidationError as exc:
            raise TreeValidationError(f"Invalid message in node {node_id!r}: {exc}") from exc
        parent_id = data.get("parentId")
        if parent_id is not None and not isinstance(parent_id, str):
            raise TreeValidationError(f"parentId of node {node_id!r} must be a string or null")
        children = data.get("childrenIds") or []
        if not isinstance(children, list) or not all(isinstance(child, str) for child in children):
            raise TreeValidationError(f"childrenIds of node {node_id!r} must be a list of strings")
        name = data.get("name")
        return cls(
            node_id=node_id,
            messages=messages,
            parent_id=parent_id,
            children=list(children),
            name=None if name is None else str(name),
            is_collapsed=bool(data.get("isCollapsed", False)),
            extra={key: value for key, value in data.items() if key not in _NODE_KEYS},
        )


def create_root_node() -> TreeNode:
    return TreeNode(node_id=ROOT_ID, messages=[create_welcome_message()], parent_id=None)


class ConversationTree:
    """Flat id -> node mapping with explicit parent/children references."""

    def __init__(self, nodes: Optional[Dict[str, TreeNode]] = None) -> None:
        self._nodes: Dict[str, TreeNode] = dict(nodes) if nodes else {}
        if ROOT_ID not in self._nodes:
            self._nodes[ROOT_ID] = create_root_node()

    @classmethod
    def fresh(cls) -> "ConversationTree":
        return cls()

    @classmethod
    def from_dict(cls, candidate: Any) -> "ConversationTree":
        """Validate, migrate and load a serialized tree; the input is not mutated."""
        if not isinstance(candidate, dict) or not candidate.get(ROOT_ID):
            raise TreeValidationError('Invalid tree: a valid tree must contain a "root" node.')
        raw = migrate_tree(copy.deepcopy(candidate))
        nodes: Dict[str, TreeNode] = {}
        for key, value in raw.items():
            node = TreeNode.from_dict(value)
            if node.node_id != key:
                raise TreeValidationError(f"Node stored under {key!r} has mismatched id {node.node_id!r}")
            nodes[key] = node
        tree = cls(nodes)
        # Dangling parent links are tolerated; cycles are not.
        for node_id in tree:
            tree.path_to(node_id)
        return tree

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[str]:
        return iter(self._nodes)

    def root(self) -> TreeNode:
        return self._nodes[ROOT_ID]

    def get_node(self, node_id: str) -> TreeNode:
        if node_id not in self._nodes:
            raise KeyError(f"Node not found: {node_id}")
        return self._nodes[node_id]

    def add_branch(self, message: Message, parent_id: str, *, node_id: Optional[str] = None) -> str:
        if parent_id not in self._nodes:
            raise KeyError(f"Parent not found: {parent_id}")
        new_id = node_id or generate_node_id()
        while new_id in self._nodes:
            if node_id is not None:
                raise ValueError(f"Node already exists: {node_id}")
            new_id = generate_node_id()
        self._nodes[new_id] = TreeNode(node_id=new_id, messages=[message], parent_id=parent_id)
        parent = self._nodes[parent_id]
        parent.children.append(new_id)
        parent.is_collapsed = False
        return new_id

    def append_message(self, node_id: str, message: Message) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.messages.append(message)
        return True

    def rename_node(self, node_id: str, name: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.name = name
        return True

    def toggle_collapse(self, node_id: str) -> bool:
        node = self._nodes.get(node_id)
        if node is None:
            return False
        node.is_collapsed = not node.is_collapsed
        return True

    def delete_node(self, node_id: str) -> Optional[str]:
        """Remove a leaf and return its parent id."""
        node = self._nodes.get(node_id)
        if node is None:
            raise KeyError(f"Node not found: {node_id}")
        if node_id == ROOT_ID:
            raise TreeValidationError("The root node cannot be deleted.")
        if node.children:
            raise TreeValidationError(
                "Cannot delete a node that has child branches. Delete its branches first."
            )
        del self._nodes[node_id]
        parent = self._nodes.get(node.parent_id) if node.parent_id else None
        if parent is not None:
            parent.children = [child for child in parent.children if child != node_id]
        return node.parent_id

    def path_to(self, node_id: str) -> List[TreeNode]:
        """Nodes from root down to ``node_id``; stops early at a dangling parent reference."""
        path: List[TreeNode] = []
        seen: set[str] = set()
        current: Optional[str] = node_id
        while current is not None:
            node = self._nodes.get(current)
            if node is None:
                break
            if current in seen:
                raise TreeValidationError(f"Cycle detected at node {current}")
            seen.add(current)
            path.append(node)
            current = node.parent_id
        path.reverse()
        return path

    def reconstruct_history(self, leaf_node_id: str) -> List[Message]:
        # The root's welcome message is never part of the model context.
        history = [message for node in self.path_to(leaf_node_id) for message in node.messages]
        return history[1:]

    def last_leaf(self) -> str:
        current = self.root()
        while current.children:
            child = self._nodes.get(current.children[-1])
            if child is None:
                break
            current = child
        return current.node_id

    def check_integrity(self) -> None:
        parentless = [node_id for node_id, node in self._nodes.items() if node.parent_id is None]
        if parentless != [ROOT_ID]:
            raise TreeValidationError(f"Expected only the root to have no parent, found {parentless}")
        for node_id, node in self._nodes.items():
            if len(set(node.children)) != len(node.children):
                raise TreeValidationError(f"Duplicate children in node {node_id}")
            for child_id in node.children:
                child = self._nodes.get(child_id)
                if child is None or child.parent_id != node_id:
                    raise TreeValidationError(f"Child {child_id} of {node_id} does not point back to it")
            if node.parent_id is not None:
                parent = self._nodes.get(node.parent_id)
                if parent is None:
                    raise TreeValidationError(f"Parent {node.parent_id} of {node_id} does not exist")
                if node_id not in parent.children:
                    raise TreeValidationError(f"Node {node_id} missing from children of {node.parent_id}")
        for node_id in self._nodes:
            self.path_to(node_id)

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {node_id: node.to_dict() for node_id, node in self._nodes.items()}
