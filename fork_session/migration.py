"""Schema migration for persisted and imported conversation trees."""

from __future__ import annotations

from typing import Any, Dict


def migrate_tree(nodes: Dict[str, Any]) -> Dict[str, Any]:
    """Bring every node dict to the current shape, in place.

    Older trees stored a single ``message`` per node and had no collapsed
    flag. Running the pass on already-migrated data changes nothing.
    """
    for node_id, node in nodes.items():
        if not isinstance(node, dict):
            continue
        node.setdefault("id", node_id)
        if "isCollapsed" not in node:
            node["isCollapsed"] = False
        if "message" in node:
            legacy = node.pop("message")
            if legacy and not node.get("messages"):
                node["messages"] = [legacy]
        if not node.get("messages"):
            node["messages"] = []
        if "childrenIds" not in node:
            node["childrenIds"] = []
    return nodes
