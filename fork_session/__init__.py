"""Conversation tree persistence for fork-chat."""

from .batch import create_sibling_branches, decode_separator, import_chain, short_label, split_batch
from .errors import BatchSplitError, TreeValidationError
from .manager import TreeStore
from .migration import migrate_tree
from .storage import IMPORT_KEY, TREE_KEY, FileStorage, KeyValueStorage, MemoryStorage
from .tree import ROOT_ID, ConversationTree, TreeNode, create_root_node

__all__ = [
    "BatchSplitError",
    "ConversationTree",
    "FileStorage",
    "IMPORT_KEY",
    "KeyValueStorage",
    "MemoryStorage",
    "ROOT_ID",
    "TREE_KEY",
    "TreeNode",
    "TreeStore",
    "TreeValidationError",
    "create_root_node",
    "create_sibling_branches",
    "decode_separator",
    "import_chain",
    "migrate_tree",
    "short_label",
    "split_batch",
]
