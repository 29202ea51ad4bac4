"""Branch graph model, layout and state for branching conversations."""

from .branches import BranchManager
from .layout import Connector, LayoutConfig, LayoutResult, TreeLayout
from .models import (
    Branch,
    BranchPath,
    BranchStats,
    ConsistencyReport,
    ConversationTree,
    Message,
    MessageTreeNode,
    TreeNode,
)
from .store import BranchState, BranchStore

__all__ = [
    "Branch",
    "BranchManager",
    "BranchPath",
    "BranchState",
    "BranchStats",
    "BranchStore",
    "Connector",
    "ConsistencyReport",
    "ConversationTree",
    "LayoutConfig",
    "LayoutResult",
    "Message",
    "MessageTreeNode",
    "TreeLayout",
    "TreeNode",
]
