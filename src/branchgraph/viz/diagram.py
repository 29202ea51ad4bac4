"""Tree diagram consumer for the branch store.

Subscribes to a BranchStore and re-derives the forest, layout and connectors
from scratch whenever the store's tree object changes. Nothing is patched
incrementally; the previous forest is discarded on every change, and while
the store is marked stale the diagram is empty.
"""

from __future__ import annotations

import logging
from typing import Callable

from ..branches import BranchManager
from ..layout import Connector, LayoutResult, TreeLayout
from ..models import ConversationTree, TreeNode
from ..store import BranchState, BranchStore
from .export import export_tree_for_viz

logger = logging.getLogger(__name__)


class TreeDiagram:
    """Keeps a laid-out forest in sync with a store's tree.

    Args:
        store: Store to observe
        manager: Branch manager used to build forests
        layout: Layout engine
        on_render: Called with the diagram after every re-derivation
    """

    def __init__(
        self,
        store: BranchStore,
        manager: BranchManager | None = None,
        layout: TreeLayout | None = None,
        on_render: Callable[["TreeDiagram"], None] | None = None,
    ):
        self.store = store
        self.manager = manager or BranchManager()
        self.layout_engine = layout or TreeLayout()
        self.on_render = on_render

        self.tree: ConversationTree | None = None
        self.roots: list[TreeNode] = []
        self.result = LayoutResult(nodes=[], width=0, height=0)
        self.connectors: list[Connector] = []
        self.render_count = 0
        self.stale = False
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> "TreeDiagram":
        """Start observing the store (renders immediately)."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_state)
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_state(self, state: BranchState) -> None:
        if state.stale:
            # Repaired tree: the old forest must not be served
            if not self.stale:
                self.stale = True
                self.tree = None
                self._rederive()
            return
        if self.render_count and state.tree is self.tree and not self.stale:
            return
        self.stale = False
        self.tree = state.tree
        self._rederive()

    def _rederive(self) -> None:
        if self.tree is None:
            self.roots = []
        else:
            self.roots = self.manager.build_tree(self.tree)

        self.result = self.layout_engine.layout(self.roots)
        self.connectors = self.layout_engine.generate_paths(self.result.nodes)
        self.render_count += 1
        logger.debug(f"Re-derived diagram: {len(self.result.nodes)} nodes")

        if self.on_render is not None:
            self.on_render(self)

    def node(self, message_id: str) -> TreeNode | None:
        for node in self.result.nodes:
            if node.message_id == message_id:
                return node
        return None

    def to_dict(self) -> dict:
        """Export the current diagram, including the store's selection."""
        state = self.store.state
        return export_tree_for_viz(
            tree=self.tree,
            result=self.result,
            connectors=self.connectors,
            config=self.layout_engine.config,
            selected_path=list(state.selected_path),
            current_branch_id=state.current_branch_id,
        )
