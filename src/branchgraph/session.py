"""Per-conversation branch session.

Owns the BranchStore for one open conversation and mediates between backend
round-trips and the pure graph/layout engines:

- Payloads are validated once here, at the backend boundary.
- A failed request leaves the store's last-good tree and branches in place
  and propagates to the caller.
- Results of a superseded load are ignored (last load issued wins).
- After a repair the held tree is stale until a full reload lands.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, TypeVar

from pydantic import BaseModel

from .backend import BranchBackend
from .branches import BranchManager
from .exceptions import BackendError, BranchGraphError, StaleTreeError
from .layout import Connector, LayoutResult, TreeLayout
from .models import (
    Branch,
    BranchPath,
    ConsistencyReport,
    ConversationTree,
    TreeNode,
    generate_branch_name,
    validate_branch_name,
)
from .store import BranchState, BranchStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _as_model(model: type[M], payload: Any) -> M:
    """Normalize a backend payload (model or JSON-shaped dict) to a model."""
    if isinstance(payload, model):
        return payload
    return model.model_validate(payload)


class BranchSession:
    """Branch state and operations for one open conversation.

    Args:
        backend: Backend implementing the BranchBackend operations
        conversation_id: Conversation this session is bound to
        store: Store to drive (default: a new BranchStore)
        manager: Branch manager for local queries (default: a new one)
        layout: Layout engine for diagrams (default: TreeLayout())
    """

    def __init__(
        self,
        backend: BranchBackend,
        conversation_id: str,
        store: BranchStore | None = None,
        manager: BranchManager | None = None,
        layout: TreeLayout | None = None,
    ):
        self.backend = backend
        self.conversation_id = conversation_id
        self.store = store or BranchStore()
        self.manager = manager or BranchManager()
        self.layout_engine = layout or TreeLayout()
        self._load_generation = 0
        self._tree_generation = 0
        self._pending_load: int | None = None

    @property
    def state(self) -> BranchState:
        return self.store.state

    @property
    def is_stale(self) -> bool:
        return self.store.state.stale

    async def _call(self, operation: str, request: Callable[[], Awaitable[Any]]) -> Any:
        """Run one backend request, logging and normalizing failures."""
        try:
            return await request()
        except BranchGraphError as e:
            logger.warning(f"{operation} failed for conversation {self.conversation_id}: {e}")
            raise
        except Exception as e:
            logger.warning(f"{operation} failed for conversation {self.conversation_id}: {e}")
            raise BackendError(operation, str(e)) from e

    # ─────────────────────────────────────────────────────────────────────────
    # Loading
    # ─────────────────────────────────────────────────────────────────────────

    async def load(self) -> BranchState:
        """Fetch branches and tree and replace the store state.

        Provisions the main branch when the conversation has none. Keeps the
        current branch selected if it still exists. A later load supersedes
        this one and any tree refresh still in flight.
        """
        self._load_generation += 1
        self._tree_generation += 1
        generation = self._load_generation
        self._pending_load = generation

        try:
            branches = [
                _as_model(Branch, b)
                for b in await self._call(
                    "get_conversation_branches",
                    lambda: self.backend.get_conversation_branches(self.conversation_id),
                )
            ]
            if not branches:
                main = await self._call(
                    "get_or_create_main_branch",
                    lambda: self.backend.get_or_create_main_branch(self.conversation_id),
                )
                branches = [_as_model(Branch, main)]

            tree = _as_model(
                ConversationTree,
                await self._call(
                    "get_conversation_tree",
                    lambda: self.backend.get_conversation_tree(self.conversation_id),
                ),
            )
        finally:
            if self._pending_load == generation:
                self._pending_load = None

        if generation != self._load_generation:
            logger.debug(f"Ignoring superseded load #{generation} of {self.conversation_id}")
            return self.store.state

        previous = self.store.state.current_branch_id
        keep = previous if any(b.id == previous for b in branches) else None
        self.store.load_conversation(branches, tree, current_branch_id=keep)
        return self.store.state

    async def refresh_tree(self) -> ConversationTree:
        """Re-fetch the tree; other fields are kept.

        Falls back to a full load when a load is still in flight (its branch
        list may predate the change being refreshed) or the tree is stale.
        """
        if self._pending_load is not None or self.is_stale:
            logger.debug(f"Tree refresh of {self.conversation_id} escalated to a full load")
            state = await self.load()
            return state.tree or ConversationTree(conversation_id=self.conversation_id)

        self._tree_generation += 1
        generation = self._tree_generation

        tree = _as_model(
            ConversationTree,
            await self._call(
                "get_conversation_tree",
                lambda: self.backend.get_conversation_tree(self.conversation_id),
            ),
        )
        if generation != self._tree_generation:
            logger.debug(f"Ignoring superseded tree refresh of {self.conversation_id}")
            return self.store.state.tree or tree

        self.store.set_tree(tree)
        return tree

    def close(self) -> None:
        """Forget all state for this conversation."""
        self._load_generation += 1
        self._tree_generation += 1
        self._pending_load = None
        self.store.reset()

    # ─────────────────────────────────────────────────────────────────────────
    # Branch operations
    # ─────────────────────────────────────────────────────────────────────────

    async def select_branch(self, branch_id: str) -> BranchPath:
        """Make a branch current and select its root-to-tip path."""
        path = _as_model(
            BranchPath,
            await self._call("get_branch_path", lambda: self.backend.get_branch_path(branch_id)),
        )
        self.store.set_current_branch(branch_id)
        self.store.set_selected_path(path.message_ids)
        return path

    def select_message(self, message_id: str) -> list[str]:
        """Select the path from the root to a message of the loaded tree."""
        path = self.path_to(message_id)
        self.store.set_selected_path(path)
        return path

    async def create_branch(
        self, name: str | None = None, from_message_id: str | None = None
    ) -> Branch:
        """Create a branch (forked at from_message_id when given) and make it current.

        The name defaults to the next "Branch N".
        """
        if name:
            name = validate_branch_name(name)
        else:
            name = generate_branch_name(list(self.store.state.branches))

        if from_message_id is not None:
            payload = await self._call(
                "create_branch_from_message",
                lambda: self.backend.create_branch_from_message(
                    self.conversation_id, from_message_id, name
                ),
            )
        else:
            payload = await self._call(
                "create_branch",
                lambda: self.backend.create_branch(self.conversation_id, name),
            )

        branch = _as_model(Branch, payload)
        self.store.add_branch(branch)
        self.store.set_current_branch(branch.id)
        await self.refresh_tree()
        return branch

    async def rename_branch(self, branch_id: str, new_name: str) -> None:
        new_name = validate_branch_name(new_name)
        await self._call(
            "rename_branch", lambda: self.backend.rename_branch(branch_id, new_name)
        )
        self.store.update_branch_name(branch_id, new_name)

    async def delete_branch(self, branch_id: str) -> None:
        """Delete a branch. If it was current, no branch is current afterwards."""
        await self._call("delete_branch", lambda: self.backend.delete_branch(branch_id))
        self.store.remove_branch(branch_id)
        await self.refresh_tree()

    # ─────────────────────────────────────────────────────────────────────────
    # Consistency
    # ─────────────────────────────────────────────────────────────────────────

    async def check_consistency(self) -> ConsistencyReport:
        report = _as_model(
            ConsistencyReport,
            await self._call(
                "check_message_tree_consistency",
                self.backend.check_message_tree_consistency,
            ),
        )
        if not report.is_consistent:
            logger.warning(
                f"Message tree inconsistent: {report.orphaned_count} orphaned, "
                f"{len(report.warnings)} warning(s)"
            )
        return report

    async def repair(self) -> int:
        """Ask the backend to repair the tree, then reload it in full.

        The store is marked stale as soon as the repair succeeds, so every
        subscriber drops its derived forest. If the reload fails the state
        stays stale and local queries raise StaleTreeError.
        """
        fixed = await self._call("repair_message_tree", self.backend.repair_message_tree)
        self.store.mark_stale()
        logger.info(f"Backend repaired {fixed} node(s); reloading {self.conversation_id}")
        await self.load()
        return int(fixed)

    # ─────────────────────────────────────────────────────────────────────────
    # Local queries over the loaded tree
    # ─────────────────────────────────────────────────────────────────────────

    def _tree(self) -> ConversationTree:
        if self.is_stale:
            raise StaleTreeError(self.conversation_id)
        tree = self.store.state.tree
        if tree is None:
            return ConversationTree(conversation_id=self.conversation_id)
        return tree

    def forest(self) -> list[TreeNode]:
        """A freshly built forest of the loaded tree."""
        return self.manager.build_tree(self._tree())

    def layout(self) -> tuple[LayoutResult, list[Connector]]:
        """Lay out a freshly built forest and generate its connectors."""
        result = self.layout_engine.layout(self.forest())
        return result, self.layout_engine.generate_paths(result.nodes)

    def path_to(self, message_id: str) -> list[str]:
        return self.manager.get_path_to_message(self._tree(), message_id)

    def divergence_point(self, branch_a: str, branch_b: str) -> str | None:
        return self.manager.find_divergence_point(self._tree(), branch_a, branch_b)

    def descendants(self, message_id: str) -> list[str]:
        return self.manager.get_descendants(self._tree(), message_id)

    def inspect(self) -> ConsistencyReport:
        """Consistency report for the loaded tree, computed locally."""
        return self.manager.inspect_consistency(self._tree())
