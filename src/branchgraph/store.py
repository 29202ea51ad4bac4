"""Subscribable holder of branch UI state for one open conversation.

The store holds only inputs (branches, tree, current branch, selected path).
Forests and layouts are derived by each consumer from the `tree` field.
Every mutation replaces the state object as a whole and notifies subscribers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from .models import Branch, ConversationTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BranchState:
    """Snapshot of branch state. Never mutated; the store swaps snapshots."""

    current_branch_id: str | None = None
    branches: tuple[Branch, ...] = field(default_factory=tuple)
    tree: ConversationTree | None = None
    selected_path: tuple[str, ...] = field(default_factory=tuple)
    stale: bool = False  # set by a repair, cleared by the next full load

    def current_branch(self) -> Branch | None:
        """The Branch object for current_branch_id, if it is in the list."""
        for branch in self.branches:
            if branch.id == self.current_branch_id:
                return branch
        return None


Subscriber = Callable[[BranchState], None]


class BranchStore:
    """Single-writer store with an explicit subscribe/unsubscribe interface.

    Subscribers are called once with the current state on subscribe and then
    after every mutation.
    """

    def __init__(self) -> None:
        self._state = BranchState()
        self._subscribers: list[Subscriber] = []

    @property
    def state(self) -> BranchState:
        return self._state

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a function that unsubscribes it."""
        self._subscribers.append(callback)
        callback(self._state)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _set(self, state: BranchState) -> None:
        self._state = state
        for callback in list(self._subscribers):
            callback(state)

    def _update(self, **changes) -> None:
        self._set(replace(self._state, **changes))

    # ─────────────────────────────────────────────────────────────────────────
    # Whole-state operations
    # ─────────────────────────────────────────────────────────────────────────

    def load_conversation(
        self,
        branches: Iterable[Branch],
        tree: ConversationTree,
        current_branch_id: str | None = None,
    ) -> None:
        """Replace all state for a newly opened conversation.

        current_branch_id defaults to the first branch, or None if there are none.
        """
        branches = tuple(branches)
        if current_branch_id is None and branches:
            current_branch_id = branches[0].id

        logger.debug(
            f"Loaded conversation {tree.conversation_id}: "
            f"{len(branches)} branches, {len(tree.nodes)} nodes"
        )
        self._set(
            BranchState(
                current_branch_id=current_branch_id,
                branches=branches,
                tree=tree,
                selected_path=(),
            )
        )

    def reset(self) -> None:
        """Return to the empty initial state (conversation closed)."""
        self._set(BranchState())

    def mark_stale(self) -> None:
        """Flag the held tree as invalid until load_conversation replaces it."""
        self._update(stale=True)

    # ─────────────────────────────────────────────────────────────────────────
    # Scoped field updates
    # ─────────────────────────────────────────────────────────────────────────

    def set_current_branch(self, branch_id: str | None) -> None:
        self._update(current_branch_id=branch_id)

    def set_branches(self, branches: Iterable[Branch]) -> None:
        self._update(branches=tuple(branches))

    def set_tree(self, tree: ConversationTree | None) -> None:
        self._update(tree=tree)

    def set_selected_path(self, message_ids: Iterable[str]) -> None:
        self._update(selected_path=tuple(message_ids))

    def add_branch(self, branch: Branch) -> None:
        self._update(branches=self._state.branches + (branch,))

    def remove_branch(self, branch_id: str) -> None:
        """Drop a branch; clears current_branch_id if it was the current one.

        No other branch is promoted to current.
        """
        current = self._state.current_branch_id
        self._update(
            branches=tuple(b for b in self._state.branches if b.id != branch_id),
            current_branch_id=None if current == branch_id else current,
        )

    def update_branch_name(self, branch_id: str, name: str) -> None:
        self._update(
            branches=tuple(
                b.model_copy(update={"name": name}) if b.id == branch_id else b
                for b in self._state.branches
            )
        )
