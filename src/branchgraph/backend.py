"""Backend contract for branch persistence, plus an in-memory implementation.

BranchBackend is the request/response surface the session talks to. The
graph engine never persists anything itself. InMemoryBackend follows the
same rules as the production store (forks copy the root-to-fork path into
the new branch, the main branch is provisioned lazily, repair re-attaches
orphaned messages to the main branch) and backs the CLI demo and the tests.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from .branches import BranchManager
from .constants import MAIN_BRANCH_NAME
from .exceptions import (
    BranchNotFoundError,
    ConversationNotFoundError,
    MessageNotFoundError,
    MessageNotInTreeError,
)
from .models import (
    Branch,
    BranchPath,
    BranchStats,
    ConsistencyReport,
    ConversationTree,
    Message,
    MessageRole,
    MessageTreeNode,
    generate_id,
    validate_branch_name,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class BranchBackend(Protocol):
    """Async request/response operations consumed by BranchSession."""

    async def get_conversation_branches(self, conversation_id: str) -> list[Branch]: ...

    async def get_conversation_tree(self, conversation_id: str) -> ConversationTree: ...

    async def get_branch_path(self, branch_id: str) -> BranchPath: ...

    async def get_or_create_main_branch(self, conversation_id: str) -> Branch: ...

    async def create_branch(self, conversation_id: str, name: str) -> Branch: ...

    async def create_branch_from_message(
        self, conversation_id: str, parent_message_id: str, branch_name: str
    ) -> Branch: ...

    async def rename_branch(self, branch_id: str, new_name: str) -> None: ...

    async def delete_branch(self, branch_id: str) -> None: ...

    async def get_branch_stats(self, conversation_id: str) -> BranchStats: ...

    async def check_message_tree_consistency(self) -> ConsistencyReport: ...

    async def repair_message_tree(self) -> int: ...


class InMemoryBackend:
    """Dict-backed BranchBackend.

    Every read returns copies, so a tree handed to the store never changes
    underneath it when the backend is mutated later.
    """

    def __init__(self) -> None:
        self.conversations: set[str] = set()
        self.messages: dict[str, Message] = {}  # insertion order = creation order
        self.branches: dict[str, Branch] = {}
        self.rows: list[MessageTreeNode] = []
        self._manager = BranchManager()

    # ─────────────────────────────────────────────────────────────────────────
    # Seeding helpers (synchronous)
    # ─────────────────────────────────────────────────────────────────────────

    def add_conversation(self, conversation_id: str | None = None) -> str:
        conversation_id = conversation_id or generate_id()
        self.conversations.add(conversation_id)
        return conversation_id

    def add_message(
        self,
        conversation_id: str,
        content: str = "",
        role: MessageRole = "user",
        parent_message_id: str | None = None,
        branch_id: str | None = None,
        message_id: str | None = None,
        attach: bool = True,
    ) -> Message:
        """Store a message and, unless attach is False, its tree row.

        The row goes on branch_id, or on the main branch when omitted.
        """
        self._require_conversation(conversation_id)
        fields = {"id": message_id} if message_id is not None else {}
        message = Message(conversation_id=conversation_id, role=role, content=content, **fields)
        self.messages[message.id] = message

        if attach:
            if branch_id is None:
                branch_id = self._main_branch(conversation_id).id
            self._insert_row(message.id, parent_message_id, branch_id)
        return message

    # ─────────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────────

    async def get_conversation_branches(self, conversation_id: str) -> list[Branch]:
        self._require_conversation(conversation_id)
        return [b.model_copy() for b in self._branches_of(conversation_id)]

    async def get_conversation_tree(self, conversation_id: str) -> ConversationTree:
        self._require_conversation(conversation_id)
        return self._snapshot(conversation_id)

    async def get_branch_path(self, branch_id: str) -> BranchPath:
        """Branch plus the messages from the root to the branch tip."""
        branch = self.branches.get(branch_id)
        if branch is None:
            raise BranchNotFoundError(branch_id)

        tree = self._snapshot(branch.conversation_id)
        tip = self._manager.get_branch_tip(tree, branch_id)
        path = self._manager.get_path_to_message(tree, tip) if tip else []

        return BranchPath(
            branch=branch.model_copy(),
            messages=[self.messages[mid].model_copy() for mid in path if mid in self.messages],
        )

    async def get_branch_stats(self, conversation_id: str) -> BranchStats:
        self._require_conversation(conversation_id)
        return self._manager.stats(self._snapshot(conversation_id))

    # ─────────────────────────────────────────────────────────────────────────
    # Branch CRUD
    # ─────────────────────────────────────────────────────────────────────────

    async def get_or_create_main_branch(self, conversation_id: str) -> Branch:
        self._require_conversation(conversation_id)
        return self._main_branch(conversation_id).model_copy()

    async def create_branch(self, conversation_id: str, name: str) -> Branch:
        self._require_conversation(conversation_id)
        return self._new_branch(conversation_id, validate_branch_name(name)).model_copy()

    async def create_branch_from_message(
        self, conversation_id: str, parent_message_id: str, branch_name: str
    ) -> Branch:
        """Fork a new branch at a message on the main branch.

        The root-to-message path is copied into the new branch and the fork
        message is flagged as a branch point on the main branch.

        Raises:
            MessageNotFoundError: If the message does not exist
            ConversationNotFoundError: If the conversation does not exist
            MessageNotInTreeError: If the message has no row on the main branch
        """
        name = validate_branch_name(branch_name)
        if parent_message_id not in self.messages:
            raise MessageNotFoundError(parent_message_id)
        self._require_conversation(conversation_id)

        main = self._main_branch(conversation_id)
        main_rows = {r.message_id: r for r in self.rows if r.branch_id == main.id}
        if parent_message_id not in main_rows:
            raise MessageNotInTreeError(parent_message_id)

        # Walk the main branch back to its root
        path: list[str] = []
        current: str | None = parent_message_id
        while current is not None and current in main_rows and current not in path:
            path.append(current)
            current = main_rows[current].parent_message_id
        path.reverse()

        branch = self._new_branch(conversation_id, name)
        for position, message_id in enumerate(path):
            self._insert_row(message_id, path[position - 1] if position else None, branch.id)

        main_rows[parent_message_id].branch_point = True
        logger.debug(
            f"Forked branch {branch.id} at {parent_message_id} ({len(path)} messages copied)"
        )
        return branch.model_copy()

    async def rename_branch(self, branch_id: str, new_name: str) -> None:
        branch = self.branches.get(branch_id)
        if branch is None:
            raise BranchNotFoundError(branch_id)
        branch.name = validate_branch_name(new_name)

    async def delete_branch(self, branch_id: str) -> None:
        """Delete a branch and its rows. Messages themselves are kept."""
        if self.branches.pop(branch_id, None) is None:
            raise BranchNotFoundError(branch_id)
        self.rows = [r for r in self.rows if r.branch_id != branch_id]

    async def create_message_tree_node(
        self,
        message_id: str,
        parent_message_id: str | None,
        branch_id: str,
        is_branch_point: bool = False,
    ) -> MessageTreeNode:
        if message_id not in self.messages:
            raise MessageNotFoundError(message_id)
        if branch_id not in self.branches:
            raise BranchNotFoundError(branch_id)
        row = self._insert_row(message_id, parent_message_id, branch_id, is_branch_point)
        return row.model_copy()

    # ─────────────────────────────────────────────────────────────────────────
    # Consistency
    # ─────────────────────────────────────────────────────────────────────────

    async def check_message_tree_consistency(self) -> ConsistencyReport:
        """Check every conversation for messages that are not attached to the tree."""
        orphaned = self._orphaned_ids()
        warnings: list[str] = []

        missing_parent = sum(
            1
            for r in self.rows
            if r.parent_message_id is not None and r.parent_message_id not in self.messages
        )
        if missing_parent:
            warnings.append(
                f"{missing_parent} message tree nodes reference non-existent parent messages"
            )

        missing_message = sum(1 for r in self.rows if r.message_id not in self.messages)
        if missing_message:
            warnings.append(
                f"{missing_message} message tree nodes reference non-existent messages"
            )

        missing_branch = sum(1 for r in self.rows if r.branch_id not in self.branches)
        if missing_branch:
            warnings.append(
                f"{missing_branch} message tree nodes reference non-existent branches"
            )

        return ConsistencyReport.from_findings(orphaned, warnings)

    async def repair_message_tree(self) -> int:
        """Attach orphaned messages to their conversation's main branch.

        Each one is parented to the latest earlier message on the main branch
        (or becomes a root if there is none). Returns the number fixed.
        """
        orphaned = self._orphaned_ids()
        order = {mid: position for position, mid in enumerate(self.messages)}
        repaired = 0

        for message_id in orphaned:
            message = self.messages[message_id]
            main = self._main_branch(message.conversation_id)
            earlier = [
                r.message_id
                for r in self.rows
                if r.branch_id == main.id
                and r.message_id in order
                and order[r.message_id] < order[message_id]
            ]
            parent_id = max(earlier, key=order.__getitem__) if earlier else None

            rows = [r for r in self.rows if r.message_id == message_id]
            if rows:
                for row in rows:
                    row.parent_message_id = parent_id
            else:
                self._insert_row(message_id, parent_id, main.id)
            repaired += 1

        if repaired:
            logger.info(f"Repaired {repaired} orphaned message(s)")
        return repaired

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    def _require_conversation(self, conversation_id: str) -> None:
        if conversation_id not in self.conversations:
            raise ConversationNotFoundError(conversation_id)

    def _branches_of(self, conversation_id: str) -> list[Branch]:
        return [b for b in self.branches.values() if b.conversation_id == conversation_id]

    def _new_branch(self, conversation_id: str, name: str) -> Branch:
        branch = Branch(conversation_id=conversation_id, name=name)
        self.branches[branch.id] = branch
        return branch

    def _main_branch(self, conversation_id: str) -> Branch:
        for branch in self._branches_of(conversation_id):
            if branch.name == MAIN_BRANCH_NAME:
                return branch
        return self._new_branch(conversation_id, MAIN_BRANCH_NAME)

    def _insert_row(
        self,
        message_id: str,
        parent_message_id: str | None,
        branch_id: str,
        branch_point: bool = False,
    ) -> MessageTreeNode:
        # One row per (message, branch)
        for row in self.rows:
            if row.message_id == message_id and row.branch_id == branch_id:
                return row
        row = MessageTreeNode(
            message_id=message_id,
            parent_message_id=parent_message_id,
            branch_id=branch_id,
            branch_point=branch_point,
        )
        self.rows.append(row)
        return row

    def _orphaned_ids(self) -> list[str]:
        """Messages with no tree row, or whose rows all point at a missing parent."""
        rows_by_message: dict[str, list[MessageTreeNode]] = {}
        for row in self.rows:
            rows_by_message.setdefault(row.message_id, []).append(row)

        orphaned = []
        for message_id in self.messages:
            rows = rows_by_message.get(message_id)
            if not rows or all(
                r.parent_message_id is not None and r.parent_message_id not in self.messages
                for r in rows
            ):
                orphaned.append(message_id)
        return orphaned

    def _snapshot(self, conversation_id: str) -> ConversationTree:
        message_ids = {
            mid for mid, m in self.messages.items() if m.conversation_id == conversation_id
        }
        return ConversationTree(
            conversation_id=conversation_id,
            branches=[b.model_copy() for b in self._branches_of(conversation_id)],
            nodes=[r.model_copy() for r in self.rows if r.message_id in message_ids],
            messages=[self.messages[mid].model_copy() for mid in self.messages if mid in message_ids],
        )
