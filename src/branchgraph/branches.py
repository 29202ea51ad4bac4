"""Branch manager: forest construction and structural queries.

Turns a flat ConversationTree payload into a forest of TreeNodes and answers
read-only questions about it (ancestry paths, branch membership, divergence,
descendants, branch points). Nothing here performs I/O or mutates the tree.
"""

from __future__ import annotations

import logging
from collections import deque

from .index import TreeIndex
from .models import (
    Branch,
    BranchStats,
    ConsistencyReport,
    ConversationTree,
    MessageTreeNode,
    TreeNode,
)

logger = logging.getLogger(__name__)


class BranchManager:
    """Builds forests and answers structural queries over a ConversationTree.

    Results depend only on the tree passed in. The index for the most recently
    queried tree is kept so that consecutive queries over one loaded tree do
    not rebuild it.
    """

    def __init__(self) -> None:
        self._indexed_tree: ConversationTree | None = None
        self._indexed_count = 0
        self._index: TreeIndex | None = None

    def index(self, tree: ConversationTree) -> TreeIndex:
        """Return the lookup index for a tree, building it on first use."""
        if (
            self._index is None
            or self._indexed_tree is not tree
            or self._indexed_count != len(tree.nodes)
        ):
            self._index = TreeIndex.from_tree(tree)
            self._indexed_tree = tree
            self._indexed_count = len(tree.nodes)
        return self._index

    # ─────────────────────────────────────────────────────────────────────────
    # Forest construction
    # ─────────────────────────────────────────────────────────────────────────

    def build_tree(self, tree: ConversationTree) -> list[TreeNode]:
        """Build a forest of TreeNodes from the flat node list.

        Nodes whose parent id does not resolve are dropped from the forest
        (together with anything only reachable through them) and reported as
        a warning; the rest of the tree still builds.

        Returns:
            Root TreeNodes in input order, with depth assigned
        """
        idx = self.index(tree)

        # First pass: one TreeNode per message
        node_map: dict[str, TreeNode] = {}
        for message_id, node in idx.nodes_by_id.items():
            node_map[message_id] = TreeNode(
                message_id=message_id,
                parent_id=node.parent_message_id,
                branch_id=node.branch_id,
                is_branch_point=len(idx.children_of(message_id)) > 1,
            )

        # Second pass: parent/child links
        roots: list[TreeNode] = []
        for tree_node in node_map.values():
            if tree_node.parent_id is None:
                roots.append(tree_node)
                continue
            parent = node_map.get(tree_node.parent_id)
            if parent is not None and parent is not tree_node:
                parent.children.append(tree_node)

        # Third pass: depths, walked with an explicit stack
        reached: set[str] = set()
        stack = [(root, 0) for root in reversed(roots)]
        while stack:
            tree_node, depth = stack.pop()
            if tree_node.message_id in reached:
                continue
            reached.add(tree_node.message_id)
            tree_node.depth = depth
            for child in reversed(tree_node.children):
                stack.append((child, depth + 1))

        dropped = [mid for mid in node_map if mid not in reached]
        if dropped:
            logger.warning(
                f"Excluded {len(dropped)} unreachable message(s) from the tree of "
                f"conversation {tree.conversation_id}: {dropped[:5]}"
            )

        return roots

    def unreachable_messages(self, tree: ConversationTree) -> list[str]:
        """Message ids that build_tree leaves out of the forest."""
        idx = self.index(tree)
        return [mid for mid in idx.nodes_by_id if mid not in idx.path_lengths]

    def flatten_tree(self, roots: list[TreeNode]) -> list[TreeNode]:
        """Flatten a forest to a pre-order list (root, then each child subtree)."""
        result: list[TreeNode] = []
        stack = list(reversed(roots))
        while stack:
            node = stack.pop()
            result.append(node)
            stack.extend(reversed(node.children))
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # Paths and membership
    # ─────────────────────────────────────────────────────────────────────────

    def get_path_to_message(self, tree: ConversationTree, target_id: str) -> list[str]:
        """Return message ids from the root down to target_id.

        An unknown target yields [target_id]. The walk stops at a parent id
        that does not resolve, and never revisits a message.
        """
        idx = self.index(tree)
        path: list[str] = []
        seen: set[str] = set()

        current: str | None = target_id
        while current is not None and current not in seen:
            if current != target_id and not idx.contains(current):
                break
            seen.add(current)
            path.append(current)
            node = idx.get(current)
            current = node.parent_message_id if node else None

        path.reverse()
        return path

    def get_branch_messages(self, tree: ConversationTree, branch_id: str) -> list[str]:
        """All message ids with a row on branch_id (order not significant)."""
        return list(self.index(tree).branch_members(branch_id))

    def get_branch_tip(self, tree: ConversationTree, branch_id: str) -> str | None:
        """The deepest message on a branch; ties go to the latest row."""
        idx = self.index(tree)
        members = idx.branch_members(branch_id)
        if not members:
            return None

        def depth(mid: str) -> int:
            # Unreachable members (dangling or cyclic) fall back to a path walk
            if mid in idx.path_lengths:
                return idx.path_lengths[mid]
            return len(self.get_path_to_message(tree, mid))

        return max(members, key=lambda mid: (depth(mid), idx.row_order[mid]))

    def get_branch_lineage(self, tree: ConversationTree, branch_id: str) -> set[str]:
        """Branch members plus every ancestor of a member."""
        idx = self.index(tree)
        lineage: set[str] = set()
        for member in idx.branch_members(branch_id):
            # Climb until an already collected ancestor or an unresolved parent
            current: str | None = member
            while current is not None and current not in lineage and idx.contains(current):
                lineage.add(current)
                current = idx.nodes_by_id[current].parent_message_id
        return lineage

    # ─────────────────────────────────────────────────────────────────────────
    # Structure queries
    # ─────────────────────────────────────────────────────────────────────────

    def find_branch_points(self, tree: ConversationTree) -> list[str]:
        """Message ids with two or more distinct children.

        Recomputed from the edges; stored branch_point flags are ignored.
        """
        return [
            parent
            for parent, children in self.index(tree).children_by_parent.items()
            if len(children) > 1
        ]

    def get_children(self, tree: ConversationTree, message_id: str) -> list[MessageTreeNode]:
        """Distinct child nodes of a message."""
        idx = self.index(tree)
        return [idx.nodes_by_id[cid] for cid in idx.children_of(message_id)]

    def has_branches(self, tree: ConversationTree, message_id: str) -> bool:
        return self.get_branch_count(tree, message_id) > 1

    def get_branch_count(self, tree: ConversationTree, message_id: str) -> int:
        return len(self.index(tree).children_of(message_id))

    def get_message_branch(self, tree: ConversationTree, message_id: str) -> Branch | None:
        """The branch a message was authored on, or None if either lookup misses."""
        node = self.index(tree).get(message_id)
        if node is None:
            return None
        return tree.get_branch(node.branch_id)

    def find_divergence_point(
        self, tree: ConversationTree, branch_a: str, branch_b: str
    ) -> str | None:
        """Deepest message shared by two branches.

        Walks branch A's root-to-tip path from the tip upwards and returns the
        first message that is in branch B's lineage.
        """
        tip = self.get_branch_tip(tree, branch_a)
        if tip is None:
            return None

        lineage_b = self.get_branch_lineage(tree, branch_b)
        if not lineage_b:
            return None

        for message_id in reversed(self.get_path_to_message(tree, tip)):
            if message_id in lineage_b:
                return message_id
        return None

    def get_descendants(self, tree: ConversationTree, message_id: str) -> list[str]:
        """Breadth-first descendants of a message, excluding the message itself."""
        idx = self.index(tree)
        descendants: list[str] = []
        visited = {message_id}
        queue = deque([message_id])

        while queue:
            current = queue.popleft()
            for child_id in idx.children_of(current):
                if child_id in visited:
                    continue
                visited.add(child_id)
                descendants.append(child_id)
                queue.append(child_id)

        return descendants

    # ─────────────────────────────────────────────────────────────────────────
    # Consistency and stats
    # ─────────────────────────────────────────────────────────────────────────

    def inspect_consistency(self, tree: ConversationTree) -> ConsistencyReport:
        """Check a loaded tree without contacting the backend.

        Orphaned messages are messages with no tree row and nodes whose parent
        id does not resolve. Warnings cover unknown branches, stale
        branch_point flags and nodes cut off from every root.
        """
        idx = self.index(tree)

        orphaned = [m.id for m in tree.messages if not idx.contains(m.id)]
        orphaned.extend(node.message_id for node in idx.dangling())

        warnings: list[str] = []

        branch_ids = {b.id for b in tree.branches}
        unknown_branch = sum(1 for n in tree.nodes if n.branch_id not in branch_ids)
        if unknown_branch:
            warnings.append(
                f"{unknown_branch} message tree nodes reference non-existent branches"
            )

        points = set(self.find_branch_points(tree))
        flagged = {n.message_id for n in tree.nodes if n.branch_point}
        stale = [mid for mid in idx.nodes_by_id if (mid in flagged) != (mid in points)]
        if stale:
            warnings.append(f"{len(stale)} message tree nodes have a stale branch_point flag")

        orphan_set = set(orphaned)
        cut_off = [mid for mid in self.unreachable_messages(tree) if mid not in orphan_set]
        if cut_off:
            warnings.append(f"{len(cut_off)} message tree nodes are unreachable from any root")

        report = ConsistencyReport.from_findings(orphaned, warnings)
        if not report.is_consistent:
            logger.warning(
                f"Conversation {tree.conversation_id} tree is inconsistent: "
                f"{report.orphaned_count} orphaned, {len(warnings)} warning(s)"
            )
        return report

    def stats(self, tree: ConversationTree) -> BranchStats:
        """Branch counts for a tree, using recomputed branch points."""
        return BranchStats(
            conversation_id=tree.conversation_id,
            total_branches=len(tree.branches),
            total_messages=len(self.index(tree).nodes_by_id),
            branch_points=len(self.find_branch_points(tree)),
        )
