"""Lookup indices over a ConversationTree.

Built once per tree load and reused across structural queries so that
children/descendant lookups do not rescan the node list.
"""

from collections import deque
from dataclasses import dataclass, field

from .models import ConversationTree, MessageTreeNode


@dataclass
class TreeIndex:
    """Indexed view of one conversation's node set.

    Includes indices for O(1) lookups:
    - nodes_by_id: message ID -> canonical (first-seen) node
    - children_by_parent: parent message ID -> distinct child message IDs, in input order
    - members_by_branch: branch ID -> distinct message IDs with a row on that branch
    - row_order: message ID -> position of its last row in the input
    - path_lengths: message ID -> length of its root-to-message path, for messages
      reachable from a root through canonical parent links
    """

    tree: ConversationTree
    nodes_by_id: dict[str, MessageTreeNode] = field(default_factory=dict)
    children_by_parent: dict[str, list[str]] = field(default_factory=dict)
    members_by_branch: dict[str, list[str]] = field(default_factory=dict)
    row_order: dict[str, int] = field(default_factory=dict)
    path_lengths: dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_tree(cls, tree: ConversationTree) -> "TreeIndex":
        index = cls(tree=tree)
        index._rebuild()
        return index

    def _rebuild(self) -> None:
        self.nodes_by_id = {}
        self.children_by_parent = {}
        self.members_by_branch = {}
        self.row_order = {}

        seen_edges: set[tuple[str, str]] = set()
        seen_members: set[tuple[str, str]] = set()

        for position, node in enumerate(self.tree.nodes):
            self.nodes_by_id.setdefault(node.message_id, node)
            self.row_order[node.message_id] = position

            if (node.branch_id, node.message_id) not in seen_members:
                seen_members.add((node.branch_id, node.message_id))
                self.members_by_branch.setdefault(node.branch_id, []).append(node.message_id)

            parent = node.parent_message_id
            if parent is not None and (parent, node.message_id) not in seen_edges:
                seen_edges.add((parent, node.message_id))
                self.children_by_parent.setdefault(parent, []).append(node.message_id)

        # Breadth-first from the roots, following canonical parent links only
        self.path_lengths = {}
        queue = deque(
            (mid, 1) for mid, node in self.nodes_by_id.items() if node.parent_message_id is None
        )
        while queue:
            current, length = queue.popleft()
            if current in self.path_lengths:
                continue
            self.path_lengths[current] = length
            for child_id in self.children_of(current):
                if self.nodes_by_id[child_id].parent_message_id == current:
                    queue.append((child_id, length + 1))

    def get(self, message_id: str) -> MessageTreeNode | None:
        """O(1) lookup of the canonical node for a message."""
        return self.nodes_by_id.get(message_id)

    def contains(self, message_id: str) -> bool:
        return message_id in self.nodes_by_id

    def children_of(self, message_id: str) -> list[str]:
        """Distinct child message IDs of a message."""
        return self.children_by_parent.get(message_id, [])

    def branch_members(self, branch_id: str) -> list[str]:
        """Distinct message IDs with a row on a branch, in input order."""
        return self.members_by_branch.get(branch_id, [])

    def dangling(self) -> list[MessageTreeNode]:
        """Canonical nodes whose parent id does not resolve to any node."""
        return [
            node
            for node in self.nodes_by_id.values()
            if node.parent_message_id is not None
            and node.parent_message_id not in self.nodes_by_id
        ]

    def check_index_consistency(self) -> list[str]:
        """Validate that indices match the node list. Returns list of errors.

        Debug/test utility; an empty list means indices are consistent.
        """
        errors: list[str] = []

        expected_ids = {n.message_id for n in self.tree.nodes}
        if set(self.nodes_by_id) != expected_ids:
            missing = expected_ids - set(self.nodes_by_id)
            extra = set(self.nodes_by_id) - expected_ids
            if missing:
                errors.append(f"nodes_by_id missing: {missing}")
            if extra:
                errors.append(f"nodes_by_id has stale entries: {extra}")

        expected_edges = {
            (n.parent_message_id, n.message_id)
            for n in self.tree.nodes
            if n.parent_message_id is not None
        }
        actual_edges = {
            (parent, child)
            for parent, children in self.children_by_parent.items()
            for child in children
        }
        if expected_edges != actual_edges:
            errors.append(
                f"children_by_parent mismatch: expected {len(expected_edges)} edges, "
                f"got {len(actual_edges)}"
            )

        for parent, children in self.children_by_parent.items():
            if len(children) != len(set(children)):
                errors.append(f"children_by_parent[{parent}] has duplicates")

        return errors
