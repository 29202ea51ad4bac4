"""Shared test fixtures and helpers for branchgraph tests."""

from datetime import datetime, timedelta, timezone

import pytest

from branchgraph.backend import InMemoryBackend
from branchgraph.branches import BranchManager
from branchgraph.layout import TreeLayout
from branchgraph.models import Branch, ConversationTree, Message, MessageTreeNode

BASE_TS = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)


# --- Helper Functions (not fixtures) ---


def make_tree(
    edges: list[tuple],
    conversation_id: str = "conv-1",
    branches: list[Branch] | None = None,
    messages: bool = True,
) -> ConversationTree:
    """Build a ConversationTree from (message_id, parent_id, branch_id[, branch_point]) tuples.

    Args:
        edges: One tuple per tree row, in row order
        conversation_id: Conversation the tree belongs to
        branches: Branch set (default: one Branch per distinct branch id, named after it)
        messages: Also create a Message per distinct message id

    Returns:
        A ConversationTree with deterministic timestamps.
    """
    nodes = []
    for position, edge in enumerate(edges):
        message_id, parent_id, branch_id = edge[:3]
        flag = edge[3] if len(edge) > 3 else False
        nodes.append(
            MessageTreeNode(
                message_id=message_id,
                parent_message_id=parent_id,
                branch_id=branch_id,
                branch_point=flag,
                created_at=BASE_TS + timedelta(seconds=position),
            )
        )

    if branches is None:
        branch_ids = list(dict.fromkeys(n.branch_id for n in nodes))
        branches = [
            Branch(id=bid, conversation_id=conversation_id, name=bid, created_at=BASE_TS)
            for bid in branch_ids
        ]

    message_list = []
    if messages:
        for message_id in dict.fromkeys(n.message_id for n in nodes):
            message_list.append(
                Message(
                    id=message_id,
                    conversation_id=conversation_id,
                    content=f"content of {message_id}",
                    created_at=BASE_TS,
                )
            )

    return ConversationTree(
        conversation_id=conversation_id,
        branches=branches,
        nodes=nodes,
        messages=message_list,
    )


def make_branch(branch_id: str, name: str | None = None, conversation_id: str = "conv-1") -> Branch:
    return Branch(id=branch_id, conversation_id=conversation_id, name=name or branch_id)


# --- Fixtures ---


@pytest.fixture
def manager():
    """Provide a fresh BranchManager."""
    return BranchManager()


@pytest.fixture
def tree_layout():
    """Provide a TreeLayout with the default geometry (120x60, spacing 40/100)."""
    return TreeLayout()


@pytest.fixture
def linear_tree():
    """m1 -> m2 -> m3 on a single branch."""
    return make_tree([
        ("m1", None, "main"),
        ("m2", "m1", "main"),
        ("m3", "m2", "main"),
    ])


@pytest.fixture
def fork_tree():
    """m1 with two children m2 and m3."""
    return make_tree([
        ("m1", None, "main"),
        ("m2", "m1", "main"),
        ("m3", "m1", "alt"),
    ])


@pytest.fixture
def divergence_tree():
    """Branch A = [m1, m2, m4], branch B = [m1, m2, m5].

    B's copies of m1/m2 follow the backend's fork behavior (one row per branch).
    """
    return make_tree([
        ("m1", None, "A"),
        ("m2", "m1", "A", True),
        ("m4", "m2", "A"),
        ("m1", None, "B"),
        ("m2", "m1", "B"),
        ("m5", "m2", "B"),
    ])


@pytest.fixture
def backend():
    """Provide an empty InMemoryBackend."""
    return InMemoryBackend()


@pytest.fixture
def seeded_backend(backend):
    """Backend with conversation "conv-1": m1 -> m2 -> m3 on the main branch.

    Returns:
        (backend, conversation_id)
    """
    conversation_id = backend.add_conversation("conv-1")
    backend.add_message(conversation_id, "hello", "user", message_id="m1")
    backend.add_message(conversation_id, "hi there", "assistant", "m1", message_id="m2")
    backend.add_message(conversation_id, "tell me more", "user", "m2", message_id="m3")
    return backend, conversation_id
