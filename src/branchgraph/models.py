"""Core data models for the branch graph.

Uses Pydantic v2 for the records that cross the backend boundary and a plain
dataclass for the mutable, layout-augmented TreeNode. ULIDs for sortable ids.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field
from ulid import ULID

from .constants import AUTO_BRANCH_PREFIX, MAX_BRANCH_NAME_LENGTH


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Backend records
# ─────────────────────────────────────────────────────────────────────────────


class Branch(BaseModel):
    """A named, independently extensible line of messages in a conversation."""

    id: str = Field(default_factory=generate_id)
    conversation_id: str
    name: str
    created_at: datetime = Field(default_factory=utc_now)

    def to_summary(self) -> dict:
        """Return a compact summary of this branch."""
        return {
            "id": self.id,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }


class MessageTreeNode(BaseModel):
    """One (message, parent, branch) edge as persisted by the backend.

    A message forked into several branches appears once per branch; the
    first row for a message id is the branch it was authored on.
    """

    message_id: str
    parent_message_id: str | None = None  # None marks a root
    branch_id: str
    branch_point: bool = False  # as stored; recompute before trusting
    created_at: datetime = Field(default_factory=utc_now)


MessageRole = Literal["user", "assistant", "system"]


class Message(BaseModel):
    """A conversation message. Content is opaque to the branch graph."""

    id: str = Field(default_factory=generate_id)
    conversation_id: str
    role: MessageRole = "user"
    content: str = ""
    created_at: datetime = Field(default_factory=utc_now)


class ConversationTree(BaseModel):
    """Full node set plus branch set for one conversation.

    Replaced wholesale on reload; never patched node-by-node.
    """

    conversation_id: str
    branches: list[Branch] = Field(default_factory=list)
    nodes: list[MessageTreeNode] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)

    def get_branch(self, branch_id: str) -> Branch | None:
        """Look up a branch of this tree by id."""
        for branch in self.branches:
            if branch.id == branch_id:
                return branch
        return None


class BranchPath(BaseModel):
    """A branch together with its messages from root to branch tip."""

    branch: Branch
    messages: list[Message] = Field(default_factory=list)

    @property
    def message_ids(self) -> list[str]:
        return [m.id for m in self.messages]


class BranchStats(BaseModel):
    """Summary counts for a conversation's branch graph."""

    conversation_id: str
    total_branches: int = 0
    total_messages: int = 0
    branch_points: int = 0


class ConsistencyReport(BaseModel):
    """Result of a message tree consistency check.

    orphaned_messages lists message ids that are not attached to the tree
    (missing tree row, or a parent id that does not resolve).
    """

    orphaned_messages: list[str] = Field(default_factory=list)
    orphaned_count: int = 0
    is_consistent: bool = True
    warnings: list[str] = Field(default_factory=list)

    @classmethod
    def from_findings(cls, orphaned: list[str], warnings: list[str]) -> "ConsistencyReport":
        return cls(
            orphaned_messages=orphaned,
            orphaned_count=len(orphaned),
            is_consistent=not orphaned and not warnings,
            warnings=warnings,
        )


# ─────────────────────────────────────────────────────────────────────────────
# Derived render nodes
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(eq=False)
class TreeNode:
    """A node of the in-memory forest built for one layout pass.

    x/y are written only by the layout engine. A fresh set of TreeNodes is
    produced by every build; they are never shared across passes.
    """

    message_id: str
    parent_id: str | None
    branch_id: str
    is_branch_point: bool = False
    children: list["TreeNode"] = field(default_factory=list)
    depth: int = 0
    x: float = 0.0
    y: float = 0.0

    def to_dict(self) -> dict:
        """Serialize position and identity (children as ids)."""
        return {
            "message_id": self.message_id,
            "parent_id": self.parent_id,
            "branch_id": self.branch_id,
            "is_branch_point": self.is_branch_point,
            "depth": self.depth,
            "x": self.x,
            "y": self.y,
            "children": [c.message_id for c in self.children],
        }


# ─────────────────────────────────────────────────────────────────────────────
# Branch naming
# ─────────────────────────────────────────────────────────────────────────────

AUTO_BRANCH_PATTERN = re.compile(rf"^{AUTO_BRANCH_PREFIX} (\d+)$")


def validate_branch_name(name: str) -> str:
    """Normalize a user-supplied branch name.

    Returns:
        The stripped name

    Raises:
        ValueError: If the name is blank or too long
    """
    cleaned = name.strip()
    if not cleaned:
        raise ValueError("Branch name cannot be empty")
    if len(cleaned) > MAX_BRANCH_NAME_LENGTH:
        raise ValueError(
            f"Branch name is too long ({len(cleaned)} > {MAX_BRANCH_NAME_LENGTH} characters)"
        )
    return cleaned


def generate_branch_name(branches: list[Branch]) -> str:
    """Next auto-incrementing name: "Branch N" after the highest existing N."""
    numbers = []
    for branch in branches:
        match = AUTO_BRANCH_PATTERN.match(branch.name)
        if match and int(match.group(1)) > 0:
            numbers.append(int(match.group(1)))

    next_number = max(numbers) + 1 if numbers else 1
    return f"{AUTO_BRANCH_PREFIX} {next_number}"
