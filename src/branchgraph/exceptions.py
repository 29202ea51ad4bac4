"""Branchgraph exception hierarchy.

All branchgraph-specific exceptions inherit from BranchGraphError.
"""


class BranchGraphError(Exception):
    """Base exception for all branchgraph errors."""


class BackendError(BranchGraphError):
    """Raised when a backend request fails.

    The store keeps its last-good state when this is raised from a refresh.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class BranchNotFoundError(BranchGraphError):
    """Raised when a branch id lookup fails on the backend."""

    def __init__(self, branch_id: str) -> None:
        self.branch_id = branch_id
        super().__init__(f"Branch not found: {branch_id}")


class MessageNotFoundError(BranchGraphError):
    """Raised when a message id does not exist."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message not found: {message_id}")


class ConversationNotFoundError(BranchGraphError):
    """Raised when a conversation id does not exist."""

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(f"Conversation not found: {conversation_id}")


class MessageNotInTreeError(BranchGraphError):
    """Raised when forking from a message that is not on the main branch."""

    def __init__(self, message_id: str) -> None:
        self.message_id = message_id
        super().__init__(f"Message is not in the message tree: {message_id}")


class StaleTreeError(BranchGraphError):
    """Raised when querying a tree that a repair has invalidated.

    Reload the conversation before running further path or layout queries.
    """

    def __init__(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        super().__init__(
            f"Tree for conversation {conversation_id} is stale after repair; reload it first"
        )
