"""Tree layout for branch diagrams.

Assigns deterministic (x, y) coordinates to a forest of TreeNodes and builds
the parent -> child connector curves. A simplified Reingold-Tilford layering:
leaves take consecutive horizontal slots, parents are centered over their
first and last child, rows are spaced by depth.

Every call lays out the whole forest from scratch; coordinates of untouched
subtrees may shift after any structural change.
"""

import os
from dataclasses import dataclass

from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_HORIZONTAL_SPACING,
    DEFAULT_NODE_HEIGHT,
    DEFAULT_NODE_WIDTH,
    DEFAULT_VERTICAL_SPACING,
    ENV_HORIZONTAL_SPACING,
    ENV_NODE_HEIGHT,
    ENV_NODE_WIDTH,
    ENV_VERTICAL_SPACING,
)
from .models import TreeNode


class LayoutConfig(BaseModel):
    """Box size and spacing used by TreeLayout."""

    node_width: float = Field(default=DEFAULT_NODE_WIDTH, gt=0)
    node_height: float = Field(default=DEFAULT_NODE_HEIGHT, gt=0)
    horizontal_spacing: float = Field(default=DEFAULT_HORIZONTAL_SPACING, ge=0)
    vertical_spacing: float = Field(default=DEFAULT_VERTICAL_SPACING, ge=0)

    @classmethod
    def from_env(cls, **overrides) -> "LayoutConfig":
        """Build a config from BRANCHGRAPH_* environment variables.

        Explicit keyword overrides win over the environment; unset values
        fall back to the defaults.
        """
        env_map = {
            "node_width": ENV_NODE_WIDTH,
            "node_height": ENV_NODE_HEIGHT,
            "horizontal_spacing": ENV_HORIZONTAL_SPACING,
            "vertical_spacing": ENV_VERTICAL_SPACING,
        }
        values = {}
        for field_name, var in env_map.items():
            if (raw := os.environ.get(var)) is not None:
                try:
                    values[field_name] = float(raw)
                except ValueError:
                    raise ValueError(f"{var} must be a number, got {raw!r}") from None

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass
class LayoutResult:
    """Positioned nodes plus canvas size."""

    nodes: list[TreeNode]
    width: float
    height: float

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "nodes": [n.to_dict() for n in self.nodes],
        }


@dataclass
class Connector:
    """An SVG path from a parent box to one of its children."""

    from_id: str
    to_id: str
    path: str

    def to_dict(self) -> dict:
        return {"from": self.from_id, "to": self.to_id, "path": self.path}


def _fmt(value: float) -> str:
    """Format a coordinate for SVG path data (no trailing .0)."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(round(value, 2))


class TreeLayout:
    """Positions TreeNodes for rendering.

    Args:
        config: Box size and spacing (default: LayoutConfig())
        **overrides: Individual LayoutConfig fields to override, validated
            like the config itself (pydantic ValidationError on bad values)
    """

    def __init__(self, config: LayoutConfig | None = None, **overrides):
        base = config or LayoutConfig()
        if overrides:
            base = LayoutConfig.model_validate({**base.model_dump(), **overrides})
        self.config = base

    @property
    def column_step(self) -> float:
        return self.config.node_width + self.config.horizontal_spacing

    @property
    def row_step(self) -> float:
        return self.config.node_height + self.config.vertical_spacing

    # ─────────────────────────────────────────────────────────────────────────
    # Layout passes
    # ─────────────────────────────────────────────────────────────────────────

    def layout(self, roots: list[TreeNode]) -> LayoutResult:
        """Calculate positions for every node of a forest.

        Args:
            roots: Forest roots, as returned by BranchManager.build_tree

        Returns:
            LayoutResult with nodes in depth-first forest order

        Raises:
            TypeError: If roots is None
        """
        if roots is None:
            raise TypeError("layout() requires a forest (list of root nodes), got None")

        current_x = 0.0
        for root in roots:
            current_x = self._assign_initial_x(root, current_x)

        all_nodes: list[TreeNode] = []
        for root in roots:
            self._assign_y(root, all_nodes)

        if not all_nodes:
            return LayoutResult(nodes=[], width=0, height=0)

        min_x = min(n.x for n in all_nodes)
        max_x = max(n.x for n in all_nodes)
        max_y = max(n.y for n in all_nodes)

        return LayoutResult(
            nodes=all_nodes,
            width=max_x - min_x + self.config.node_width,
            height=max_y + self.config.node_height,
        )

    def _assign_initial_x(self, root: TreeNode, start_x: float) -> float:
        """Post-order x pass over one tree. Returns the next free slot."""
        cursor = start_x
        stack: list[tuple[TreeNode, bool]] = [(root, False)]

        while stack:
            node, children_done = stack.pop()

            if not node.children:
                node.x = cursor
                cursor += self.column_step
            elif children_done:
                # Center over first and last child
                node.x = (node.children[0].x + node.children[-1].x) / 2
            else:
                stack.append((node, True))
                for child in reversed(node.children):
                    stack.append((child, False))

        return cursor

    def _assign_y(self, root: TreeNode, all_nodes: list[TreeNode]) -> None:
        """Pre-order y pass; appends each visited node to all_nodes."""
        stack: list[tuple[TreeNode, int]] = [(root, 0)]
        while stack:
            node, depth = stack.pop()
            node.y = depth * self.row_step
            all_nodes.append(node)
            for child in reversed(node.children):
                stack.append((child, depth + 1))

    def layout_horizontal(self, nodes: list[TreeNode]) -> LayoutResult:
        """Compact layout for a linear run of nodes: one column per node."""
        for index, node in enumerate(nodes):
            node.x = index * self.column_step
            node.y = node.depth * self.row_step

        width = nodes[-1].x + self.config.node_width if nodes else self.config.node_width
        max_depth = max((n.depth for n in nodes), default=0)
        height = (max_depth + 1) * self.row_step

        return LayoutResult(nodes=nodes, width=width, height=height)

    # ─────────────────────────────────────────────────────────────────────────
    # Connectors
    # ─────────────────────────────────────────────────────────────────────────

    def generate_path(self, parent: TreeNode, child: TreeNode) -> str:
        """Cubic Bezier from the parent's bottom-center to the child's top-center.

        Both control points sit on the vertical midpoint, giving an S-curve.
        """
        start_x = parent.x + self.config.node_width / 2
        start_y = parent.y + self.config.node_height
        end_x = child.x + self.config.node_width / 2
        end_y = child.y
        mid_y = (start_y + end_y) / 2

        sx, sy, ex, ey, my = (_fmt(v) for v in (start_x, start_y, end_x, end_y, mid_y))
        return f"M {sx},{sy} C {sx},{my} {ex},{my} {ex},{ey}"

    def generate_paths(self, nodes: list[TreeNode]) -> list[Connector]:
        """Connectors for every parent -> child edge among the given nodes."""
        return [
            Connector(
                from_id=node.message_id,
                to_id=child.message_id,
                path=self.generate_path(node, child),
            )
            for node in nodes
            for child in node.children
        ]
