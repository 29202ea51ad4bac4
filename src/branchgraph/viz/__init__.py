"""Branch diagram visualization for branchgraph.

Public API:
- TreeDiagram: store subscriber that keeps a laid-out forest in sync
- export_tree_for_viz: Build the JSON payload for a laid-out tree
- write_export: Write a payload to disk as JSON
- render_svg: Render a payload as SVG
- create_standalone_viewer: Create self-contained HTML with embedded data
"""

from .export import (
    export_tree_for_viz,
    write_export,
    render_svg,
    create_standalone_viewer,
)
from .diagram import TreeDiagram

__all__ = [
    "TreeDiagram",
    "export_tree_for_viz",
    "write_export",
    "render_svg",
    "create_standalone_viewer",
]
