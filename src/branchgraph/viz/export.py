"""Branch diagram export.

Turns a laid-out forest into a JSON-ready dict, an SVG drawing, or a
self-contained HTML page with the drawing and data embedded.
"""

import json
from datetime import datetime, timezone
from html import escape
from pathlib import Path

from ..constants import LABEL_MAX_CHARS, SVG_PADDING
from ..layout import Connector, LayoutConfig, LayoutResult
from ..models import ConversationTree

BRANCH_COLORS = (
    "#4f8cff",
    "#f59e0b",
    "#10b981",
    "#ef4444",
    "#a855f7",
    "#14b8a6",
    "#ec4899",
    "#84cc16",
)


def _label(text: str, fallback: str) -> str:
    text = " ".join(text.split())
    if not text:
        return fallback[:8]
    if len(text) > LABEL_MAX_CHARS:
        return text[: LABEL_MAX_CHARS - 1] + "…"
    return text


def export_tree_for_viz(
    tree: ConversationTree | None,
    result: LayoutResult,
    connectors: list[Connector],
    config: LayoutConfig,
    selected_path: list[str] | None = None,
    current_branch_id: str | None = None,
) -> dict:
    """Build the visualization payload for a laid-out tree.

    Args:
        tree: Tree the layout was built from (None for an empty diagram)
        result: Output of TreeLayout.layout
        connectors: Output of TreeLayout.generate_paths
        config: Layout configuration used (box sizes)
        selected_path: Message ids to highlight
        current_branch_id: Branch to mark as current

    Returns:
        {"meta": ..., "branches": [...], "nodes": [...], "connectors": [...]}
    """
    selected = set(selected_path or [])
    branches = tree.branches if tree else []
    branch_names = {b.id: b.name for b in branches}
    contents = {m.id: m for m in tree.messages} if tree else {}

    nodes = []
    for node in result.nodes:
        message = contents.get(node.message_id)
        nodes.append({
            **node.to_dict(),
            "label": _label(message.content if message else "", node.message_id),
            "role": message.role if message else None,
            "branch_name": branch_names.get(node.branch_id),
            "selected": node.message_id in selected,
        })

    return {
        "meta": {
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "conversation_id": tree.conversation_id if tree else None,
            "current_branch_id": current_branch_id,
            "node_count": len(nodes),
            "width": result.width,
            "height": result.height,
            "node_width": config.node_width,
            "node_height": config.node_height,
        },
        "branches": [
            {**b.to_summary(), "color": BRANCH_COLORS[i % len(BRANCH_COLORS)]}
            for i, b in enumerate(branches)
        ],
        "nodes": nodes,
        "connectors": [c.to_dict() for c in connectors],
    }


def write_export(data: dict, output_path: Path) -> Path:
    """Write a visualization payload as JSON."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(data, indent=2))
    return output_path


def render_svg(data: dict) -> str:
    """Render a visualization payload as an SVG document."""
    meta = data["meta"]
    pad = SVG_PADDING
    width = meta["width"] + 2 * pad
    height = meta["height"] + 2 * pad
    box_w = meta["node_width"]
    box_h = meta["node_height"]
    colors = {b["id"]: b["color"] for b in data["branches"]}

    parts = [
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{width:g}" height="{height:g}" '
        f'viewBox="{-pad} {-pad} {width:g} {height:g}">',
        '<g class="connectors" fill="none" stroke="#888" stroke-width="2">',
    ]
    for connector in data["connectors"]:
        parts.append(
            f'<path d="{connector["path"]}" data-from="{escape(connector["from"])}" '
            f'data-to="{escape(connector["to"])}"/>'
        )
    parts.append("</g>")

    parts.append('<g class="nodes" font-family="sans-serif" font-size="12">')
    for node in data["nodes"]:
        color = colors.get(node["branch_id"], "#666")
        stroke = "#fff" if node["selected"] else color
        dash = ' stroke-dasharray="4 2"' if node["is_branch_point"] else ""
        parts.append(
            f'<g data-message-id="{escape(node["message_id"])}">'
            f'<rect x="{node["x"]:g}" y="{node["y"]:g}" width="{box_w:g}" height="{box_h:g}" rx="8" '
            f'fill="{color}" fill-opacity="0.25" stroke="{stroke}" stroke-width="2"{dash}/>'
            f'<text x="{node["x"] + box_w / 2:g}" y="{node["y"] + box_h / 2:g}" '
            f'text-anchor="middle" dominant-baseline="middle" fill="#eee">'
            f'{escape(node["label"])}</text></g>'
        )
    parts.append("</g></svg>")
    return "\n".join(parts)


def create_standalone_viewer(data: dict, output_path: Path) -> Path:
    """Create a self-contained HTML page with the SVG and the data embedded.

    The JSON payload is embedded as a script tag (id="tree-data") so the page
    works from file:// without fetching anything.
    """
    title = escape(f"Conversation {data['meta'].get('conversation_id') or ''}".strip())
    data_json = json.dumps(data).replace("</", "<\\/")

    html = (
        "<!DOCTYPE html>\n<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>{title}</title>\n"
        "<style>body { margin: 0; background: #1a1a2e; color: #eee; overflow: auto; }"
        " svg { display: block; margin: 16px; }</style>\n"
        "</head>\n<body>\n"
        f"{render_svg(data)}\n"
        f'<script type="application/json" id="tree-data">{data_json}</script>\n'
        "</body>\n</html>\n"
    )

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(html)
    return output_path
