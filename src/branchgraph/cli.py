"""CLI for inspecting conversation branch trees.

Every command reads a ConversationTree JSON payload, as returned by the
backend's get_conversation_tree.
"""

import asyncio
import json
import logging
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from .backend import InMemoryBackend
from .branches import BranchManager
from .constants import (
    ENV_HORIZONTAL_SPACING,
    ENV_NODE_HEIGHT,
    ENV_NODE_WIDTH,
    ENV_VERTICAL_SPACING,
)
from .layout import LayoutConfig, TreeLayout
from .models import ConversationTree
from .session import BranchSession
from .viz import create_standalone_viewer, export_tree_for_viz, render_svg, write_export

console = Console()
err_console = Console(stderr=True)
manager = BranchManager()


def _load_tree(path: Path) -> ConversationTree:
    """Read and validate a tree payload, exiting with an error message on failure."""
    try:
        return ConversationTree.model_validate_json(path.read_text())
    except (OSError, ValidationError) as e:
        err_console.print(f"[red]Error:[/red] cannot load tree from {path}: {e}")
        raise SystemExit(1)


@click.group()
@click.option("--node-width", type=float, envvar=ENV_NODE_WIDTH, help="Node box width")
@click.option("--node-height", type=float, envvar=ENV_NODE_HEIGHT, help="Node box height")
@click.option(
    "--horizontal-spacing", type=float, envvar=ENV_HORIZONTAL_SPACING,
    help="Gap between sibling columns",
)
@click.option(
    "--vertical-spacing", type=float, envvar=ENV_VERTICAL_SPACING,
    help="Gap between rows",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def cli(ctx, node_width, node_height, horizontal_spacing, vertical_spacing, verbose):
    """Branchgraph - inspect and lay out branching conversations."""
    ctx.ensure_object(dict)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    ctx.obj["layout_config"] = LayoutConfig.from_env(
        node_width=node_width,
        node_height=node_height,
        horizontal_spacing=horizontal_spacing,
        vertical_spacing=vertical_spacing,
    )


@cli.command("tree")
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def show_tree(tree_file):
    """Print the message tree with branch points marked."""
    tree = _load_tree(tree_file)
    roots = manager.build_tree(tree)

    if not roots:
        console.print("[dim]Empty tree[/dim]")
        return

    names = {b.id: b.name for b in tree.branches}
    contents = {m.id: m.content for m in tree.messages}

    def label(node):
        text = contents.get(node.message_id, "")[:40]
        marker = " [yellow]⑂[/yellow]" if node.is_branch_point else ""
        branch = names.get(node.branch_id, node.branch_id[:8])
        return f"[cyan]{node.message_id[:8]}[/cyan]{marker} [dim]({branch})[/dim] {text}"

    for root in roots:
        rich_root = Tree(label(root))
        stack = [(root, rich_root)]
        while stack:
            node, rich_node = stack.pop()
            for child in node.children:
                stack.append((child, rich_node.add(label(child))))
        console.print(rich_root)


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("message_id")
def path(tree_file, message_id):
    """Show the path from the root to MESSAGE_ID."""
    tree = _load_tree(tree_file)
    for position, mid in enumerate(manager.get_path_to_message(tree, message_id)):
        console.print(f"{position:>3}  {mid}")


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("branch_a")
@click.argument("branch_b")
def diverge(tree_file, branch_a, branch_b):
    """Show where BRANCH_A and BRANCH_B diverged."""
    tree = _load_tree(tree_file)
    point = manager.find_divergence_point(tree, branch_a, branch_b)
    if point is None:
        err_console.print("[yellow]No common message[/yellow]")
        raise SystemExit(1)
    console.print(point)


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def check(tree_file, as_json):
    """Check a tree for orphaned messages and stale flags."""
    tree = _load_tree(tree_file)
    report = manager.inspect_consistency(tree)

    if as_json:
        click.echo(report.model_dump_json(indent=2))
    elif report.is_consistent:
        console.print("[green]✓[/green] Tree is consistent")
    else:
        console.print(f"[red]✗[/red] {report.orphaned_count} orphaned message(s)")
        for mid in report.orphaned_messages[:10]:
            console.print(f"  {mid}")
        for warning in report.warnings:
            console.print(f"[yellow]![/yellow] {warning}")

    if not report.is_consistent:
        raise SystemExit(1)


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def stats(tree_file):
    """Show branch statistics."""
    tree = _load_tree(tree_file)
    result = manager.stats(tree)

    table = Table(title=f"Conversation {result.conversation_id}")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")
    table.add_row("Branches", str(result.total_branches))
    table.add_row("Messages", str(result.total_messages))
    table.add_row("Branch points", str(result.branch_points))
    console.print(table)


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.option("--horizontal", is_flag=True, help="Lay out as a single row")
@click.pass_context
def layout(ctx, tree_file, as_json, horizontal):
    """Compute node coordinates and connector paths."""
    tree = _load_tree(tree_file)
    engine = TreeLayout(ctx.obj["layout_config"])
    roots = manager.build_tree(tree)

    if horizontal:
        result = engine.layout_horizontal(manager.flatten_tree(roots))
    else:
        result = engine.layout(roots)
    connectors = engine.generate_paths(result.nodes)

    if as_json:
        payload = result.to_dict()
        payload["connectors"] = [c.to_dict() for c in connectors]
        click.echo(json.dumps(payload, indent=2))
        return

    console.print(f"Canvas: [bold]{result.width:g}[/bold] x [bold]{result.height:g}[/bold]")
    table = Table()
    table.add_column("Message", style="cyan")
    table.add_column("Depth", justify="right")
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    for node in result.nodes:
        table.add_row(node.message_id, str(node.depth), f"{node.x:g}", f"{node.y:g}")
    console.print(table)


@cli.command()
@click.argument("tree_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "-o", "--output", "output_path", required=True,
    type=click.Path(dir_okay=False, path_type=Path), help="Output file",
)
@click.option(
    "--format", "fmt", type=click.Choice(["json", "svg", "html"]), default="html",
    show_default=True, help="Export format",
)
@click.option("--select", "selected", help="Highlight the path to this message")
@click.pass_context
def export(ctx, tree_file, output_path, fmt, selected):
    """Export a branch diagram."""
    tree = _load_tree(tree_file)
    engine = TreeLayout(ctx.obj["layout_config"])
    result = engine.layout(manager.build_tree(tree))
    data = export_tree_for_viz(
        tree=tree,
        result=result,
        connectors=engine.generate_paths(result.nodes),
        config=engine.config,
        selected_path=manager.get_path_to_message(tree, selected) if selected else None,
    )

    if fmt == "json":
        write_export(data, output_path)
    elif fmt == "svg":
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(render_svg(data))
    else:
        create_standalone_viewer(data, output_path)

    console.print(f"[green]✓[/green] Exported {len(result.nodes)} nodes to {output_path}")


async def _build_demo() -> ConversationTree:
    """A small conversation with one fork, built through the backend API."""
    backend = InMemoryBackend()
    conversation_id = backend.add_conversation()
    session = BranchSession(backend, conversation_id)

    m1 = backend.add_message(conversation_id, "How do I parse JSON in Python?")
    m2 = backend.add_message(conversation_id, "Use the json module.", "assistant", m1.id)
    m3 = backend.add_message(conversation_id, "What about YAML?", "user", m2.id)

    fork = await session.create_branch("Streaming", from_message_id=m2.id)
    backend.add_message(conversation_id, "And for huge files?", "user", m2.id, fork.id)
    backend.add_message(conversation_id, "PyYAML's safe_load.", "assistant", m3.id)

    await session.load()
    return session.state.tree


@cli.command()
@click.option(
    "-o", "--output", "output_path", required=True,
    type=click.Path(dir_okay=False, path_type=Path), help="Where to write the tree JSON",
)
def demo(output_path):
    """Write a sample conversation tree to try the other commands on."""
    tree = asyncio.run(_build_demo())
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(tree.model_dump_json(indent=2))
    console.print(f"[green]✓[/green] Wrote demo tree ({len(tree.nodes)} nodes) to {output_path}")


if __name__ == "__main__":
    cli()
