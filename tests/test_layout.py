"""Tests for TreeLayout positioning and connector paths."""

import pytest
from pydantic import ValidationError

from branchgraph.layout import LayoutConfig, TreeLayout
from branchgraph.models import TreeNode

from conftest import make_tree


def _by_id(result):
    return {n.message_id: n for n in result.nodes}


class TestLayout:
    def test_single_linear_conversation(self, manager, tree_layout):
        roots = manager.build_tree(make_tree([("m1", None, "main")]))
        result = tree_layout.layout(roots)

        assert len(result.nodes) == 1
        assert (result.nodes[0].x, result.nodes[0].y) == (0, 0)
        assert result.width == 120
        assert result.height == 60

    def test_single_fork(self, manager, tree_layout, fork_tree):
        result = tree_layout.layout(manager.build_tree(fork_tree))
        nodes = _by_id(result)

        assert nodes["m2"].x == 0
        assert nodes["m3"].x == 160
        assert nodes["m1"].x == 80
        assert nodes["m1"].y == 0
        assert nodes["m2"].y == nodes["m3"].y == 160
        assert result.width == 280
        assert result.height == 220

    def test_chain_stays_in_one_column(self, manager, tree_layout, linear_tree):
        result = tree_layout.layout(manager.build_tree(linear_tree))
        assert [n.x for n in result.nodes] == [0, 0, 0]
        assert [n.y for n in result.nodes] == [0, 160, 320]

    def test_parent_centered_over_outer_children(self, manager, tree_layout):
        tree = make_tree([
            ("r", None, "main"),
            ("a", "r", "main"),
            ("b", "r", "x"),
            ("c", "r", "y"),
        ])
        nodes = _by_id(tree_layout.layout(manager.build_tree(tree)))
        assert nodes["r"].x == (nodes["a"].x + nodes["c"].x) / 2 == 160

    def test_siblings_do_not_overlap(self, manager, tree_layout):
        tree = make_tree([
            ("r", None, "main"),
            ("a", "r", "main"),
            ("a1", "a", "main"),
            ("a2", "a", "p"),
            ("b", "r", "q"),
            ("b1", "b", "q"),
            ("b2", "b", "s"),
            ("b3", "b", "t"),
        ])
        result = tree_layout.layout(manager.build_tree(tree))
        rows = {}
        for node in result.nodes:
            rows.setdefault(node.y, []).append(node.x)
        for xs in rows.values():
            xs.sort()
            for left, right in zip(xs, xs[1:]):
                assert right - left >= tree_layout.column_step

    def test_multiple_roots_share_the_slot_cursor(self, manager, tree_layout):
        tree = make_tree([("r1", None, "a"), ("r2", None, "b")])
        nodes = _by_id(tree_layout.layout(manager.build_tree(tree)))
        assert nodes["r1"].x == 0
        assert nodes["r2"].x == 160

    def test_nodes_in_depth_first_forest_order(self, manager, tree_layout):
        tree = make_tree([
            ("m1", None, "main"),
            ("m2", "m1", "main"),
            ("m3", "m1", "alt"),
            ("m4", "m2", "main"),
            ("r2", None, "other"),
        ])
        result = tree_layout.layout(manager.build_tree(tree))
        assert [n.message_id for n in result.nodes] == ["m1", "m2", "m4", "m3", "r2"]

    def test_deterministic(self, manager, tree_layout, divergence_tree):
        first = tree_layout.layout(manager.build_tree(divergence_tree))
        second = tree_layout.layout(manager.build_tree(divergence_tree))
        assert [(n.message_id, n.x, n.y) for n in first.nodes] == [
            (n.message_id, n.x, n.y) for n in second.nodes
        ]
        assert (first.width, first.height) == (second.width, second.height)

    def test_empty_forest(self, tree_layout):
        result = tree_layout.layout([])
        assert result.nodes == []
        assert result.width == 0
        assert result.height == 0

    def test_none_is_rejected(self, tree_layout):
        with pytest.raises(TypeError):
            tree_layout.layout(None)

    def test_custom_geometry(self, manager, fork_tree):
        engine = TreeLayout(node_width=100, horizontal_spacing=20, node_height=50, vertical_spacing=50)
        nodes = _by_id(engine.layout(manager.build_tree(fork_tree)))
        assert nodes["m3"].x == 120
        assert nodes["m1"].x == 60
        assert nodes["m2"].y == 100

    def test_deep_chain(self, manager, tree_layout):
        edges = [("m0", None, "main")]
        edges += [(f"m{i}", f"m{i - 1}", "main") for i in range(1, 3000)]
        result = tree_layout.layout(manager.build_tree(make_tree(edges, messages=False)))
        assert len(result.nodes) == 3000
        assert result.nodes[-1].y == 2999 * 160


class TestLayoutHorizontal:
    def test_one_column_per_node(self, manager, tree_layout, linear_tree):
        flat = manager.flatten_tree(manager.build_tree(linear_tree))
        result = tree_layout.layout_horizontal(flat)
        assert [n.x for n in result.nodes] == [0, 160, 320]
        assert [n.y for n in result.nodes] == [0, 160, 320]
        assert result.width == 440
        assert result.height == 480

    def test_empty(self, tree_layout):
        result = tree_layout.layout_horizontal([])
        assert result.nodes == []
        assert result.width == 120


class TestConnectors:
    def test_generate_path(self, tree_layout):
        parent = TreeNode(message_id="p", parent_id=None, branch_id="b", x=80, y=0)
        child = TreeNode(message_id="c", parent_id="p", branch_id="b", x=160, y=160, depth=1)
        assert tree_layout.generate_path(parent, child) == "M 140,60 C 140,110 220,110 220,160"

    def test_fractional_coordinates(self, tree_layout):
        parent = TreeNode(message_id="p", parent_id=None, branch_id="b", x=0.5, y=0)
        child = TreeNode(message_id="c", parent_id="p", branch_id="b", x=0.5, y=160)
        assert tree_layout.generate_path(parent, child) == "M 60.5,60 C 60.5,110 60.5,110 60.5,160"

    def test_one_connector_per_edge(self, manager, tree_layout, fork_tree):
        result = tree_layout.layout(manager.build_tree(fork_tree))
        connectors = tree_layout.generate_paths(result.nodes)
        assert [(c.from_id, c.to_id) for c in connectors] == [("m1", "m2"), ("m1", "m3")]
        assert connectors[0].to_dict()["path"].startswith("M 140,60 C")

    def test_no_connectors_for_single_node(self, manager, tree_layout):
        result = tree_layout.layout(manager.build_tree(make_tree([("m1", None, "main")])))
        assert tree_layout.generate_paths(result.nodes) == []


class TestLayoutConfig:
    def test_defaults(self):
        config = LayoutConfig()
        assert (config.node_width, config.node_height) == (120, 60)
        assert (config.horizontal_spacing, config.vertical_spacing) == (40, 100)

    def test_rejects_non_positive_size(self):
        with pytest.raises(ValidationError):
            LayoutConfig(node_width=0)

    def test_rejects_negative_spacing(self):
        with pytest.raises(ValidationError):
            LayoutConfig(vertical_spacing=-1)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BRANCHGRAPH_NODE_WIDTH", "200")
        monkeypatch.setenv("BRANCHGRAPH_VERTICAL_SPACING", "10")
        config = LayoutConfig.from_env()
        assert config.node_width == 200
        assert config.vertical_spacing == 10
        assert config.node_height == 60

    def test_overrides_beat_env(self, monkeypatch):
        monkeypatch.setenv("BRANCHGRAPH_NODE_WIDTH", "200")
        config = LayoutConfig.from_env(node_width=90, node_height=None)
        assert config.node_width == 90
        assert config.node_height == 60

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("BRANCHGRAPH_NODE_HEIGHT", "tall")
        with pytest.raises(ValueError, match="BRANCHGRAPH_NODE_HEIGHT"):
            LayoutConfig.from_env()

    def test_layout_overrides(self):
        engine = TreeLayout(LayoutConfig(node_width=80), horizontal_spacing=0)
        assert engine.column_step == 80
        assert engine.row_step == 160

    def test_layout_overrides_are_validated(self):
        with pytest.raises(ValidationError):
            TreeLayout(node_width=-50)
        with pytest.raises(ValidationError):
            TreeLayout(horizontal_spacing="wide")
