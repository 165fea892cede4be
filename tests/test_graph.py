"""
Tests for whole-repository tree building.
"""

from unittest.mock import patch

import pytest

from bbranch.graph import BranchGraph


def shape(node):
    return {c.name: (c.orphaned, shape(c)) for c in node.children}


class TestBranchGraph:
    @pytest.fixture(autouse=True)
    def _repo(self, builder, orchestrator):
        self.builder = builder
        self.orch = orchestrator
        self.graph = BranchGraph(orchestrator)
        builder.branch("a", "main")
        builder.branch("b", "a")
        builder.branch("c", "a")
        builder.branch("d", "b")

    def test_tree_shape(self):
        root, nodes = self.graph.build()
        assert root.name == "main"
        assert shape(root) == {
            "a": (False, {"b": (False, {"d": (False, {})}), "c": (False, {})}),
        }
        assert sorted(nodes) == ["a", "b", "c", "d", "main"]
        assert nodes["d"].parent is nodes["b"]

    def test_orphans_after_rewrite(self):
        self.builder.amend("a", "a.txt", "a2\n")
        self.builder.git.tag("bbranch-stale-{{a}}-{{0}}", self.builder.first_parent("b"))
        root, nodes = self.graph.build()
        assert [(c.name, c.orphaned) for c in nodes["a"].children] == [("b", True), ("c", True)]
        assert nodes["a"].orphaned_children() == nodes["a"].children

    def test_unmarked_rewrite_still_placed(self):
        self.builder.amend("a", "a.txt", "a2\n")
        _, nodes = self.graph.build()
        # Without a marker b and c hang off the trunk
        assert nodes["b"].parent.name == "main"
        assert nodes["c"].parent.name == "main"

    def test_descendants(self):
        assert self.graph.descendants("a") == ["b", "c", "d"]
        assert self.graph.descendants("d") == []
        assert self.graph.descendants("missing") == []

    def test_children_lookups_share_one_pool(self):
        with patch("bbranch.children_resolver.ThreadPoolExecutor") as private_pool:
            _, nodes = self.graph.build()
        private_pool.assert_not_called()
        assert sorted(nodes) == ["a", "b", "c", "d", "main"]
