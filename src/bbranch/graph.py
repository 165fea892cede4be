"""
Whole-repository branch tree.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Dict, List, Tuple

from .evolve_orchestrator import EvolveOrchestrator
from .models import Branch


logger = logging.getLogger(__name__)


class BranchGraph:
    """Builds the tree of every local branch, rooted at the trunk.

    Children lookups share one thread pool; branches the traversal
    does not reach are attached under their resolved parent afterwards, or
    under the trunk as orphaned when that parent is not in the tree either.
    """

    def __init__(self, orchestrator: EvolveOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.git = orchestrator.git_manager
        self.settings = orchestrator.settings

    def build(self) -> Tuple[Branch, Dict[str, Branch]]:
        """
        Build the graph.

        Returns:
            Tuple of (trunk node, all nodes by name)
        """
        self.orchestrator.stale.cleanup()
        trunk = self.settings.trunk
        root = Branch(name=trunk)
        nodes: Dict[str, Branch] = {trunk: root}
        with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
            self._place_all(root, nodes, pool)
        logger.debug(f"Graph complete with {len(nodes)} nodes")
        return root, nodes

    def _place_all(self, root: Branch, nodes: Dict[str, Branch], pool: Executor) -> None:
        trunk = root.name
        self._expand([root], nodes, pool)

        unreached = sorted(b for b in self.git.list_local_branches() if b not in nodes)
        while unreached:
            progressed = False
            for name in list(unreached):
                parent = self.orchestrator.resolve_parent(name)
                if parent.name not in nodes:
                    continue
                node = self._attach(nodes[parent.name], name, parent.stale, nodes)
                self._expand([node], nodes, pool)
                progressed = True
            unreached = [b for b in unreached if b not in nodes]
            if not progressed:
                for name in unreached:
                    logger.warning(f"Could not place {name} in the tree; attaching under {trunk}")
                    self._attach(root, name, True, nodes)
                break

    def _expand(self, level: List[Branch], nodes: Dict[str, Branch], pool: Executor) -> None:
        while level:
            next_level: List[Branch] = []
            for node in level:
                for child in self.orchestrator.resolve_children(node.name, pool):
                    if child.name in nodes:
                        continue
                    next_level.append(self._attach(node, child.name, child.orphaned, nodes))
            level = next_level

    @staticmethod
    def _attach(parent: Branch, name: str, orphaned: bool, nodes: Dict[str, Branch]) -> Branch:
        node = Branch(name=name, parent=parent, orphaned=orphaned)
        parent.children.append(node)
        nodes[name] = node
        return node

    def descendants(self, branch_name: str) -> List[str]:
        """Names of every branch below ``branch_name``, breadth-first."""
        _, nodes = self.build()
        start = nodes.get(branch_name)
        if start is None:
            return []
        found: List[str] = []
        level = list(start.children)
        while level:
            found.extend(n.name for n in level)
            level = [c for n in level for c in n.children]
        return found
