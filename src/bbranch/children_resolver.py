"""
Resolve the current and orphaned children of a commit-branch.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Dict, List, Optional, Set

from .config import Settings
from .git_manager import GitManager
from .marker_store import MarkerStore
from .markers import MERGE_BASE_GLOB, STALE_GLOB, parse_merge_base_tag, parse_stale_parent_tag
from .models import Branch, BranchNotFoundError
from .parent_resolver import ParentResolver


logger = logging.getLogger(__name__)


class ChildrenResolver:
    """Finds branches created directly on top of a branch.

    Candidates are every live branch containing the branch's tip or one of its
    historical tips. Each candidate's parent is then resolved and only those
    naming this branch are kept, which rejects grandchildren and unrelated
    branches that merely contain the commit.
    """

    def __init__(
        self,
        git_manager: GitManager,
        store: MarkerStore,
        settings: Settings,
        parent_resolver: Optional[ParentResolver] = None,
    ) -> None:
        self.git = git_manager
        self.store = store
        self.settings = settings
        self.parents = parent_resolver or ParentResolver(git_manager, store, settings)

    def resolve(self, branch_name: str, executor: Optional[Executor] = None) -> List[Branch]:
        """
        Resolve the children of a branch.

        Args:
            branch_name: Branch whose children are wanted
            executor: Pool for the per-candidate lookups; a private pool sized
                by ``max_workers`` is used when omitted

        Returns:
            Child descriptors sorted by name; ``orphaned`` marks children based
            on a historical tip rather than the current one

        Raises:
            BranchNotFoundError: If the name does not resolve to a commit
        """
        tip = self.git.resolve_commit(branch_name)
        if tip is None:
            raise BranchNotFoundError(f"Branch '{branch_name}' does not exist")

        candidates = self._candidates(branch_name, tip)
        if not candidates:
            return []

        if executor is None:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers) as pool:
                return self._resolve_candidates(branch_name, candidates, pool)
        return self._resolve_candidates(branch_name, candidates, executor)

    def _resolve_candidates(self, branch_name: str, candidates: List[str], pool: Executor) -> List[Branch]:
        ancestors = dict(zip(candidates, pool.map(self.git.first_parent, candidates)))

        # Siblings share an ancestor; resolve each distinct one once per call
        distinct = sorted({a for a in ancestors.values() if a is not None})
        resolved: Dict[Optional[str], Branch] = dict(
            zip(distinct, pool.map(self.parents.resolve_from_ancestor, distinct))
        )
        if None in ancestors.values():
            resolved[None] = self.parents.resolve_from_ancestor(None)

        children: List[Branch] = []
        for candidate in candidates:
            parent = resolved[ancestors[candidate]]
            if parent.name != branch_name:
                continue
            child = Branch(name=candidate, orphaned=parent.stale)
            children.append(child)
        logger.debug(
            f"Children of {branch_name}: "
            f"{[c.name + (' (orphaned)' if c.orphaned else '') for c in children]}"
        )
        return children

    def resolve_node(self, branch_name: str) -> Branch:
        """Return a Branch node for ``branch_name`` with its children attached."""
        node = Branch(name=branch_name)
        for child in self.resolve(branch_name):
            child.parent = node
            node.children.append(child)
        return node

    def has_live_children(self, branch_name: str) -> bool:
        """True if the branch has at least one current (non-orphaned) child."""
        return any(not c.orphaned for c in self.resolve(branch_name))

    def _candidates(self, branch_name: str, tip: str) -> List[str]:
        found: Set[str] = set(self.git.branches_containing_commit(tip))

        for commit in self._historical_tips(branch_name):
            found.update(self.git.branches_containing_commit(commit))

        found.discard(branch_name)
        found.discard(self.settings.trunk)
        return sorted(found)

    def _historical_tips(self, branch_name: str) -> List[str]:
        tags = []
        for tag in self.store.list(STALE_GLOB):
            marker = parse_stale_parent_tag(tag)
            if marker is not None and marker.branch == branch_name:
                tags.append(tag)
        if branch_name == self.settings.trunk:
            tags += [t for t in self.store.list(MERGE_BASE_GLOB) if parse_merge_base_tag(t)]

        commits: List[str] = []
        for tag in tags:
            commit = self.store.resolve(tag)
            if commit is not None and commit not in commits:
                commits.append(commit)
        return commits
