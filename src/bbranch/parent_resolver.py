"""
Resolve the logical parent of a commit-branch.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Set

from .config import Settings
from .git_manager import GitManager
from .marker_store import MarkerStore
from .markers import parse_merge_base_tag, parse_stale_parent_tag
from .models import Branch, BranchNotFoundError


logger = logging.getLogger(__name__)


class ParentResolver:
    """Finds the branch a commit-branch was created on.

    The parent is the live branch whose tip is the immediate ancestor commit.
    When no live branch sits there, stale-parent and merge-base markers name
    the branch that used to, and history is walked further back when neither
    matches.
    """

    def __init__(self, git_manager: GitManager, store: MarkerStore, settings: Settings) -> None:
        self.git = git_manager
        self.store = store
        self.settings = settings

    def resolve(self, branch_name: str) -> Branch:
        """
        Resolve the parent of a branch.

        Args:
            branch_name: Branch (or any ref expression) to resolve

        Returns:
            Branch descriptor; ``stale`` is True when the parent is marker-derived

        Raises:
            BranchNotFoundError: If the name does not resolve to a commit
        """
        tip = self.git.resolve_commit(branch_name)
        if tip is None:
            raise BranchNotFoundError(f"Branch '{branch_name}' does not exist")
        parent = self.resolve_from_ancestor(self.git.first_parent(tip))
        logger.debug(f"Parent of {branch_name}: {parent.name} (stale={parent.stale})")
        return parent

    def resolve_from_ancestor(self, ancestor: Optional[str]) -> Branch:
        """Resolve a parent descriptor starting at an immediate-ancestor commit."""
        visited: Set[str] = set()
        current = ancestor
        for _ in range(self.settings.max_parent_depth):
            if current is None:
                # Root commit: everything descends from the trunk
                return Branch(name=self.settings.trunk)
            found = self._match_commit(current)
            if found is not None:
                return found
            visited.add(current)
            current = self.git.first_parent(current)
            if current is not None and current in visited:
                break
        logger.warning(
            f"Parent walk from {ancestor} stopped after {len(visited)} commits; "
            f"falling back to {self.settings.trunk}"
        )
        return Branch(name=self.settings.trunk, stale=True)

    def _match_commit(self, commit: str) -> Optional[Branch]:
        live = self.git.branches_pointing_at(commit)
        if live:
            return Branch(name=self._pick(live))

        markers = self.store.points_at(commit)
        stale_names = sorted(
            {m.branch for m in (parse_stale_parent_tag(t) for t in markers) if m is not None}
        )
        if stale_names:
            if len(stale_names) > 1:
                logger.warning(f"Several stale markers at {commit[:12]}: {stale_names}")
            return Branch(name=stale_names[0], stale=True)

        if any(parse_merge_base_tag(t) is not None for t in markers):
            return Branch(name=self.settings.trunk, stale=True)
        return None

    def _pick(self, names: List[str]) -> str:
        if self.settings.trunk in names:
            return self.settings.trunk
        if len(names) > 1:
            logger.debug(f"Ambiguous branches at ancestor: {names}; using {sorted(names)[0]}")
        return sorted(names)[0]
