"""
Stale-parent and merge-base marker lifecycle.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from .config import Settings
from .git_manager import GitManager
from .marker_store import MarkerStore
from .markers import (
    MERGE_BASE_GLOB,
    STALE_GLOB,
    StaleMarker,
    make_merge_base_tag,
    make_stale_parent_tag,
    parse_merge_base_tag,
    parse_stale_parent_tag,
    validate_branch_name,
)
from .models import MarkerCollisionError


logger = logging.getLogger(__name__)


class StaleMarkerManager:
    """Creates and garbage-collects markers for rewritten branch tips.

    Invariant maintained by every public method: no stale-parent marker is
    left on a commit that no live branch contains.
    """

    def __init__(self, git_manager: GitManager, store: MarkerStore, settings: Settings) -> None:
        self.git = git_manager
        self.store = store
        self.settings = settings

    def mark_stale(self, commit: str, branch_name: str, has_live_children: bool) -> List[str]:
        """
        Record ``commit`` as a historical tip of ``branch_name``.

        Must be called after every operation that moves a branch tip, with
        ``has_live_children`` captured before the move.

        Args:
            commit: The old tip
            branch_name: Branch whose tip moved
            has_live_children: Whether the branch had current children before the move

        Returns:
            Names of markers created (zero or one)
        """
        created: List[str] = []
        if has_live_children:
            validate_branch_name(branch_name)
            name = make_stale_parent_tag(branch_name, self.next_sequence(branch_name))
            if self.store.exists(name):
                raise MarkerCollisionError(f"Stale marker {name} already exists")
            self.store.create(name, commit)
            logger.info(f"Marked {commit[:12]} as stale tip of {branch_name} ({name})")
            created.append(name)
        else:
            logger.debug(f"{branch_name} had no live children; no stale marker needed")
        self.sweep_stale_markers()
        self.cleanup()
        return created

    def next_sequence(self, branch_name: str) -> int:
        """Max existing sequence for the branch plus one, or 0 when none exist."""
        seqs = [m.seq for m in self._stale_markers().values() if m.branch == branch_name]
        return max(seqs) + 1 if seqs else 0

    def sweep_stale_markers(self) -> List[str]:
        """
        Delete stale-parent markers no orphaned branch depends on any more.

        A marker is kept while some live branch contains its commit but not the
        current tip of the marker's branch. Branches that already sit on top
        of the current tip (including the branch itself, which contains an old
        tip after a fast-forward) do not keep it alive.
        """
        deleted: List[str] = []
        for name, marker in sorted(self._stale_markers().items()):
            commit = self.store.resolve(name)
            if commit is not None:
                tip = self.git.resolve_commit(marker.branch)
                if self.git.branches_containing_commit(commit, excluding=tip):
                    continue
            self.store.delete(name)
            deleted.append(name)
        if deleted:
            logger.info(f"Swept {len(deleted)} stale marker(s): {deleted}")
        return deleted

    def refresh_trunk_markers(self) -> List[str]:
        """
        Recompute merge-base markers for the trunk.

        Every live branch's merge base with the trunk that is neither the trunk
        tip nor the tip of a live branch is an abandoned trunk position; those
        are tagged in order of first discovery (branches sorted by name).

        Returns:
            Names of the markers now present
        """
        trunk = self.settings.trunk
        for name in self.store.list(MERGE_BASE_GLOB):
            if parse_merge_base_tag(name) is not None:
                self.store.delete(name)

        trunk_tip = self.git.resolve_commit(trunk)
        if trunk_tip is None:
            logger.warning(f"Trunk branch {trunk} not found; merge-base markers left empty")
            return []

        branches = self.git.list_local_branches()
        positions: List[str] = []
        for branch in sorted(branches):
            if branch == trunk:
                continue
            base = self.git.merge_base(trunk, branch)
            if base is None or base == trunk_tip or base in positions:
                continue
            if self.git.branches_pointing_at(base):
                continue
            positions.append(base)

        created: List[str] = []
        for seq, commit in enumerate(positions, start=1):
            name = make_merge_base_tag(seq)
            self.store.create(name, commit)
            created.append(name)
        if created:
            logger.debug(f"Merge-base markers: {created}")
        return created

    def prune_deleted_branch_markers(self) -> List[str]:
        """Delete stale-parent markers recorded for branches that no longer exist."""
        live = set(self.git.list_local_branches())
        deleted: List[str] = []
        for name, marker in sorted(self._stale_markers().items()):
            if marker.branch not in live:
                self.store.delete(name)
                deleted.append(name)
        if deleted:
            logger.info(f"Pruned marker(s) of deleted branches: {deleted}")
        return deleted

    def cleanup(self) -> None:
        """Refresh trunk markers, then prune markers of deleted branches."""
        self.refresh_trunk_markers()
        self.prune_deleted_branch_markers()

    def _stale_markers(self) -> Dict[str, StaleMarker]:
        markers = {}
        for name in self.store.list(STALE_GLOB):
            parsed = parse_stale_parent_tag(name)
            if parsed is not None:
                markers[name] = parsed
        return markers
