"""
Persisted breadth-first work queue for evolve operations.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple, Union

from .git_manager import GitManager
from .marker_store import MarkerStore
from .markers import (
    EVOLVE_GLOB,
    EVOLVE_HOME_MARKER,
    EVOLVE_TRUNK_MARKER,
    make_evolve_tag,
    parse_evolve_tag,
)
from .models import (
    DETACHED_HEAD,
    EvolveInProgressError,
    EvolveScope,
    EvolveStatus,
    EvolveStep,
    NoEvolveInProgressError,
)


logger = logging.getLogger(__name__)


class EvolveQueue:
    """FIFO of branches to evolve, stored as markers so it survives process exit.

    Each entry is a marker at the queued branch's tip named by scope and step;
    the marker payload is the branch name. The cursor is the lowest step still
    present. A separate home marker records where to return when done, and an
    optional trunk marker pins the commit that branches leaving the trunk target.
    """

    def __init__(self, store: MarkerStore, git_manager: GitManager) -> None:
        self.store = store
        self.git = git_manager

    def in_progress(self) -> bool:
        return bool(self._entries()) or self.store.exists(EVOLVE_HOME_MARKER)

    def seed(
        self,
        branches: List[str],
        scope: Union[EvolveScope, str],
        home_branch: str,
        trunk_snapshot: Optional[str] = None,
    ) -> List[EvolveStep]:
        """
        Start a new queue.

        Args:
            branches: Branches in breadth-first order
            scope: Scope recorded in every entry
            home_branch: Branch (or detached commit) to restore at the end
            trunk_snapshot: Trunk commit to reuse for every branch moving off the trunk

        Raises:
            EvolveInProgressError: If a queue already exists
        """
        scope = EvolveScope(scope)
        if self.in_progress():
            raise EvolveInProgressError(
                "An evolve operation is already in progress; run 'evolve --continue' or 'evolve --abort'"
            )
        if home_branch == DETACHED_HEAD:
            home_branch = self.git.rev_parse("HEAD")
        self.store.create(EVOLVE_HOME_MARKER, self.git.rev_parse("HEAD"), message=home_branch)
        if trunk_snapshot is not None:
            self.store.create(EVOLVE_TRUNK_MARKER, trunk_snapshot)
        steps = [self._create(step, scope, branch) for step, branch in enumerate(branches)]
        logger.info(f"Queued {len(steps)} branch(es) for {scope.value} evolve: {branches}")
        return steps

    def append(
        self, branch_name: str, scope: Optional[Union[EvolveScope, str]] = None
    ) -> EvolveStep:
        """Queue a branch discovered while the operation runs.

        A branch that is already pending is not queued twice.
        """
        entries = self._entries()
        if not entries and not self.store.exists(EVOLVE_HOME_MARKER):
            raise NoEvolveInProgressError("No evolve operation in progress")
        for step, (_, marker) in sorted(entries.items()):
            if self.branch_at(marker) == branch_name:
                logger.debug(f"{branch_name} already queued at step {step}")
                return EvolveStep(step=step, branch=branch_name, marker=marker)
        if scope is None:
            if not entries:
                raise NoEvolveInProgressError("Evolve scope unknown: no queued steps remain")
            scope = entries[max(entries)][0]
        next_step = max(entries) + 1 if entries else 0
        queued = self._create(next_step, EvolveScope(scope), branch_name)
        logger.info(f"Queued {branch_name} at step {queued.step}")
        return queued

    def status(self) -> Optional[EvolveStatus]:
        """Read the queue back; None when no evolve is in progress."""
        entries = self._entries()
        home = self.home_branch()
        if not entries and home is None:
            return None
        pending = [
            EvolveStep(step=step, branch=self.branch_at(marker), marker=marker)
            for step, (_, marker) in sorted(entries.items())
        ]
        scope = entries[min(entries)][0] if entries else None
        return EvolveStatus(
            scope=scope,
            step=pending[0].step if pending else None,
            pending=pending,
            home_branch=home,
            trunk_snapshot=self.trunk_snapshot(),
        )

    def peek(self) -> Optional[EvolveStep]:
        """Return the entry under the cursor without removing it."""
        status = self.status()
        if status is None or not status.pending:
            return None
        return status.pending[0]

    def branch_at(self, marker: str) -> Optional[str]:
        """Branch recorded by a queue entry; older entries fall back to the branch at the tagged commit."""
        name = self.store.message(marker)
        if name:
            return name
        commit = self.store.resolve(marker)
        if commit is None:
            return None
        live = sorted(self.git.branches_pointing_at(commit))
        return live[0] if live else None

    def complete(self, step: int) -> None:
        """Remove a processed entry, advancing the cursor."""
        entry = self._entries().get(step)
        if entry is None:
            logger.debug(f"Step {step} already completed")
            return
        self.store.delete(entry[1])
        logger.debug(f"Completed evolve step {step}")

    def home_branch(self) -> Optional[str]:
        if not self.store.exists(EVOLVE_HOME_MARKER):
            return None
        return self.store.message(EVOLVE_HOME_MARKER)

    def trunk_snapshot(self) -> Optional[str]:
        return self.store.resolve(EVOLVE_TRUNK_MARKER)

    def clear(self) -> None:
        """Delete every queue entry, the home marker and the trunk marker."""
        for _, marker in self._entries().values():
            self.store.delete(marker)
        self.store.delete(EVOLVE_HOME_MARKER)
        self.store.delete(EVOLVE_TRUNK_MARKER)
        logger.info("Cleared evolve markers")

    def _create(self, step: int, scope: EvolveScope, branch_name: str) -> EvolveStep:
        marker = make_evolve_tag(step, scope)
        self.store.create(marker, self.git.rev_parse(branch_name), message=branch_name)
        return EvolveStep(step=step, branch=branch_name, marker=marker)

    def _entries(self) -> Dict[int, Tuple[EvolveScope, str]]:
        entries: Dict[int, Tuple[EvolveScope, str]] = {}
        for name in self.store.list(EVOLVE_GLOB):
            parsed = parse_evolve_tag(name)
            if parsed is not None:
                entries[parsed.step] = (parsed.scope, name)
        return entries
