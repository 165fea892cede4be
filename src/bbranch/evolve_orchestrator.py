"""
Evolve orchestration: re-linearize a subtree of commit-branches.
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from concurrent.futures import Executor
from typing import List, Optional, Set, Tuple, Union

from .children_resolver import ChildrenResolver
from .config import Settings, load_settings
from .evolve_queue import EvolveQueue
from .git_manager import GitManager
from .marker_store import MarkerStore, TagMarkerStore
from .markers import validate_branch_name
from .models import (
    DETACHED_HEAD,
    Branch,
    BranchNotFoundError,
    EvolveInProgressError,
    EvolveResult,
    EvolveScope,
    EvolveState,
    EvolveStatus,
    InvalidScopeError,
    NoEvolveInProgressError,
    OperationCancelledError,
    RebaseFlag,
    RebaseOutcome,
)
from .parent_resolver import ParentResolver
from .prompt_interface import NoOpPrompt, UserPrompt
from .stale_manager import StaleMarkerManager


logger = logging.getLogger(__name__)


def parse_scope(scope: Union[EvolveScope, str]) -> EvolveScope:
    """Convert user input to an EvolveScope, raising InvalidScopeError."""
    try:
        return EvolveScope(scope)
    except ValueError:
        choices = ", ".join(s.value for s in EvolveScope)
        raise InvalidScopeError(f"Invalid evolve scope '{scope}' (expected one of: {choices})")


class EvolveOrchestrator:
    """Drives single-branch rebases and whole-subtree evolve operations."""

    def __init__(
        self,
        root_path: Optional[Path] = None,
        *,
        git_manager: Optional[GitManager] = None,
        settings: Optional[Settings] = None,
        store: Optional[MarkerStore] = None,
    ) -> None:
        """Initialize the orchestrator and its collaborators for one repository."""
        self.git_manager = git_manager or GitManager(root_path)
        self.settings = settings or load_settings(self.git_manager)
        self.store = store or TagMarkerStore(self.git_manager)
        self.parents = ParentResolver(self.git_manager, self.store, self.settings)
        self.children = ChildrenResolver(self.git_manager, self.store, self.settings, self.parents)
        self.stale = StaleMarkerManager(self.git_manager, self.store, self.settings)
        self.queue = EvolveQueue(self.store, self.git_manager)
        self._running = False
        logger.debug(f"Initialized evolve orchestrator (trunk={self.settings.trunk})")

    @property
    def trunk(self) -> str:
        return self.settings.trunk

    # --- Relationship queries and staleness, as exposed to commands ---
    def resolve_parent(self, branch_name: str) -> Branch:
        return self.parents.resolve(branch_name)

    def resolve_children(self, branch_name: str, executor: Optional[Executor] = None) -> List[Branch]:
        return self.children.resolve(branch_name, executor)

    def mark_stale(self, commit: str, branch_name: str, has_live_children: bool) -> List[str]:
        return self.stale.mark_stale(commit, branch_name, has_live_children)

    def sweep_stale_markers(self) -> List[str]:
        return self.stale.sweep_stale_markers()

    # --- Single-branch rebase ---
    def rebase_one(
        self, from_branch: str, to: str, flag: Optional[RebaseFlag] = None
    ) -> Tuple[RebaseOutcome, List[Path]]:
        """
        Rebase one commit-branch onto ``to`` and run the staleness lifecycle.

        Args:
            from_branch: Branch to move (its single commit is replayed)
            to: New base (branch name or commit)
            flag: CONTINUE to resume a conflicted rebase, ABORT to abandon it

        Returns:
            Tuple of (outcome, conflict_files)

        Raises:
            BranchNotFoundError: If either side does not resolve
            GitRepositoryError: For any failure other than a conflict
        """
        if flag == RebaseFlag.ABORT:
            if self.git_manager.is_rebase_in_progress():
                self.git_manager.abort_rebase()
            else:
                logger.warning("No rebase in progress to abort")
            return RebaseOutcome.ABORTED, []

        validate_branch_name(from_branch)
        old_tip = self.git_manager.resolve_commit(from_branch)
        if old_tip is None:
            raise BranchNotFoundError(f"Branch '{from_branch}' does not exist")
        if flag != RebaseFlag.CONTINUE and self.git_manager.resolve_commit(to) is None:
            raise BranchNotFoundError(f"Rebase target '{to}' does not exist")

        # Must be known before the tip moves; it cannot be recovered afterwards
        had_live_children = self.children.has_live_children(from_branch)

        if flag == RebaseFlag.CONTINUE:
            success, conflict_files = self.git_manager.continue_rebase()
        else:
            logger.info(f"Rebasing {from_branch} onto {to}")
            success, conflict_files = self.git_manager.rebase_onto(to, f"{from_branch}^", from_branch)
        if not success:
            return RebaseOutcome.CONFLICT, conflict_files

        new_tip = self.git_manager.rev_parse(from_branch)
        if new_tip != old_tip:
            self.stale.mark_stale(old_tip, from_branch, had_live_children)
        else:
            logger.info(f"{from_branch} already based on {to}")
        return RebaseOutcome.SUCCESS, []

    # --- Evolve ---
    def plan_evolve(self, branch_name: str, scope: Union[EvolveScope, str]) -> List[str]:
        """
        Compute the breadth-first list of branches an evolve would rebase.

        The trunk and a detached HEAD are never rebased themselves; only their
        qualifying children seed the plan.
        """
        scope = parse_scope(scope)
        if branch_name != DETACHED_HEAD and self.git_manager.resolve_commit(branch_name) is None:
            raise BranchNotFoundError(f"Branch '{branch_name}' does not exist")
        self.stale.cleanup()

        def qualifying(name: str) -> List[str]:
            if name == DETACHED_HEAD:
                return []
            found = self.children.resolve(name)
            if scope == EvolveScope.DIRECTS:
                found = [c for c in found if not c.orphaned]
            return [c.name for c in found]

        skip_start = branch_name in (self.trunk, DETACHED_HEAD)
        seeds = qualifying(branch_name) if skip_start else [branch_name]
        if scope == EvolveScope.SELF:
            return seeds

        plan: List[str] = []
        seen: Set[str] = set()
        pending = deque(seeds)
        while pending:
            name = pending.popleft()
            if name in seen:
                continue
            seen.add(name)
            plan.append(name)
            pending.extend(c for c in qualifying(name) if c not in seen)
        logger.debug(f"Evolve plan for {branch_name} ({scope.value}): {plan}")
        return plan

    def start_evolve(
        self,
        branch_name: str,
        scope: Union[EvolveScope, str],
        *,
        home_branch: Optional[str] = None,
        prompt: Optional[UserPrompt] = None,
        assume_yes: bool = False,
    ) -> EvolveResult:
        """
        Plan, confirm, persist and run an evolve operation.

        Args:
            branch_name: Starting branch
            scope: self, directs or full
            home_branch: Branch to restore at the end (defaults to the current one)
            prompt: Confirmation UI; a declined prompt aborts before any mutation
            assume_yes: Skip confirmation (unattended runs)

        Raises:
            EvolveInProgressError: If a queue already exists
            OperationCancelledError: If the user declines the summary
        """
        scope = parse_scope(scope)
        if self.queue.in_progress():
            raise EvolveInProgressError(
                "An evolve operation is already in progress; run 'evolve --continue' or 'evolve --abort'"
            )
        home = home_branch or self.git_manager.get_current_branch()
        plan = self.plan_evolve(branch_name, scope)
        for name in plan:
            validate_branch_name(name)
        if not plan:
            logger.info(f"Nothing to evolve from {branch_name}")
            return EvolveResult(state=EvolveState.DONE, scope=scope)

        if not assume_yes:
            prompt = prompt or NoOpPrompt()
            if not prompt.confirm_evolve_plan(branch_name, scope, plan):
                raise OperationCancelledError("Evolve cancelled by user")

        # Branches migrating off the trunk all target the same trunk commit
        trunk_snapshot = None
        if branch_name == self.trunk:
            trunk_snapshot = self.git_manager.rev_parse(self.trunk)

        self.queue.seed(plan, scope, home, trunk_snapshot)
        return self._run_queue(scope)

    def resume_evolve(self, flag: RebaseFlag) -> EvolveResult:
        """
        Continue or abort a paused evolve.

        CONTINUE finishes the in-flight rebase of the paused step (if any) and
        resumes the queue. ABORT abandons only the in-flight rebase; branches
        already rebased stay rebased.

        Raises:
            NoEvolveInProgressError: If no queue exists
        """
        status = self.queue.status()
        if status is None:
            raise NoEvolveInProgressError("No evolve operation in progress")

        if flag == RebaseFlag.ABORT:
            if self.git_manager.is_rebase_in_progress():
                self.git_manager.abort_rebase()
            self._finish(status.home_branch)
            logger.info("Evolve aborted")
            return EvolveResult(state=EvolveState.ABORTED, scope=status.scope)

        completed: List[str] = []
        step = self.queue.peek()
        if step is not None and self.git_manager.is_rebase_in_progress():
            outcome, conflict_files = self.rebase_one(step.branch, step.branch, RebaseFlag.CONTINUE)
            if outcome == RebaseOutcome.CONFLICT:
                return EvolveResult(
                    state=EvolveState.PAUSED_ON_CONFLICT,
                    scope=status.scope,
                    paused_on=step.branch,
                    conflict_files=conflict_files,
                )
            self._after_step(step.step, step.branch, status.scope)
            completed.append(step.branch)
        result = self._run_queue(status.scope)
        result.completed = completed + result.completed
        return result

    def evolve_status(self) -> Optional[EvolveStatus]:
        return self.queue.status()

    def evolve_state(self) -> EvolveState:
        """
        Current state of the evolve state machine.

        RUNNING is only observable from inside this process while the queue is
        being driven; a queue left behind by a killed process reads as QUEUED.
        """
        status = self.queue.status()
        if status is None:
            return EvolveState.IDLE
        if self._running:
            return EvolveState.RUNNING
        if self.git_manager.is_rebase_in_progress():
            return EvolveState.PAUSED_ON_CONFLICT
        return EvolveState.QUEUED

    def _run_queue(self, scope: Optional[EvolveScope]) -> EvolveResult:
        self._running = True
        try:
            return self._drain_queue(scope)
        finally:
            self._running = False

    def _drain_queue(self, scope: Optional[EvolveScope]) -> EvolveResult:
        trunk_snapshot = self.queue.trunk_snapshot()
        completed: List[str] = []
        while True:
            step = self.queue.peek()
            if step is None:
                break
            if step.branch is None or not self.git_manager.branch_exists(step.branch):
                logger.warning(f"Queued branch for step {step.step} no longer exists; skipping")
                self.queue.complete(step.step)
                continue

            parent = self.parents.resolve(step.branch)
            target = parent.name
            if trunk_snapshot is not None and parent.name == self.trunk:
                target = trunk_snapshot
            logger.info(f"Evolve step {step.step}: {step.branch} onto {parent.name}")

            outcome, conflict_files = self.rebase_one(step.branch, target)
            if outcome == RebaseOutcome.CONFLICT:
                logger.warning(f"Evolve paused on {step.branch}: conflicts in {conflict_files}")
                return EvolveResult(
                    state=EvolveState.PAUSED_ON_CONFLICT,
                    scope=scope,
                    completed=completed,
                    paused_on=step.branch,
                    conflict_files=conflict_files,
                )
            self._after_step(step.step, step.branch, scope)
            completed.append(step.branch)

        self._finish(self.queue.home_branch())
        logger.info(f"Evolve finished; rebased {len(completed)} branch(es)")
        return EvolveResult(state=EvolveState.DONE, scope=scope, completed=completed)

    def _after_step(self, step: int, branch_name: str, scope: Optional[EvolveScope]) -> None:
        if scope == EvolveScope.FULL:
            # Children orphaned by this step are only discoverable now
            for child in self.children.resolve(branch_name):
                self.queue.append(child.name, scope)
        self.queue.complete(step)

    def _finish(self, home_branch: Optional[str]) -> None:
        self.queue.clear()
        if home_branch and home_branch != DETACHED_HEAD:
            self.git_manager.checkout_branch(home_branch)
