"""
UI-agnostic prompt interface for user interactions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .models import Branch, EvolveScope


class UserPrompt(ABC):
    """Abstract interface for prompting users for decisions."""

    @abstractmethod
    def confirm_evolve_plan(self, start_branch: str, scope: EvolveScope, plan: List[str]) -> bool:
        """
        Show every branch an evolve will touch and ask to proceed.

        Args:
            start_branch: Branch the evolve was started from
            scope: Evolve scope
            plan: Branches in processing order

        Returns:
            True if the user wants to proceed, False otherwise
        """
        pass

    @abstractmethod
    def confirm_rebase(self, branch_name: str, target: str) -> bool:
        """Ask before rebasing ``branch_name`` onto ``target``."""
        pass

    @abstractmethod
    def confirm_amend(self, branch_name: str, paths: List[str]) -> bool:
        """
        Ask before amending the current commit-branch.

        Args:
            branch_name: Branch being amended
            paths: Paths that will be folded into the commit
        """
        pass

    @abstractmethod
    def confirm_unamend(self, branch_name: str, paths: List[str]) -> bool:
        """Ask before moving several matched paths out of the last commit."""
        pass

    @abstractmethod
    def choose_split_groups(self, source_branch: str, groups: Dict[str, List[str]]) -> List[str]:
        """
        Pick which file groups of ``source_branch`` become their own branches.

        Args:
            source_branch: Branch being split
            groups: Group key to the files in that group

        Returns:
            Selected group keys (empty to cancel)
        """
        pass

    @abstractmethod
    def confirm_split_restart(self, root_branch: str) -> bool:
        """Ask whether to delete an existing split under ``root_branch`` and start over."""
        pass

    @abstractmethod
    def confirm_split_clean(self, branches: List[str]) -> bool:
        """Ask before deleting the branches of a split."""
        pass

    @abstractmethod
    def choose_branch(self, candidates: List[Branch]) -> Optional[str]:
        """
        Pick one of several branches (e.g. children for ``next``).

        Returns:
            The chosen branch name, or None to cancel
        """
        pass


class NoOpPrompt(UserPrompt):
    """No-operation prompt that always returns safe defaults."""

    def confirm_evolve_plan(self, start_branch: str, scope: EvolveScope, plan: List[str]) -> bool:
        return False

    def confirm_rebase(self, branch_name: str, target: str) -> bool:
        return False

    def confirm_amend(self, branch_name: str, paths: List[str]) -> bool:
        return False

    def confirm_unamend(self, branch_name: str, paths: List[str]) -> bool:
        return False

    def choose_split_groups(self, source_branch: str, groups: Dict[str, List[str]]) -> List[str]:
        return []

    def confirm_split_restart(self, root_branch: str) -> bool:
        return False

    def confirm_split_clean(self, branches: List[str]) -> bool:
        return False

    def choose_branch(self, candidates: List[Branch]) -> Optional[str]:
        return None


class AutoConfirmPrompt(UserPrompt):
    """Prompt for unattended runs: confirms everything, picks the first current branch."""

    def confirm_evolve_plan(self, start_branch: str, scope: EvolveScope, plan: List[str]) -> bool:
        return True

    def confirm_rebase(self, branch_name: str, target: str) -> bool:
        return True

    def confirm_amend(self, branch_name: str, paths: List[str]) -> bool:
        return True

    def confirm_unamend(self, branch_name: str, paths: List[str]) -> bool:
        return True

    def choose_split_groups(self, source_branch: str, groups: Dict[str, List[str]]) -> List[str]:
        return list(groups)

    def confirm_split_restart(self, root_branch: str) -> bool:
        return True

    def confirm_split_clean(self, branches: List[str]) -> bool:
        return True

    def choose_branch(self, candidates: List[Branch]) -> Optional[str]:
        current = [c for c in candidates if not c.orphaned]
        pool = current or candidates
        return pool[0].name if pool else None
