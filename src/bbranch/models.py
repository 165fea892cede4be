"""
Data models for the commit-branch evolve tool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


DETACHED_HEAD = "HEAD"

# Split group keys for files outside the split directory and files directly in it
SPLIT_NOMATCH_GROUP = "__nomatch__"
SPLIT_ROOT_GROUP = "__root__"


@dataclass
class Branch:
    """A node in the branch tree.

    ``parent`` and ``children`` are traversal back-references only; they are
    rebuilt on every query from the commit graph and the marker namespace.
    """

    name: str
    parent: Optional[Branch] = field(default=None, repr=False, compare=False)
    children: List[Branch] = field(default_factory=list, repr=False, compare=False)
    orphaned: bool = False
    stale: bool = False

    def current_children(self) -> List[Branch]:
        return [c for c in self.children if not c.orphaned]

    def orphaned_children(self) -> List[Branch]:
        return [c for c in self.children if c.orphaned]


class EvolveScope(Enum):
    """How much of the tree an evolve operation touches."""

    SELF = "self"
    DIRECTS = "directs"
    FULL = "full"


class RebaseFlag(Enum):
    """Resume modes for an in-flight rebase."""

    CONTINUE = "continue"
    ABORT = "abort"


class RebaseOutcome(Enum):
    """Result of a single branch rebase."""

    SUCCESS = "success"
    CONFLICT = "conflict"
    ABORTED = "aborted"


class EvolveState(Enum):
    """States of the evolve state machine."""

    IDLE = "idle"
    QUEUED = "queued"
    RUNNING = "running"
    PAUSED_ON_CONFLICT = "paused_on_conflict"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class EvolveStep:
    """One pending entry of the persisted evolve queue."""

    step: int
    branch: Optional[str]
    marker: str


@dataclass
class EvolveStatus:
    """Snapshot of an evolve operation read back from the marker namespace."""

    scope: Optional[EvolveScope]
    step: Optional[int]
    pending: List[EvolveStep] = field(default_factory=list)
    home_branch: Optional[str] = None
    trunk_snapshot: Optional[str] = None


@dataclass
class EvolveResult:
    """Outcome of driving the evolve queue."""

    state: EvolveState
    scope: Optional[EvolveScope] = None
    completed: List[str] = field(default_factory=list)
    paused_on: Optional[str] = None
    conflict_files: List[Path] = field(default_factory=list)


@dataclass
class StatusEntry:
    """A single `git status --porcelain` line."""

    status: str
    path: str


class BBranchError(Exception):
    """Base exception for commit-branch operations."""

    pass


class GitRepositoryError(BBranchError):
    """Exception raised for Git repository related errors."""

    pass


class BranchNotFoundError(BBranchError):
    """Raised when a branch argument does not resolve to a commit."""

    pass


class InvalidBranchNameError(BBranchError):
    """Raised for branch names that would corrupt marker encoding."""

    pass


class InvalidScopeError(BBranchError):
    """Raised for an unknown evolve scope."""

    pass


class EvolveInProgressError(BBranchError):
    """Raised when starting an evolve while another one is queued."""

    pass


class NoEvolveInProgressError(BBranchError):
    """Raised when resuming an evolve that does not exist."""

    pass


class MarkerCollisionError(BBranchError):
    """Raised when a marker name is already taken."""

    pass


class ConfigurationError(BBranchError):
    """Raised for missing or contradictory configuration."""

    pass


class OperationCancelledError(BBranchError):
    """Raised when the user declines a confirmation prompt."""

    pass
