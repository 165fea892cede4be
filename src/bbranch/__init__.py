"""
bbranch - one branch per commit.

Tracks which commit-branch each branch was created on, marks rewritten tips as
stale while descendants still depend on them, and re-linearizes ("evolves")
whole subtrees of branches after an amend, rebase or trunk update.
"""

__version__ = "0.1.0"

from .models import Branch, EvolveScope, EvolveState, RebaseFlag, RebaseOutcome, BBranchError
from .git_manager import GitManager
from .marker_store import MarkerStore, TagMarkerStore
from .parent_resolver import ParentResolver
from .children_resolver import ChildrenResolver
from .stale_manager import StaleMarkerManager
from .evolve_queue import EvolveQueue
from .evolve_orchestrator import EvolveOrchestrator
from .branch_workflow import BranchWorkflow
from .graph import BranchGraph

__all__ = [
    "Branch",
    "EvolveScope",
    "EvolveState",
    "RebaseFlag",
    "RebaseOutcome",
    "BBranchError",
    "GitManager",
    "MarkerStore",
    "TagMarkerStore",
    "ParentResolver",
    "ChildrenResolver",
    "StaleMarkerManager",
    "EvolveQueue",
    "EvolveOrchestrator",
    "BranchWorkflow",
    "BranchGraph",
]
