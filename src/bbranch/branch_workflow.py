"""
Commit-branch workflow commands: commit, amend, unamend, split, pull, push, navigation.

Every operation here that moves a branch tip captures whether the branch had
live children before the move and hands that to the staleness manager.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .evolve_orchestrator import EvolveOrchestrator
from .markers import (
    make_split_branch_tag,
    make_split_root_branch_name,
    parse_split_root_branch_name,
    validate_branch_name,
)
from .models import (
    DETACHED_HEAD,
    SPLIT_NOMATCH_GROUP,
    SPLIT_ROOT_GROUP,
    BBranchError,
    BranchNotFoundError,
    GitRepositoryError,
    OperationCancelledError,
    StatusEntry,
)
from .prompt_interface import NoOpPrompt, UserPrompt


logger = logging.getLogger(__name__)


def path_matches(pattern: str, path: str) -> bool:
    """Left-to-right component match, or a prefix match when the pattern ends in '/'."""
    if pattern.endswith("/"):
        return path.startswith(pattern)
    wanted = pattern.split("/")
    parts = path.split("/")
    if len(wanted) > len(parts):
        return False
    return all(parts[i] == part for i, part in enumerate(wanted))


DIRECTORY_PLACEHOLDER = "{{BB_DIRECTORY}}"


def group_split_files(files: List[str], splitter: str = "/") -> Dict[str, List[str]]:
    """
    Group changed files by their first directory below ``splitter``.

    Files outside ``splitter`` go to the no-match group and files directly
    inside it to the root group. Groups keep first-seen order.

    Example:
        group_split_files(["src/a/x.py", "src/b.py", "README"], "src")
        -> {"a": ["src/a/x.py"], "__root__": ["src/b.py"], "__nomatch__": ["README"]}
    """
    prefix = splitter.strip("/")
    prefix = f"{prefix}/" if prefix else ""
    groups: Dict[str, List[str]] = {}
    for path in files:
        if not path.startswith(prefix):
            key = SPLIT_NOMATCH_GROUP
        else:
            parts = path[len(prefix):].split("/")
            key = SPLIT_ROOT_GROUP if len(parts) == 1 else parts[0]
        groups.setdefault(key, []).append(path)
    return groups


class BranchWorkflow:
    """User-facing branch operations layered on the evolve orchestrator."""

    def __init__(self, orchestrator: EvolveOrchestrator) -> None:
        self.orchestrator = orchestrator
        self.git = orchestrator.git_manager
        self.settings = orchestrator.settings

    def current_branch(self, action: str) -> str:
        """Name of the checked out branch; raises for a detached HEAD."""
        branch = self.git.get_current_branch()
        if branch == DETACHED_HEAD:
            raise BBranchError(f"Cannot {action} with a detached HEAD; check out a branch first")
        return branch

    def commit(self, branch_name: str, message: Optional[str] = None, allow_empty: bool = True) -> str:
        """
        Create a new branch at HEAD and commit onto it.

        Without a message the configured editor is opened. If the commit fails
        the previous checkout is restored and the new branch deleted.

        Returns:
            The (normalized) new branch name
        """
        name = branch_name.strip().replace(" ", "-")
        validate_branch_name(name)
        previous = self.git.get_current_branch()
        if previous == DETACHED_HEAD:
            previous = self.git.rev_parse("HEAD")

        self.git.create_branch(name, "HEAD", checkout=True)
        try:
            self.git.commit(message, allow_empty=allow_empty)
        except GitRepositoryError:
            logger.warning(f"Commit on {name} failed; restoring {previous}")
            self.git.checkout_branch(previous)
            self.git.delete_branch(name)
            raise
        logger.info(f"Committed new branch {name}")
        return name

    def amend(
        self,
        path: Optional[str] = None,
        prompt: Optional[UserPrompt] = None,
        assume_yes: bool = False,
    ) -> List[StatusEntry]:
        """
        Fold working-tree changes into the current commit-branch.

        When anything is staged only staged changes are amended; otherwise all
        changes (or those matching ``path``) are staged first.

        Returns:
            The status entries that were amended
        """
        branch = self.current_branch("amend")
        validate_branch_name(branch)
        staged = set(self.git.get_staged_files())
        entries = self.git.get_status_entries()

        if path:
            selected = [e for e in entries if path_matches(path, e.path)]
            if staged:
                selected = [e for e in selected if e.path in staged]
            if not selected:
                qualifier = "staged changes" if staged else "changes"
                raise BBranchError(f"No {qualifier} found for: {path}")
        else:
            selected = [e for e in entries if e.path in staged] if staged else entries

        if not assume_yes:
            prompt = prompt or NoOpPrompt()
            if not prompt.confirm_amend(branch, [f"{e.status.strip()} {e.path}" for e in selected]):
                raise OperationCancelledError("Amend cancelled by user")

        if not staged:
            if path:
                for entry in selected:
                    if entry.status[1:2] == "D":
                        self.git.remove_paths([entry.path])
                    else:
                        self.git.add_paths([entry.path])
            else:
                self.git.add_all()

        self._rewrite_head(branch, self.git.amend_commit)
        return selected

    def unamend(
        self, path: str, prompt: Optional[UserPrompt] = None, assume_yes: bool = False
    ) -> List[StatusEntry]:
        """Move files matching ``path`` out of the last commit and back into the index."""
        if not path:
            raise BBranchError("Specify a file or directory to unamend")
        branch = self.current_branch("unamend")
        validate_branch_name(branch)
        selected = [e for e in self.git.get_commit_files() if path_matches(path, e.path)]
        if not selected:
            raise BBranchError(f"No files found in last commit matching: {path}")

        if len(selected) > 1 and not assume_yes:
            prompt = prompt or NoOpPrompt()
            if not prompt.confirm_unamend(branch, [e.path for e in selected]):
                raise OperationCancelledError("Unamend cancelled by user")

        def rewrite() -> None:
            self.git.reset_paths_to_parent([e.path for e in selected])
            self.git.amend_commit()

        self._rewrite_head(branch, rewrite)
        return selected

    def _rewrite_head(self, branch: str, rewrite) -> None:
        had_live_children = self.orchestrator.children.has_live_children(branch)
        old_tip = self.git.rev_parse("HEAD")
        rewrite()
        self.orchestrator.mark_stale(old_tip, branch, had_live_children)

    def split(
        self,
        splitter: str = "/",
        branch_name: Optional[str] = None,
        message: Optional[str] = None,
        prompt: Optional[UserPrompt] = None,
        assume_yes: bool = False,
    ) -> List[str]:
        """
        Split one commit-branch into a branch per directory.

        An empty split-root branch is committed on the source's parent and
        tagged; each selected group of the source commit's files is then
        committed on its own branch on top of that root. The source branch is
        left untouched and checked out again at the end.

        Args:
            splitter: Directory whose first-level subdirectories define the groups
            branch_name: Branch to split (defaults to the current branch)
            message: Message for the split commits; ``{{BB_DIRECTORY}}`` is
                replaced by the group (defaults to the source commit message)
            prompt: UI for selecting groups and confirming a restart
            assume_yes: Split every group and restart without asking

        Returns:
            Names of the created split branches

        Raises:
            BBranchError: On the trunk, with local changes, or with nothing to split
            OperationCancelledError: If no group is selected or a restart is declined
        """
        source = branch_name or self.current_branch("split")
        if source == self.settings.trunk:
            raise BBranchError(f"Cannot split the trunk branch {source}")
        if not self.git.branch_exists(source):
            raise BranchNotFoundError(f"Branch '{source}' does not exist")
        if self.git.get_status_entries():
            raise BBranchError("Working tree has uncommitted changes; commit or stash them before splitting")

        parent = self.orchestrator.resolve_parent(source)
        groups = group_split_files([e.path for e in self.git.get_commit_files(source)], splitter)
        if not groups:
            raise BBranchError(f"No changes found in branch {source}")

        prompt = prompt or NoOpPrompt()
        chosen = list(groups) if assume_yes else prompt.choose_split_groups(source, groups)
        if not chosen:
            raise OperationCancelledError("No groups selected")

        root = make_split_root_branch_name(source)
        if self.git.branch_exists(root):
            if not assume_yes and not prompt.confirm_split_restart(root):
                raise OperationCancelledError("Split cancelled by user")
            self._delete_split(source)

        template = message or self.git.get_commit_message(source)
        logger.info(f"Splitting {source} into {len(chosen)} branch(es) on {parent.name}")

        self.git.checkout_branch(parent.name)
        self.commit(
            root,
            message=f"[split-commit] Migration of branch `{source}`\n\n"
            f"Empty commit created from splitting `{source}` into multiple commits.",
        )
        self.orchestrator.store.create(make_split_branch_tag(source), self.git.rev_parse(root))

        self.git.cherry_pick_no_commit(source)
        self.git.unstage_all()
        created: List[str] = []
        for key in chosen:
            name = f"{source}--split--{key}"
            self.git.add_paths(groups[key])
            label = splitter if key == SPLIT_ROOT_GROUP else key
            if key == SPLIT_NOMATCH_GROUP:
                label = "non-matching files"
            self.commit(name, message=template.replace(DIRECTORY_PLACEHOLDER, label), allow_empty=False)
            created.append(name)
            self.git.checkout_branch(root)

        self.git.discard_changes()
        self.git.checkout_branch(source)
        return created

    def clean_split(
        self,
        branch_name: Optional[str] = None,
        prompt: Optional[UserPrompt] = None,
        assume_yes: bool = False,
    ) -> List[str]:
        """
        Delete a split: its root branch, the root's children and the split tag.

        ``branch_name`` may name either the source branch or its split root.

        Returns:
            Names of the deleted branches
        """
        name = branch_name or self.current_branch("clean a split")
        source = parse_split_root_branch_name(name) or name
        root = make_split_root_branch_name(source)
        if not self.git.branch_exists(root):
            raise BranchNotFoundError(f"Branch {root} does not exist; nothing to clean up")

        doomed = [c.name for c in self.orchestrator.resolve_children(root)] + [root]
        if not assume_yes and not (prompt or NoOpPrompt()).confirm_split_clean(doomed):
            raise OperationCancelledError("Split cleanup cancelled by user")
        if self.git.get_current_branch() in doomed:
            self.git.checkout_branch(source if self.git.branch_exists(source) else self.settings.trunk)
        return self._delete_split(source)

    def _delete_split(self, source: str) -> List[str]:
        root = make_split_root_branch_name(source)
        deleted = [c.name for c in self.orchestrator.resolve_children(root)] + [root]
        for name in deleted:
            self.git.delete_branch(name)
        tag = make_split_branch_tag(source)
        if self.orchestrator.store.exists(tag):
            self.orchestrator.store.delete(tag)
        logger.info(f"Deleted split of {source}: {deleted}")
        return deleted

    def pull(self) -> bool:
        """
        Update the trunk from the configured remote.

        Returns:
            True if the trunk tip moved
        """
        trunk = self.settings.trunk
        remote = self.settings.remote
        had_live_children = self.orchestrator.children.has_live_children(trunk)
        old_tip = self.git.rev_parse(trunk)

        if self.git.get_current_branch() == trunk:
            self.git.pull(remote, trunk)
        else:
            self.git.fetch_branch(remote, trunk)

        new_tip = self.git.rev_parse(trunk)
        if new_tip == old_tip:
            logger.info(f"{trunk} already up to date")
            return False
        self.orchestrator.mark_stale(old_tip, trunk, had_live_children)
        return True

    def push(self, branch_name: Optional[str] = None) -> str:
        branch = branch_name or self.current_branch("push")
        self.git.force_push(branch, self.settings.remote)
        return branch

    def next(self, prompt: Optional[UserPrompt] = None) -> Optional[str]:
        """Check out a child of the current branch; None when there is none or the choice is cancelled."""
        current = self.current_branch("navigate")
        children = self.orchestrator.children.resolve_node(current).children
        if not children:
            logger.info(f"{current} has no child branches")
            return None
        if len(children) == 1:
            choice = children[0].name
        else:
            choice = (prompt or NoOpPrompt()).choose_branch(children)
        if choice is None:
            return None
        self.git.checkout_branch(choice)
        return choice

    def prev(self) -> str:
        """Check out the resolved parent of the current branch."""
        current = self.current_branch("navigate")
        parent = self.orchestrator.resolve_parent(current)
        if parent.stale:
            logger.warning(f"Parent {parent.name} of {current} has been rewritten since {current} was created")
        self.git.checkout_branch(parent.name)
        return parent.name
