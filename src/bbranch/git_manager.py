"""
Git repository management and operations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union
from git import Repo, InvalidGitRepositoryError
from git.exc import GitCommandError

from .models import DETACHED_HEAD, GitRepositoryError, StatusEntry


logger = logging.getLogger(__name__)


class GitManager:
    """Manages Git operations for a single repository."""

    def __init__(self, repo_path: Optional[Path] = None) -> None:
        """Initialize Git manager with optional repository path."""
        self.repo_path = (repo_path or Path.cwd()).resolve()
        self._repo: Optional[Repo] = None

    # --- Path normalization helpers ---
    def _to_repo_relative_str(self, p: Union[str, Path]) -> str:
        """Return a POSIX-style path relative to the repo root.

        Absolute paths inside the working tree are made relative; anything
        else is passed through as a POSIX string.
        """
        base = Path(self.repo.working_dir).resolve()
        pp = Path(p)
        if not pp.is_absolute():
            return pp.as_posix()
        try:
            return pp.resolve().relative_to(base).as_posix()
        except ValueError:
            logger.debug(f"Path '{pp}' not under repo root '{base}'; passing as-is")
            return pp.as_posix()

    @property
    def repo(self) -> Repo:
        """Get the Git repository instance."""
        if self._repo is None:
            self._repo = self._discover_repository()
        return self._repo

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir)

    def _discover_repository(self) -> Repo:
        """Discover the Git repository from current or specified path."""
        logger.debug(f"Discovering repository in: {self.repo_path}")
        try:
            repo = Repo(self.repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, Exception) as e:
            raise GitRepositoryError(
                f"No Git repository found at {self.repo_path} or any parent directory"
            ) from e
        logger.info(f"Found Git repository at: {repo.working_dir}")
        return repo

    # --- Commit resolution ---
    def rev_parse(self, ref: str) -> str:
        """Resolve a ref expression to a full commit id, raising on failure."""
        try:
            return self.repo.git.rev_parse("--verify", f"{ref}^{{commit}}").strip()
        except GitCommandError as e:
            logger.error(f"Error resolving {ref}: {e}")
            raise GitRepositoryError(f"Could not resolve '{ref}' to a commit: {e}")

    def resolve_commit(self, ref: str) -> Optional[str]:
        """Resolve a ref expression to a commit id, or None when it does not exist."""
        try:
            value = self.repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}").strip()
            return value or None
        except GitCommandError:
            return None

    def first_parent(self, commit: str) -> Optional[str]:
        """Return the first-parent predecessor of a commit, or None for a root commit."""
        return self.resolve_commit(f"{commit}^")

    def merge_base(self, a: str, b: str) -> Optional[str]:
        """Return the best common ancestor of two refs, or None for unrelated histories."""
        try:
            value = self.repo.git.merge_base(a, b).strip()
            return value or None
        except GitCommandError:
            return None

    # --- Branch queries ---
    def _ref_names(self, *args: str) -> List[str]:
        output = self.repo.git.for_each_ref("--format=%(refname:lstrip=2)", *args)
        names = [ln.strip() for ln in output.splitlines()]
        return [name for name in names if name and name != DETACHED_HEAD]

    def list_local_branches(self) -> List[str]:
        """List local branch names (full names, including slashes)."""
        try:
            return self._ref_names("refs/heads/")
        except GitCommandError as e:
            logger.error(f"Error listing local branches: {e}")
            raise GitRepositoryError(f"Failed to list local branches: {e}")

    def branch_exists(self, branch_name: str) -> bool:
        """Check if a local branch exists."""
        try:
            self.repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{branch_name}")
            return True
        except GitCommandError:
            return False

    def branches_pointing_at(self, commit: str) -> List[str]:
        """Return live branches whose tip is exactly the given commit."""
        try:
            return self._ref_names(f"--points-at={commit}", "refs/heads/")
        except GitCommandError as e:
            logger.error(f"Error listing branches at {commit}: {e}")
            raise GitRepositoryError(f"Failed to list branches pointing at {commit}: {e}")

    def branches_containing_commit(self, commit: str, excluding: Optional[str] = None) -> List[str]:
        """Return live branches whose history contains ``commit`` but not ``excluding``."""
        args = [f"--contains={commit}"]
        if excluding:
            args.append(f"--no-contains={excluding}")
        try:
            return self._ref_names(*args, "refs/heads/")
        except GitCommandError as e:
            logger.error(f"Error listing branches containing {commit}: {e}")
            raise GitRepositoryError(f"Failed to list branches containing {commit}: {e}")

    def get_current_branch(self) -> str:
        """Get the current branch name, or "HEAD" when detached."""
        try:
            return self.repo.git.rev_parse("--abbrev-ref", "HEAD").strip()
        except GitCommandError as e:
            logger.error(f"Error getting current branch: {e}")
            raise GitRepositoryError(f"Could not determine current branch: {e}")

    # --- Branch mutations ---
    def checkout_branch(self, branch_name: str) -> None:
        """Checkout a specific branch."""
        try:
            self.repo.git.checkout(branch_name)
            logger.info(f"Checked out branch: {branch_name}")
        except GitCommandError as e:
            logger.error(f"Error checking out branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to checkout branch {branch_name}: {e}")

    def create_branch(self, branch_name: str, start_point: str = "HEAD", checkout: bool = False) -> None:
        """Create a local branch at a commit, optionally switching to it."""
        try:
            if checkout:
                self.repo.git.checkout("-b", branch_name, start_point)
            else:
                self.repo.git.branch(branch_name, start_point)
            logger.info(f"Created branch {branch_name} at {start_point}")
        except GitCommandError as e:
            logger.error(f"Error creating branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to create branch {branch_name}: {e}")

    def delete_branch(self, branch_name: str) -> None:
        """Delete a local branch (force)."""
        try:
            self.repo.git.branch("-D", branch_name)
            logger.info(f"Deleted branch {branch_name}")
        except GitCommandError as e:
            logger.error(f"Error deleting branch {branch_name}: {e}")
            raise GitRepositoryError(f"Failed to delete branch {branch_name}: {e}")

    # --- Rebase ---
    def rebase_onto(self, target: str, upstream: str, branch: str) -> Tuple[bool, List[Path]]:
        """
        Run `git rebase --onto <target> <upstream> <branch>`.

        Returns:
            Tuple of (success, conflict_files). Failures other than conflicts
            raise GitRepositoryError.
        """
        logger.debug(f"Called 'git rebase --onto {target} {upstream} {branch}' in {self.repo.working_dir}")
        try:
            self.repo.git.rebase("--onto", target, upstream, branch)
        except GitCommandError as e:
            conflict_files = self._get_conflict_files()
            if conflict_files:
                logger.warning(f"Rebase of {branch} has conflicts in files: {conflict_files}")
                return False, conflict_files
            logger.error(f"Rebase of {branch} failed: {e}")
            raise GitRepositoryError(f"Rebase of {branch} onto {target} failed: {e}")
        logger.info(f"Rebased {branch} onto {target}")
        return True, []

    def continue_rebase(self) -> Tuple[bool, List[Path]]:
        """Continue a rebase after conflicts are resolved."""
        try:
            # Avoid interactive editor prompt
            with self.repo.git.custom_environment(GIT_EDITOR="true"):
                self.repo.git.rebase("--continue")
        except GitCommandError as e:
            conflict_files = self._get_conflict_files()
            if conflict_files:
                logger.warning(f"Rebase still has conflicts: {conflict_files}")
                return False, conflict_files
            logger.error(f"Rebase continue failed: {e}")
            raise GitRepositoryError(f"Rebase continue failed: {e}")
        logger.info("Rebase continued successfully")
        return True, []

    def abort_rebase(self) -> None:
        """Abort a rebase operation."""
        try:
            self.repo.git.rebase("--abort")
            logger.info("Rebase aborted successfully")
        except GitCommandError as e:
            logger.error(f"Failed to abort rebase: {e}")
            raise GitRepositoryError(f"Failed to abort rebase: {e}")

    def is_rebase_in_progress(self) -> bool:
        """Check if a rebase is currently in progress."""
        return any((self.git_dir / name).exists() for name in ("rebase-merge", "rebase-apply"))

    def get_rebase_head_branch(self) -> Optional[str]:
        """Return the branch being rebased while a rebase is in progress."""
        for name in ("rebase-merge", "rebase-apply"):
            head_file = self.git_dir / name / "head-name"
            if head_file.exists():
                ref = head_file.read_text(encoding="utf-8").strip()
                if ref.startswith("refs/heads/"):
                    return ref[len("refs/heads/"):]
                return None
        return None

    def _get_conflict_files(self) -> List[Path]:
        """Get list of files with merge conflicts."""
        try:
            output = self.repo.git.diff("--name-only", "--diff-filter=U")
        except GitCommandError as e:
            logger.error(f"Error getting conflict files: {e}")
            return []
        return [Path(self.repo.working_dir) / f.strip() for f in output.split("\n") if f.strip()]

    # --- Tags (marker storage) ---
    def list_tags(self, pattern: Optional[str] = None) -> List[str]:
        """List tag names, optionally filtered by a glob pattern."""
        try:
            args = ["--list"] + ([pattern] if pattern else [])
            output = self.repo.git.tag(*args)
        except GitCommandError as e:
            logger.error(f"Error listing tags: {e}")
            raise GitRepositoryError(f"Failed to list tags: {e}")
        return [t.strip() for t in output.splitlines() if t.strip()]

    def tag_exists(self, name: str) -> bool:
        try:
            self.repo.git.rev_parse("--verify", "--quiet", f"refs/tags/{name}")
            return True
        except GitCommandError:
            return False

    def create_tag(self, name: str, target: str, message: Optional[str] = None) -> None:
        """Create a lightweight tag, or an annotated one when a message is given."""
        try:
            if message is None:
                self.repo.git.tag(name, target)
            else:
                self.repo.git.tag("-a", "-m", message, name, target)
            logger.debug(f"Created tag {name} -> {target}")
        except GitCommandError as e:
            logger.error(f"Error creating tag {name}: {e}")
            raise GitRepositoryError(f"Failed to create tag {name}: {e}")

    def delete_tag(self, name: str) -> None:
        try:
            self.repo.git.tag("-d", name)
            logger.debug(f"Deleted tag {name}")
        except GitCommandError as e:
            logger.error(f"Error deleting tag {name}: {e}")
            raise GitRepositoryError(f"Failed to delete tag {name}: {e}")

    def tag_commit(self, name: str) -> Optional[str]:
        """Return the commit a tag points at (peeling annotated tags)."""
        return self.resolve_commit(f"refs/tags/{name}")

    def tag_message(self, name: str) -> Optional[str]:
        """Return the message of an annotated tag, or None for lightweight tags."""
        try:
            object_type = self.repo.git.cat_file("-t", f"refs/tags/{name}").strip()
            if object_type != "tag":
                return None
            output = self.repo.git.for_each_ref("--format=%(contents)", f"refs/tags/{name}")
        except GitCommandError:
            return None
        message = output.strip()
        return message or None

    def tags_pointing_at(self, commit: str) -> List[str]:
        """Return tag names whose (peeled) target is the given commit."""
        try:
            output = self.repo.git.tag("--points-at", commit)
        except GitCommandError as e:
            logger.error(f"Error listing tags at {commit}: {e}")
            raise GitRepositoryError(f"Failed to list tags pointing at {commit}: {e}")
        return [t.strip() for t in output.splitlines() if t.strip()]

    # --- Working tree / index ---
    def get_staged_files(self) -> List[str]:
        """Return list of staged (cached) paths (names only)."""
        try:
            output = self.repo.git.diff("--cached", "--name-only")
        except GitCommandError:
            return []
        return [f.strip() for f in output.split("\n") if f.strip()]

    def get_status_entries(self) -> List[StatusEntry]:
        """Return changed paths from `git status --porcelain` (untracked included)."""
        try:
            output = self.repo.git.status("--porcelain", strip_newline_in_stdout=False)
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to read status: {e}")
        entries: List[StatusEntry] = []
        for line in output.splitlines():
            if len(line) < 4:
                continue
            # First two columns are status codes; path follows
            code = line[:2]
            path = line[3:].strip()
            if " -> " in path:
                path = path.split(" -> ", 1)[1]
            entries.append(StatusEntry(status=code, path=path))
        return entries

    def add_paths(self, paths: List[Union[str, Path]]) -> None:
        """Stage the given paths."""
        try:
            for p in paths:
                # The '--' ensures pathspec is not interpreted as an option
                self.repo.git.add("--", self._to_repo_relative_str(p))
        except GitCommandError as e:
            logger.error(f"Failed to add paths {paths} in {self.repo.working_dir}: {e}")
            raise GitRepositoryError(f"Failed to stage paths: {e}")

    def remove_paths(self, paths: List[Union[str, Path]]) -> None:
        """Stage deletion of the given paths."""
        try:
            for p in paths:
                self.repo.git.rm("--quiet", "--", self._to_repo_relative_str(p))
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to remove paths: {e}")

    def add_all(self) -> None:
        try:
            self.repo.git.add("-A")
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to stage changes: {e}")

    def commit(self, message: Optional[str] = None, allow_empty: bool = True) -> None:
        """Create a commit; without a message the configured editor is opened."""
        args = ["--allow-empty"] if allow_empty else []
        if message is not None:
            args += ["-m", message]
        try:
            self.repo.git.commit(*args)
            logger.info("Created commit")
        except GitCommandError as e:
            logger.error(f"Commit failed: {e}")
            raise GitRepositoryError(f"Commit failed: {e}")

    def amend_commit(self) -> None:
        """Amend HEAD keeping its message."""
        try:
            self.repo.git.commit("--amend", "--no-edit", "--allow-empty")
            logger.info("Amended HEAD")
        except GitCommandError as e:
            logger.error(f"Amend failed: {e}")
            raise GitRepositoryError(f"Amend failed: {e}")

    def get_commit_files(self, ref: str = "HEAD") -> List[StatusEntry]:
        """Return (status, path) of files changed by a single commit."""
        try:
            output = self.repo.git.diff_tree("--no-commit-id", "--name-status", "-r", "--root", ref)
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to read files of {ref}: {e}")
        entries: List[StatusEntry] = []
        for line in output.splitlines():
            parts = line.split("\t")
            if len(parts) >= 2:
                entries.append(StatusEntry(status=parts[0], path=parts[-1]))
        return entries

    def reset_paths_to_parent(self, paths: List[str]) -> None:
        """Reset index entries of the given paths to HEAD^ (working tree untouched)."""
        try:
            self.repo.git.reset("HEAD^", "--", *paths)
        except GitCommandError as e:
            # `git reset` exits 1 when unstaged changes remain; that is not a failure here
            if e.status != 1:
                raise GitRepositoryError(f"Failed to reset paths {paths}: {e}")

    def get_commit_message(self, ref: str) -> str:
        try:
            return self.repo.git.log("-1", "--pretty=%B", ref).strip()
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to read message of {ref}: {e}")

    def cherry_pick_no_commit(self, ref: str) -> None:
        """Apply the changes of ``ref`` to the index and working tree without committing."""
        try:
            self.repo.git.cherry_pick("--no-commit", ref)
            logger.info(f"Applied changes of {ref} without committing")
        except GitCommandError as e:
            logger.error(f"Failed to apply {ref}: {e}")
            raise GitRepositoryError(f"Failed to apply changes of {ref}: {e}")

    def unstage_all(self) -> None:
        try:
            self.repo.git.reset("--quiet")
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to unstage changes: {e}")

    def discard_changes(self) -> None:
        """Reset tracked files to HEAD and delete untracked files and directories."""
        try:
            self.repo.git.reset("--hard", "--quiet")
            self.repo.git.clean("-fd")
            logger.info("Discarded working tree changes")
        except GitCommandError as e:
            raise GitRepositoryError(f"Failed to discard changes: {e}")

    # --- Remote synchronization helpers ---
    def pull(self, remote_name: str, branch_name: str) -> None:
        """Pull the checked out branch from a remote."""
        try:
            self.repo.git.pull(remote_name, branch_name)
            logger.info(f"Pulled {remote_name}/{branch_name}")
        except GitCommandError as e:
            logger.error(f"Failed to pull {branch_name} from {remote_name}: {e}")
            raise GitRepositoryError(f"Failed to pull {branch_name} from {remote_name}: {e}")

    def fetch_branch(self, remote_name: str, branch_name: str) -> None:
        """Update a local branch that is not checked out straight from the remote."""
        try:
            self.repo.git.fetch(remote_name, f"{branch_name}:{branch_name}")
            logger.info(f"Fetched {remote_name}/{branch_name} into {branch_name}")
        except GitCommandError as e:
            logger.error(f"Failed to fetch {branch_name} from {remote_name}: {e}")
            raise GitRepositoryError(f"Failed to fetch {branch_name} from {remote_name}: {e}")

    def force_push(self, branch_name: str, remote_name: str = "origin") -> None:
        try:
            self.repo.git.push("--force-with-lease", remote_name, f"{branch_name}:{branch_name}")
            logger.info(f"Force pushed {branch_name} to {remote_name}")
        except GitCommandError as e:
            logger.error(f"Failed to push {branch_name} to {remote_name}: {e}")
            raise GitRepositoryError(f"Failed to push {branch_name} to {remote_name}: {e}")
