"""
Shared fixtures: throwaway git repositories and an in-memory marker store.
"""

from __future__ import annotations

import fnmatch
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from git import Repo

from bbranch.config import Settings
from bbranch.evolve_orchestrator import EvolveOrchestrator
from bbranch.git_manager import GitManager
from bbranch.marker_store import MarkerStore
from bbranch.models import MarkerCollisionError


def configure_identity(repo: Repo) -> None:
    with repo.config_writer() as cw:
        cw.set_value("user", "name", "Test User")
        cw.set_value("user", "email", "test@example.com")
        cw.set_value("commit", "gpgsign", "false")
        cw.set_value("tag", "gpgsign", "false")
        cw.set_value("core", "editor", "true")


class RepoBuilder:
    """Builds small commit-branch histories in a real repository."""

    def __init__(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)
        self.path = path
        self.repo = Repo.init(path)
        self.repo.git.symbolic_ref("HEAD", "refs/heads/main")
        configure_identity(self.repo)
        self.write("README.md", "# test\n")
        self.repo.git.add("-A")
        self.repo.git.commit("-m", "initial")

    @property
    def git(self):
        return self.repo.git

    def write(self, filename: str, content: str) -> None:
        target = self.path / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def checkout(self, ref: str) -> None:
        self.git.checkout(ref)

    def branch(self, name: str, parent: str, files: Optional[Dict[str, str]] = None) -> str:
        """Create branch ``name`` on ``parent`` with one commit; returns its sha."""
        self.git.checkout(parent)
        self.git.checkout("-b", name)
        for filename, content in (files or {f"{name}.txt": f"{name}\n"}).items():
            self.write(filename, content)
        self.git.add("-A")
        self.git.commit("-m", name)
        return self.tip(name)

    def commit_on(self, branch: str, filename: str, content: str) -> str:
        """Add a commit to an existing branch; returns the new tip."""
        self.git.checkout(branch)
        self.write(filename, content)
        self.git.add("-A")
        self.git.commit("-m", f"update {filename}")
        return self.tip(branch)

    def amend(self, branch: str, filename: str, content: str) -> Tuple[str, str]:
        """Rewrite the tip of ``branch`` without touching markers; returns (old, new)."""
        old = self.tip(branch)
        self.git.checkout(branch)
        self.write(filename, content)
        self.git.add("-A")
        self.git.commit("--amend", "--no-edit")
        return old, self.tip(branch)

    def tip(self, ref: str) -> str:
        return self.git.rev_parse(f"{ref}^{{commit}}").strip()

    def first_parent(self, ref: str) -> str:
        return self.git.rev_parse(f"{ref}^").strip()

    def current_branch(self) -> str:
        return self.git.rev_parse("--abbrev-ref", "HEAD").strip()

    def tags(self, pattern: str = "*") -> List[str]:
        return [t for t in self.git.tag("--list", pattern).splitlines() if t.strip()]


class InMemoryMarkerStore(MarkerStore):
    """Dictionary-backed marker store."""

    def __init__(self) -> None:
        self.markers: Dict[str, Tuple[str, Optional[str]]] = {}

    def list(self, pattern: Optional[str] = None) -> List[str]:
        return [n for n in self.markers if pattern is None or fnmatch.fnmatchcase(n, pattern)]

    def create(self, name: str, target: str, message: Optional[str] = None) -> None:
        if name in self.markers:
            raise MarkerCollisionError(f"Marker '{name}' already exists")
        self.markers[name] = (target, message)

    def delete(self, name: str) -> None:
        self.markers.pop(name, None)

    def resolve(self, name: str) -> Optional[str]:
        entry = self.markers.get(name)
        return entry[0] if entry else None

    def message(self, name: str) -> Optional[str]:
        entry = self.markers.get(name)
        return entry[1] if entry else None

    def points_at(self, commit: str) -> List[str]:
        return [n for n, (target, _) in self.markers.items() if target == commit]


@pytest.fixture(autouse=True)
def isolated_log(tmp_path: Path, monkeypatch):
    """Keep CLI log files out of the home directory."""
    monkeypatch.setenv("BBRANCH_LOG", str(tmp_path / "logs" / "bbranch.log"))
    for key in ("BBRANCH_TRUNK", "BBRANCH_REMOTE", "BBRANCH_MAX_WORKERS", "BBRANCH_MAX_PARENT_DEPTH"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def builder(tmp_path: Path) -> RepoBuilder:
    return RepoBuilder(tmp_path / "repo")


@pytest.fixture()
def settings() -> Settings:
    return Settings(trunk="main", max_workers=4)


@pytest.fixture()
def git_manager(builder: RepoBuilder) -> GitManager:
    return GitManager(builder.path)


@pytest.fixture()
def orchestrator(builder: RepoBuilder, settings: Settings) -> EvolveOrchestrator:
    return EvolveOrchestrator(git_manager=GitManager(builder.path), settings=settings)


@pytest.fixture()
def memory_store() -> InMemoryMarkerStore:
    return InMemoryMarkerStore()
