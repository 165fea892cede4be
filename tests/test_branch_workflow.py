"""
Tests for commit, amend, unamend, pull and navigation.
"""

from unittest.mock import Mock

import pytest
from git import Repo

from bbranch.branch_workflow import BranchWorkflow, group_split_files, path_matches
from bbranch.config import Settings
from bbranch.evolve_orchestrator import EvolveOrchestrator
from bbranch.git_manager import GitManager
from bbranch.models import (
    BBranchError,
    Branch,
    BranchNotFoundError,
    GitRepositoryError,
    OperationCancelledError,
)
from bbranch.prompt_interface import AutoConfirmPrompt, NoOpPrompt

from conftest import configure_identity


class TestPathMatches:
    @pytest.mark.parametrize(
        "pattern,path,expected",
        [
            ("src", "src/a.py", True),
            ("src/a.py", "src/a.py", True),
            ("src/a", "src/a.py", False),
            ("sr", "src/a.py", False),
            ("src/", "src/deep/a.py", True),
            ("src/deep/a.py/x", "src/deep/a.py", False),
        ],
    )
    def test_component_matching(self, pattern, path, expected):
        assert path_matches(pattern, path) is expected


class TestCommit:
    def test_commit_creates_branch(self, builder, orchestrator):
        workflow = BranchWorkflow(orchestrator)
        name = workflow.commit("my change", message="add thing")
        assert name == "my-change"
        assert builder.current_branch() == "my-change"
        assert builder.first_parent("my-change") == builder.tip("main")

    def test_failed_commit_rolls_back(self):
        git = Mock()
        git.get_current_branch.return_value = "main"
        git.commit.side_effect = GitRepositoryError("hook rejected")
        orch = Mock(git_manager=git, settings=Settings(trunk="main"))

        with pytest.raises(GitRepositoryError):
            BranchWorkflow(orch).commit("feature", "msg")
        git.create_branch.assert_called_once_with("feature", "HEAD", checkout=True)
        git.checkout_branch.assert_called_once_with("main")
        git.delete_branch.assert_called_once_with("feature")

    def test_invalid_name(self, orchestrator):
        with pytest.raises(BBranchError):
            BranchWorkflow(orchestrator).commit("bad}}name", "msg")


class TestAmend:
    @pytest.fixture(autouse=True)
    def _repo(self, builder, orchestrator):
        self.builder = builder
        self.orch = orchestrator
        self.workflow = BranchWorkflow(orchestrator)
        self.a1 = builder.branch("a", "main", {"a.txt": "a\n", "lib/x.txt": "x\n"})
        builder.branch("b", "a")
        builder.checkout("a")

    def test_amend_everything_marks_stale(self):
        self.builder.write("a.txt", "a2\n")
        self.builder.write("new.txt", "n\n")
        amended = self.workflow.amend(assume_yes=True)
        assert sorted(e.path for e in amended) == ["a.txt", "new.txt"]
        assert "new.txt" in self.builder.git.show("--name-only", "--format=", "a")
        assert self.orch.resolve_parent("b") == Branch("a", stale=True)

    def test_amend_only_staged(self):
        self.builder.write("a.txt", "a2\n")
        self.builder.write("lib/x.txt", "x2\n")
        self.builder.git.add("lib/x.txt")
        amended = self.workflow.amend(assume_yes=True)
        assert [e.path for e in amended] == ["lib/x.txt"]
        assert self.builder.git.status("--porcelain", "a.txt").strip() == "M a.txt"

    def test_amend_path_includes_deletion(self):
        (self.builder.path / "lib" / "x.txt").unlink()
        self.builder.write("a.txt", "a2\n")
        self.workflow.amend("lib", assume_yes=True)
        assert "lib/x.txt" not in self.builder.git.ls_tree("-r", "--name-only", "a").split()
        assert self.builder.git.status("--porcelain", "a.txt").strip() == "M a.txt"

    def test_amend_unmatched_path(self):
        self.builder.write("a.txt", "a2\n")
        with pytest.raises(BBranchError):
            self.workflow.amend("docs", assume_yes=True)

    def test_amend_declined(self):
        self.builder.write("a.txt", "a2\n")
        with pytest.raises(OperationCancelledError):
            self.workflow.amend(prompt=NoOpPrompt())
        assert self.builder.tip("a") == self.a1

    def test_amend_detached(self):
        self.builder.checkout(self.a1)
        with pytest.raises(BBranchError):
            self.workflow.amend(assume_yes=True)

    def test_unamend_moves_file_out(self):
        removed = self.workflow.unamend("lib", assume_yes=True)
        assert [e.path for e in removed] == ["lib/x.txt"]
        assert "lib/x.txt" not in self.builder.git.ls_tree("-r", "--name-only", "a").split()
        assert (self.builder.path / "lib" / "x.txt").exists()
        assert self.orch.resolve_parent("b") == Branch("a", stale=True)

    def test_unamend_several_requires_confirmation(self):
        self.builder.write("lib/y.txt", "y\n")
        self.workflow.amend(assume_yes=True)
        with pytest.raises(OperationCancelledError):
            self.workflow.unamend("lib", prompt=NoOpPrompt())

    def test_unamend_no_match(self):
        with pytest.raises(BBranchError):
            self.workflow.unamend("docs", assume_yes=True)
        with pytest.raises(BBranchError):
            self.workflow.unamend("", assume_yes=True)


class TestNavigation:
    @pytest.fixture(autouse=True)
    def _repo(self, builder, orchestrator):
        self.builder = builder
        self.workflow = BranchWorkflow(orchestrator)
        builder.branch("a", "main")
        builder.branch("b", "a")
        builder.branch("c", "a")
        builder.branch("d", "b")

    def test_next_single_child(self):
        self.builder.checkout("b")
        assert self.workflow.next() == "d"
        assert self.builder.current_branch() == "d"

    def test_next_leaf(self):
        self.builder.checkout("d")
        assert self.workflow.next() is None

    def test_next_several_children_uses_prompt(self):
        self.builder.checkout("a")
        assert self.workflow.next(NoOpPrompt()) is None
        assert self.builder.current_branch() == "a"
        assert self.workflow.next(AutoConfirmPrompt()) == "b"

    def test_prev(self):
        self.builder.checkout("d")
        assert self.workflow.prev() == "b"
        assert self.workflow.prev() == "a"
        assert self.workflow.prev() == "main"


class TestPull:
    def test_pull_marks_old_trunk(self, tmp_path, builder):
        clone_path = tmp_path / "clone"
        clone = Repo.clone_from(str(builder.path), str(clone_path))
        configure_identity(clone)
        clone.git.checkout("-b", "a")
        (clone_path / "a.txt").write_text("a\n")
        clone.git.add("-A")
        clone.git.commit("-m", "a")
        old_main = clone.git.rev_parse("main").strip()

        builder.commit_on("main", "upstream.txt", "u\n")

        orch = EvolveOrchestrator(
            git_manager=GitManager(clone_path), settings=Settings(trunk="main", max_workers=2)
        )
        workflow = BranchWorkflow(orch)
        assert workflow.pull() is True
        assert clone.git.rev_parse("main").strip() == builder.tip("main")
        assert orch.resolve_parent("a") == Branch("main", stale=True)
        assert clone.git.rev_parse("merge-base-master-1^{commit}").strip() == old_main
        assert workflow.pull() is False


class SplitPrompt(AutoConfirmPrompt):
    def __init__(self, groups=None, restart=True):
        self.groups = groups
        self.restart = restart

    def choose_split_groups(self, source_branch, groups):
        return list(groups) if self.groups is None else self.groups

    def confirm_split_restart(self, root_branch):
        return self.restart


class TestGroupSplitFiles:
    def test_groups_below_directory(self):
        files = ["README", "src/lib/x.py", "src/top.py", "src/lib/y.py", "src/docs/d.md"]
        assert group_split_files(files, "src/") == {
            "__nomatch__": ["README"],
            "lib": ["src/lib/x.py", "src/lib/y.py"],
            "__root__": ["src/top.py"],
            "docs": ["src/docs/d.md"],
        }

    def test_repository_root_splitter(self):
        assert group_split_files(["a/x", "b/y", "z"]) == {"a": ["a/x"], "b": ["b/y"], "__root__": ["z"]}


class TestSplit:
    @pytest.fixture(autouse=True)
    def _repo(self, builder, orchestrator):
        self.builder = builder
        self.orch = orchestrator
        self.workflow = BranchWorkflow(orchestrator)
        builder.branch(
            "a",
            "main",
            {"NOTES": "n\n", "src/docs/d.md": "d\n", "src/lib/x.py": "x\n", "src/top.py": "t\n"},
        )

    def changed(self, branch):
        return self.builder.git.diff("--name-only", "split-root--a", branch).split()

    def test_split_every_group(self):
        created = self.workflow.split("src", message="part {{BB_DIRECTORY}}", assume_yes=True)
        assert created == ["a--split--__nomatch__", "a--split--docs", "a--split--lib", "a--split--__root__"]
        assert self.builder.current_branch() == "a"
        assert self.builder.first_parent("split-root--a") == self.builder.tip("main")
        for name in created:
            assert self.builder.first_parent(name) == self.builder.tip("split-root--a")
        assert self.changed("a--split--lib") == ["src/lib/x.py"]
        assert self.changed("a--split--__nomatch__") == ["NOTES"]
        assert self.builder.git.log("-1", "--pretty=%s", "a--split--docs") == "part docs"
        assert self.builder.git.log("-1", "--pretty=%s", "a--split--__root__") == "part src"
        assert self.builder.tags("bbranch-split-*") == ["bbranch-split-{{a}}"]
        assert self.builder.git.status("--porcelain") == ""
        assert sorted(c.name for c in self.orch.resolve_children("split-root--a")) == sorted(created)

    def test_split_selected_groups_uses_source_message(self):
        created = self.workflow.split("src", prompt=SplitPrompt(groups=["lib"]))
        assert created == ["a--split--lib"]
        assert self.builder.git.log("-1", "--pretty=%s", "a--split--lib") == "a"
        assert self.builder.git.status("--porcelain") == ""

    def test_nothing_selected_cancels(self):
        with pytest.raises(OperationCancelledError):
            self.workflow.split("src", prompt=NoOpPrompt())
        assert not self.builder.git.branch("--list", "split-root--a").strip()

    def test_split_again_restarts(self):
        self.workflow.split("src", assume_yes=True)
        with pytest.raises(OperationCancelledError):
            self.workflow.split("src", prompt=SplitPrompt(restart=False))
        created = self.workflow.split("src", prompt=SplitPrompt(groups=["docs"]))
        assert created == ["a--split--docs"]
        assert not self.builder.git.branch("--list", "a--split--lib").strip()
        assert self.builder.tags("bbranch-split-*") == ["bbranch-split-{{a}}"]

    def test_guards(self):
        with pytest.raises(BBranchError):
            self.workflow.split(branch_name="main", assume_yes=True)
        self.builder.write("NOTES", "dirty\n")
        with pytest.raises(BBranchError):
            self.workflow.split(assume_yes=True)

    def test_clean_from_split_root(self):
        created = self.workflow.split("src", assume_yes=True)
        self.builder.checkout("split-root--a")
        deleted = self.workflow.clean_split(assume_yes=True)
        assert sorted(deleted) == sorted(created + ["split-root--a"])
        assert self.builder.current_branch() == "a"
        assert self.builder.tags("bbranch-split-*") == []
        assert sorted(self.orch.git_manager.list_local_branches()) == ["a", "main"]

    def test_clean_declined_or_missing(self):
        with pytest.raises(BranchNotFoundError):
            self.workflow.clean_split("a", assume_yes=True)
        self.workflow.split("src", assume_yes=True)
        with pytest.raises(OperationCancelledError):
            self.workflow.clean_split("a", prompt=NoOpPrompt())
        assert self.builder.git.branch("--list", "split-root--a").strip()
