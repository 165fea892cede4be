"""
Tests for the persisted evolve queue, over the in-memory marker store.
"""

from unittest.mock import Mock

import pytest

from bbranch.evolve_queue import EvolveQueue
from bbranch.markers import EVOLVE_HOME_MARKER, EVOLVE_TRUNK_MARKER
from bbranch.models import EvolveInProgressError, EvolveScope, NoEvolveInProgressError


def make_git():
    git = Mock()
    git.rev_parse.side_effect = lambda ref: f"sha-{ref}"
    git.branches_pointing_at.return_value = []
    return git


class TestEvolveQueue:
    @pytest.fixture(autouse=True)
    def _queue(self, memory_store):
        self.git = make_git()
        self.store = memory_store
        self.queue = EvolveQueue(memory_store, self.git)

    def test_empty_queue(self):
        assert not self.queue.in_progress()
        assert self.queue.status() is None
        assert self.queue.peek() is None

    def test_seed_persists_order_and_home(self):
        steps = self.queue.seed(["a", "b", "c"], EvolveScope.FULL, "main")
        assert [s.step for s in steps] == [0, 1, 2]
        assert "bbranch-evolve-{{full}}-{{1}}" in self.store.markers
        assert self.store.markers["bbranch-evolve-{{full}}-{{1}}"] == ("sha-b", "b")

        status = self.queue.status()
        assert status.scope == EvolveScope.FULL
        assert status.step == 0
        assert [s.branch for s in status.pending] == ["a", "b", "c"]
        assert status.home_branch == "main"

    def test_seed_twice_raises(self):
        self.queue.seed(["a"], "self", "main")
        with pytest.raises(EvolveInProgressError):
            self.queue.seed(["b"], "self", "main")

    def test_detached_home_records_commit(self):
        self.queue.seed(["a"], "full", "HEAD")
        assert self.queue.home_branch() == "sha-HEAD"

    def test_complete_advances_cursor(self):
        self.queue.seed(["a", "b"], "directs", "main")
        self.queue.complete(0)
        assert self.queue.peek().branch == "b"
        assert self.queue.status().step == 1
        # Completing twice is harmless
        self.queue.complete(0)
        assert self.queue.peek().step == 1

    def test_append_continues_numbering_and_skips_pending(self):
        self.queue.seed(["a", "b"], "full", "main")
        added = self.queue.append("c")
        assert added.step == 2
        again = self.queue.append("b")
        assert again.step == 1
        assert [s.branch for s in self.queue.status().pending] == ["a", "b", "c"]

    def test_append_after_last_step_needs_scope(self):
        self.queue.seed(["a"], "full", "main")
        self.queue.complete(0)
        with pytest.raises(NoEvolveInProgressError):
            self.queue.append("b")
        added = self.queue.append("b", EvolveScope.FULL)
        assert added.marker == "bbranch-evolve-{{full}}-{{0}}"

    def test_append_without_queue_raises(self):
        with pytest.raises(NoEvolveInProgressError):
            self.queue.append("a", "full")

    def test_clear_removes_everything(self):
        self.queue.seed(["a", "b"], "full", "main")
        self.store.create("merge-base-master-1", "sha-x")
        self.queue.clear()
        assert not self.queue.in_progress()
        assert EVOLVE_HOME_MARKER not in self.store.markers
        assert list(self.store.markers) == ["merge-base-master-1"]

    def test_trunk_snapshot_survives_until_clear(self):
        self.queue.seed(["a", "b"], "full", "main", trunk_snapshot="sha-trunk")
        assert self.queue.trunk_snapshot() == "sha-trunk"
        assert self.queue.status().trunk_snapshot == "sha-trunk"
        self.queue.complete(0)
        assert EvolveQueue(self.store, self.git).trunk_snapshot() == "sha-trunk"
        self.queue.clear()
        assert EVOLVE_TRUNK_MARKER not in self.store.markers
        assert self.queue.trunk_snapshot() is None

    def test_no_snapshot_by_default(self):
        self.queue.seed(["a"], "self", "main")
        assert self.queue.status().trunk_snapshot is None

    def test_lightweight_entry_falls_back_to_branch_at_commit(self):
        self.store.create(EVOLVE_HOME_MARKER, "sha-HEAD", message="main")
        self.store.create("bbranch-evolve-{{full}}-{{0}}", "sha-old")
        self.git.branches_pointing_at.return_value = ["zeta", "alpha"]
        assert self.queue.peek().branch == "alpha"
        self.git.branches_pointing_at.assert_called_with("sha-old")
