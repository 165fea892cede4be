"""
Tests for the marker name codec.
"""

import pytest

from bbranch.markers import (
    EvolveMarker,
    MergeBaseMarker,
    StaleMarker,
    make_evolve_tag,
    make_merge_base_tag,
    make_split_branch_tag,
    make_split_root_branch_name,
    make_stale_parent_tag,
    parse_evolve_tag,
    parse_merge_base_tag,
    parse_split_branch_tag,
    parse_split_root_branch_name,
    parse_stale_parent_tag,
    is_split_branch_tag,
    validate_branch_name,
)
from bbranch.models import EvolveScope, InvalidBranchNameError


class TestStaleParentTag:
    def test_format(self):
        assert make_stale_parent_tag("feature", 1) == "bbranch-stale-{{feature}}-{{1}}"

    @pytest.mark.parametrize("branch", ["a", "feature/login", "fix-1-2", "user/x-{y}", "a}b{c"])
    @pytest.mark.parametrize("seq", [0, 7, 12])
    def test_decode_inverts_encode(self, branch, seq):
        assert parse_stale_parent_tag(make_stale_parent_tag(branch, seq)) == StaleMarker(branch, seq)

    @pytest.mark.parametrize(
        "name",
        [
            "",
            "bbranch-stale-{{feature}}",
            "bbranch-stale-{{feature}}-{{}}",
            "bbranch-stale-{{feature}}-{{01}}",
            "bbranch-stale-{{feature}}-{{x}}",
            "bbranch-stale-{{feature}}-{{-1}}",
            "bbranch-stale-{{}}-{{1}}",
            "bbranch-stale-feature-1",
            "prefix-bbranch-stale-{{feature}}-{{1}}",
            "bbranch-stale-{{feature}}-{{1}}-suffix",
            "merge-base-master-3",
        ],
    )
    def test_non_matching_names(self, name):
        assert parse_stale_parent_tag(name) is None

    def test_rejects_negative_sequence(self):
        with pytest.raises(ValueError):
            make_stale_parent_tag("feature", -1)

    def test_rejects_delimiter_in_branch_name(self):
        with pytest.raises(InvalidBranchNameError):
            make_stale_parent_tag("bad}}name", 0)
        with pytest.raises(InvalidBranchNameError):
            make_stale_parent_tag("bad{{name", 0)


class TestMergeBaseTag:
    def test_format(self):
        assert make_merge_base_tag(1) == "merge-base-master-1"
        assert parse_merge_base_tag("merge-base-master-42") == MergeBaseMarker(42)

    def test_sequence_starts_at_one(self):
        with pytest.raises(ValueError):
            make_merge_base_tag(0)
        assert parse_merge_base_tag("merge-base-master-0") is None

    @pytest.mark.parametrize(
        "name", ["merge-base-master-", "merge-base-master-01", "merge-base-master-1a", "merge-base-main-1"]
    )
    def test_non_matching_names(self, name):
        assert parse_merge_base_tag(name) is None


class TestEvolveTag:
    def test_format(self):
        assert make_evolve_tag(0, EvolveScope.FULL) == "bbranch-evolve-{{full}}-{{0}}"
        assert make_evolve_tag(3, "directs") == "bbranch-evolve-{{directs}}-{{3}}"

    def test_decode(self):
        assert parse_evolve_tag("bbranch-evolve-{{self}}-{{2}}") == EvolveMarker(EvolveScope.SELF, 2)

    def test_unknown_scope_is_no_match(self):
        assert parse_evolve_tag("bbranch-evolve-{{everything}}-{{2}}") is None

    def test_home_marker_is_not_a_step(self):
        assert parse_evolve_tag("bbranch-evolve-home") is None

    def test_invalid_scope_on_encode(self):
        with pytest.raises(ValueError):
            make_evolve_tag(0, "everything")


class TestSplitNames:
    def test_split_tag(self):
        tag = make_split_branch_tag("big-change")
        assert tag == "bbranch-split-{{big-change}}"
        assert parse_split_branch_tag(tag) == "big-change"
        assert is_split_branch_tag(tag)
        assert not is_split_branch_tag("bbranch-stale-{{big-change}}-{{0}}")

    def test_split_root_branch(self):
        name = make_split_root_branch_name("big-change")
        assert name == "split-root--big-change"
        assert parse_split_root_branch_name(name) == "big-change"
        assert parse_split_root_branch_name("big-change") is None


class TestValidateBranchName:
    def test_accepts_ordinary_names(self):
        assert validate_branch_name("feature/a-b_c.1") == "feature/a-b_c.1"

    @pytest.mark.parametrize("name", ["", "   ", "x{{y", "x}}y"])
    def test_rejects(self, name):
        with pytest.raises(InvalidBranchNameError):
            validate_branch_name(name)
