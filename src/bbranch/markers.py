"""
Marker name codec.

Markers are git tags whose names carry structured fields. The names are a de
facto wire format shared with other tooling, so encoding and decoding must stay
exact inverses:

    bbranch-stale-{{<branch>}}-{{<seq>}}     stale parent, seq >= 0
    merge-base-master-<seq>                  historical trunk tip, seq >= 1
    bbranch-evolve-{{<scope>}}-{{<step>}}    evolve progress, step >= 0
    bbranch-evolve-home                      branch to restore after evolve
    bbranch-evolve-trunk                     trunk commit an evolve from the trunk targets
    bbranch-split-{{<branch>}}               split root tag
    split-root--<branch>                     split root branch name
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Union

from .models import EvolveScope, InvalidBranchNameError


DELIMITER_OPEN = "{{"
DELIMITER_CLOSE = "}}"

STALE_PREFIX = "bbranch-stale-"
MERGE_BASE_PREFIX = "merge-base-master-"
EVOLVE_PREFIX = "bbranch-evolve-"
EVOLVE_HOME_MARKER = "bbranch-evolve-home"
EVOLVE_TRUNK_MARKER = "bbranch-evolve-trunk"
SPLIT_PREFIX = "bbranch-split-"
SPLIT_ROOT_BRANCH_PREFIX = "split-root--"

# Glob patterns for `git tag --list`; decoding does the exact filtering
STALE_GLOB = f"{STALE_PREFIX}*"
MERGE_BASE_GLOB = f"{MERGE_BASE_PREFIX}*"
EVOLVE_GLOB = f"{EVOLVE_PREFIX}*"

_SEQ = r"(?:0|[1-9][0-9]*)"

_STALE_RE = re.compile(
    rf"^{re.escape(STALE_PREFIX)}\{{\{{(?P<branch>.+)\}}\}}-\{{\{{(?P<seq>{_SEQ})\}}\}}$"
)
_MERGE_BASE_RE = re.compile(rf"^{re.escape(MERGE_BASE_PREFIX)}(?P<seq>[1-9][0-9]*)$")
_EVOLVE_RE = re.compile(
    rf"^{re.escape(EVOLVE_PREFIX)}\{{\{{(?P<scope>[a-z]+)\}}\}}-\{{\{{(?P<step>{_SEQ})\}}\}}$"
)
_SPLIT_RE = re.compile(rf"^{re.escape(SPLIT_PREFIX)}\{{\{{(?P<branch>.+)\}}\}}$")
_SPLIT_ROOT_RE = re.compile(rf"^{re.escape(SPLIT_ROOT_BRANCH_PREFIX)}(?P<branch>.+)$")


@dataclass(frozen=True)
class StaleMarker:
    branch: str
    seq: int


@dataclass(frozen=True)
class MergeBaseMarker:
    seq: int


@dataclass(frozen=True)
class EvolveMarker:
    scope: EvolveScope
    step: int


def validate_branch_name(branch_name: str) -> str:
    """Reject names that cannot be embedded in a marker without ambiguity."""
    if not branch_name or not branch_name.strip():
        raise InvalidBranchNameError("Branch name cannot be empty")
    if DELIMITER_OPEN in branch_name or DELIMITER_CLOSE in branch_name:
        raise InvalidBranchNameError(
            f"Branch name '{branch_name}' contains a reserved marker delimiter "
            f"('{DELIMITER_OPEN}' or '{DELIMITER_CLOSE}')"
        )
    return branch_name


def _check_seq(value: int, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"Sequence number must be an integer >= {minimum}, got {value!r}")
    return value


def make_stale_parent_tag(branch_name: str, seq: int) -> str:
    """Encode a stale-parent marker name.

    Example:
        make_stale_parent_tag("feature", 1) -> "bbranch-stale-{{feature}}-{{1}}"
    """
    validate_branch_name(branch_name)
    _check_seq(seq, 0)
    return f"{STALE_PREFIX}{DELIMITER_OPEN}{branch_name}{DELIMITER_CLOSE}-{DELIMITER_OPEN}{seq}{DELIMITER_CLOSE}"


def parse_stale_parent_tag(tag: str) -> Optional[StaleMarker]:
    match = _STALE_RE.match(tag or "")
    if not match:
        return None
    return StaleMarker(branch=match.group("branch"), seq=int(match.group("seq")))


def make_merge_base_tag(seq: int) -> str:
    _check_seq(seq, 1)
    return f"{MERGE_BASE_PREFIX}{seq}"


def parse_merge_base_tag(tag: str) -> Optional[MergeBaseMarker]:
    match = _MERGE_BASE_RE.match(tag or "")
    if not match:
        return None
    return MergeBaseMarker(seq=int(match.group("seq")))


def make_evolve_tag(step: int, scope: Union[EvolveScope, str]) -> str:
    scope_value = EvolveScope(scope).value
    _check_seq(step, 0)
    return f"{EVOLVE_PREFIX}{DELIMITER_OPEN}{scope_value}{DELIMITER_CLOSE}-{DELIMITER_OPEN}{step}{DELIMITER_CLOSE}"


def parse_evolve_tag(tag: str) -> Optional[EvolveMarker]:
    match = _EVOLVE_RE.match(tag or "")
    if not match:
        return None
    try:
        scope = EvolveScope(match.group("scope"))
    except ValueError:
        return None
    return EvolveMarker(scope=scope, step=int(match.group("step")))


def make_split_branch_tag(branch_name: str) -> str:
    validate_branch_name(branch_name)
    return f"{SPLIT_PREFIX}{DELIMITER_OPEN}{branch_name}{DELIMITER_CLOSE}"


def parse_split_branch_tag(tag: str) -> Optional[str]:
    match = _SPLIT_RE.match(tag or "")
    return match.group("branch") if match else None


def is_split_branch_tag(tag: str) -> bool:
    return parse_split_branch_tag(tag) is not None


def make_split_root_branch_name(source_branch: str) -> str:
    validate_branch_name(source_branch)
    return f"{SPLIT_ROOT_BRANCH_PREFIX}{source_branch}"


def parse_split_root_branch_name(branch_name: str) -> Optional[str]:
    match = _SPLIT_ROOT_RE.match(branch_name or "")
    return match.group("branch") if match else None
