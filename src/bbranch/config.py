"""
Settings loading: process environment, repository env file, defaults.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import dotenv_values, set_key, unset_key

from .git_manager import GitManager
from .models import ConfigurationError


logger = logging.getLogger(__name__)

ENV_FILE_NAME = "bbranch.env"

KEY_TRUNK = "BBRANCH_TRUNK"
KEY_REMOTE = "BBRANCH_REMOTE"
KEY_MAX_WORKERS = "BBRANCH_MAX_WORKERS"
KEY_MAX_PARENT_DEPTH = "BBRANCH_MAX_PARENT_DEPTH"
KEY_LOG = "BBRANCH_LOG"

DEFAULTS: Dict[str, Optional[str]] = {
    KEY_TRUNK: None,
    KEY_REMOTE: "origin",
    KEY_MAX_WORKERS: "8",
    KEY_MAX_PARENT_DEPTH: "500",
    KEY_LOG: None,
}

TRUNK_CANDIDATES = ("main", "master")


@dataclass
class Settings:
    """Resolved settings for one repository."""

    trunk: str
    remote: str = "origin"
    max_workers: int = 8
    max_parent_depth: int = 500


def env_file_path(git_manager: GitManager) -> Path:
    return git_manager.git_dir / ENV_FILE_NAME


def read_env_file(path: Path) -> Dict[str, str]:
    """Read ``KEY=VALUE`` pairs; keys without a value are ignored."""
    if not path.exists():
        return {}
    return {key: value for key, value in dotenv_values(path).items() if value is not None}


def write_env_value(path: Path, key: str, value: str) -> None:
    """Set (or, for an empty value, unset) a key in the env file."""
    if key not in DEFAULTS:
        raise ConfigurationError(f"Unknown configuration key: {key}")
    if value:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        set_key(str(path), key, value, quote_mode="never")
    elif key in read_env_file(path):
        unset_key(str(path), key)
    logger.info(f"Updated {key} in {path}")


def merged_values(
    git_manager: GitManager, environ: Optional[Mapping[str, str]] = None
) -> List[Tuple[str, Optional[str], str]]:
    """Return (key, value, source) for every known key, source being env, file or default."""
    env = os.environ if environ is None else environ
    file_values = read_env_file(env_file_path(git_manager))
    rows: List[Tuple[str, Optional[str], str]] = []
    for key, default in DEFAULTS.items():
        if env.get(key):
            rows.append((key, env[key], "env"))
        elif file_values.get(key):
            rows.append((key, file_values[key], "file"))
        else:
            rows.append((key, default, "default"))
    return rows


def _positive_int(key: str, raw: Optional[str]) -> int:
    try:
        value = int(raw or "")
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < 1:
        raise ConfigurationError(f"{key} must be >= 1, got {value}")
    return value


def select_trunk(git_manager: GitManager, configured: Optional[str]) -> str:
    """Pick the trunk branch: the configured name, else whichever of main/master exists."""
    if configured:
        return configured
    present = [name for name in TRUNK_CANDIDATES if git_manager.branch_exists(name)]
    if len(present) == 1:
        logger.debug(f"Detected trunk branch: {present[0]}")
        return present[0]
    if present:
        raise ConfigurationError(
            f"Both {' and '.join(present)} exist; set {KEY_TRUNK} to choose the trunk branch"
        )
    raise ConfigurationError(
        f"Neither {' nor '.join(TRUNK_CANDIDATES)} exists; set {KEY_TRUNK} to name the trunk branch"
    )


def load_settings(
    git_manager: GitManager, environ: Optional[Mapping[str, str]] = None
) -> Settings:
    """Load settings with precedence env > repository env file > defaults."""
    values = {key: value for key, value, _ in merged_values(git_manager, environ)}
    settings = Settings(
        trunk=select_trunk(git_manager, values[KEY_TRUNK]),
        remote=values[KEY_REMOTE] or "origin",
        max_workers=_positive_int(KEY_MAX_WORKERS, values[KEY_MAX_WORKERS]),
        max_parent_depth=_positive_int(KEY_MAX_PARENT_DEPTH, values[KEY_MAX_PARENT_DEPTH]),
    )
    logger.debug(f"Loaded settings: {settings}")
    return settings
