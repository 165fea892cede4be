"""
Key-value storage for markers.

Resolvers, the staleness manager and the evolve queue only talk to a
``MarkerStore``; ``TagMarkerStore`` is the implementation over git tags.
"""

from __future__ import annotations

import fnmatch
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from .git_manager import GitManager
from .models import MarkerCollisionError


logger = logging.getLogger(__name__)


class MarkerStore(ABC):
    """Abstract interface for the persisted marker namespace."""

    @abstractmethod
    def list(self, pattern: Optional[str] = None) -> List[str]:
        """
        List marker names.

        Args:
            pattern: Optional glob; names are returned unsorted when omitted

        Returns:
            Marker names matching the pattern
        """
        pass

    @abstractmethod
    def create(self, name: str, target: str, message: Optional[str] = None) -> None:
        """
        Create a marker pointing at a commit.

        Args:
            name: Marker name
            target: Commit id (or any ref expression the backend resolves)
            message: Optional payload stored with the marker

        Raises:
            MarkerCollisionError: If the name is already taken
        """
        pass

    @abstractmethod
    def delete(self, name: str) -> None:
        """Delete a marker; deleting a missing marker is a no-op."""
        pass

    @abstractmethod
    def resolve(self, name: str) -> Optional[str]:
        """Return the commit a marker points at, or None if it does not exist."""
        pass

    @abstractmethod
    def message(self, name: str) -> Optional[str]:
        """Return the payload stored with a marker, if any."""
        pass

    @abstractmethod
    def points_at(self, commit: str) -> List[str]:
        """Return every marker name whose target is the given commit."""
        pass

    def exists(self, name: str) -> bool:
        return self.resolve(name) is not None


class TagMarkerStore(MarkerStore):
    """Marker store backed by git tags.

    Markers without a message are lightweight tags; markers with a message are
    annotated tags whose message is the payload.
    """

    def __init__(self, git_manager: GitManager) -> None:
        self.git = git_manager

    def list(self, pattern: Optional[str] = None) -> List[str]:
        names = self.git.list_tags(pattern)
        # `git tag --list` globs treat '[' specially; re-check so results are exact
        if pattern:
            names = [n for n in names if fnmatch.fnmatchcase(n, pattern)]
        return names

    def create(self, name: str, target: str, message: Optional[str] = None) -> None:
        if self.git.tag_exists(name):
            raise MarkerCollisionError(f"Marker '{name}' already exists")
        self.git.create_tag(name, target, message)
        logger.info(f"Created marker {name} at {target[:12]}")

    def delete(self, name: str) -> None:
        if not self.git.tag_exists(name):
            logger.debug(f"Marker {name} already gone")
            return
        self.git.delete_tag(name)
        logger.info(f"Deleted marker {name}")

    def resolve(self, name: str) -> Optional[str]:
        return self.git.tag_commit(name)

    def message(self, name: str) -> Optional[str]:
        return self.git.tag_message(name)

    def points_at(self, commit: str) -> List[str]:
        return self.git.tags_pointing_at(commit)
