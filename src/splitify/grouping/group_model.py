"""
Data models for commit grouping.

A :class:`CommitGroup` is a proposed or user-defined atomic commit: a
subset of the change set plus a commit message. Groups hold references
to the :class:`~splitify.vcs.git_client.FileChange` objects of the change
set; moving a file between groups relocates the reference, it never
copies the change.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Union

from splitify.vcs.git_client import FileChange


class GroupStatus(str, enum.Enum):
    """Lifecycle state of a commit group."""

    PENDING = "pending"
    COMMITTED = "committed"
    ERROR = "error"


class HookStrategy(str, enum.Enum):
    """How pre-commit hooks run when several groups are committed at once.

    ``ONCE`` runs the hook a single time over the union of all files before
    any commit, ``PER_GROUP`` lets every commit run it, and ``SKIP``
    commits without hooks.
    """

    ONCE = "once"
    PER_GROUP = "per_group"
    SKIP = "skip"


@dataclass
class CommitGroup:
    """Representation of a grouped commit.

    Attributes
    ----------
    id : str
        Identifier, unique and stable for the lifetime of the group.
    name : str
        Short slug, e.g. ``"auth-refactor"``.
    message : str
        Commit message.
    files : List[FileChange]
        Changes in the group, unique by path, in arrival order.
    reasoning : str
        Why these files belong together.
    status : GroupStatus
        ``PENDING`` until committed; ``ERROR`` after a failed commit.
    """

    id: str
    name: str
    message: str
    files: List[FileChange] = field(default_factory=list)
    reasoning: str = ""
    status: GroupStatus = GroupStatus.PENDING

    @property
    def file_paths(self) -> List[str]:
        return [f.path for f in self.files]

    def has_file(self, path: str) -> bool:
        return any(f.path == path for f in self.files)


@dataclass
class CommitAllResult:
    """Tallies of a batch commit."""

    success: int = 0
    failed: int = 0
    cancelled: int = 0


@dataclass
class GroupItem:
    """A listed group as presented to the user, e.g. one row of a listing."""

    group: CommitGroup
    index: int = 0


GroupRef = Union[None, str, CommitGroup, GroupItem]


def extract_group_id(ref: GroupRef) -> Optional[str]:
    """Return the group id a command argument refers to, if any.

    Commands may receive a bare id, the group itself, or a listing item
    wrapping it; anything else refers to no group.
    """
    if isinstance(ref, str):
        return ref or None
    if isinstance(ref, CommitGroup):
        return ref.id
    if isinstance(ref, GroupItem):
        return ref.group.id
    return None
