"""
Grouping of changes into commits.

This package holds the partition model (:mod:`splitify.grouping.group_model`),
the path normalizer used to match suggested paths, and the
:class:`GroupingEngine` that builds, edits and commits the groups.
"""

from .group_model import CommitAllResult, CommitGroup, GroupStatus, HookStrategy  # noqa: F401
from .engine import GroupingEngine  # noqa: F401
