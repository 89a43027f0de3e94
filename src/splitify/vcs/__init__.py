"""
Version control system (VCS) integration.

This package contains the Git client used as the diff provider of the
grouping engine. It exposes methods for detecting the repository root,
listing local changes with their diffs, reading commit history, running
the pre-commit hook, staging and committing.
"""

from .git_client import ChangesSummary, FileChange, GitClient, GitError  # noqa: F401
