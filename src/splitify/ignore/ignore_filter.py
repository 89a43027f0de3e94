"""
Ignore-pattern filtering for splitify.

Files matching these patterns are removed from the change set before the
grouping engine sees them: they are neither sent to the model nor shown
to the user. Patterns come from a ``.splitifyignore`` file at the
repository root followed by the ``ignore_patterns`` configuration setting,
and use gitignore syntax (matched with :mod:`pathspec`), so later patterns
override earlier ones and ``!pattern`` re-includes a file.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional

from pathspec import PathSpec
from pathspec.patterns.gitwildmatch import GitWildMatchPattern


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


IGNORE_FILE_NAME = ".splitifyignore"


def clean_patterns(lines: Iterable[str]) -> List[str]:
    """Trim patterns and drop blank lines and ``#`` comments."""
    patterns = []
    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        patterns.append(stripped)
    return patterns


class IgnoreFilter:
    """Decide whether a changed file is excluded from analysis."""

    def __init__(self, file_patterns: Iterable[str], config_patterns: Iterable[str]) -> None:
        self.patterns = clean_patterns(list(file_patterns) + list(config_patterns))
        self._spec = PathSpec.from_lines(GitWildMatchPattern, self.patterns)

    def should_exclude(self, path: str) -> bool:
        """Return True if ``path`` (repository-relative) must be left out."""
        if not self.patterns:
            return False
        return self._spec.match_file(path.replace("\\", "/"))

    @classmethod
    def load(cls, repo_root: Path, config_patterns: Optional[Iterable[str]] = None) -> "IgnoreFilter":
        """Build a filter from the repository's ignore file and configured patterns.

        A missing ignore file contributes no patterns.
        """
        ignore_path = Path(repo_root) / IGNORE_FILE_NAME
        file_patterns: List[str] = []
        if ignore_path.is_file():
            try:
                file_patterns = ignore_path.read_text(encoding="utf-8").splitlines()
            except OSError as exc:
                logger.warning("Could not read %s: %s", ignore_path, exc)
        ignore_filter = cls(file_patterns, config_patterns or [])
        logger.debug("Loaded %d ignore pattern(s)", len(ignore_filter.patterns))
        return ignore_filter
