"""
Git client implementation for splitify.

This module is the diff provider of the grouping engine: it lists the
uncommitted changes of the working tree together with their diffs, reads
recent commit subjects for style inference, and stages and commits the
files of a group. All subprocess calls go through :meth:`GitClient._run`
so that unit tests can mock them easily.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple


logger = logging.getLogger(__name__)
# Attach a null handler to avoid logging errors when the root logger is not
# configured. Logs will propagate to the root when configured by the CLI.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


# Porcelain status letters mapped to FileChange statuses. Copies are
# treated as additions of the new path.
_STATUS_NAMES = {
    "A": "added",
    "C": "added",
    "D": "deleted",
    "M": "modified",
    "R": "renamed",
    "T": "modified",
    "U": "modified",
}


@dataclass
class FileChange:
    """A single file's state in the working tree.

    Attributes
    ----------
    path : str
        Repository-relative path, in canonical form.
    status : str
        One of ``added``, ``modified``, ``deleted``, ``renamed`` or
        ``untracked``.
    diff : str
        Unified diff of the change; empty for untracked files.
    additions, deletions : int
        Number of added and removed lines in ``diff``.
    original_path : str, optional
        The path before the rename; only set when ``status`` is ``renamed``.
    """

    path: str
    status: str
    diff: str = ""
    additions: int = 0
    deletions: int = 0
    original_path: Optional[str] = None


@dataclass
class ChangesSummary:
    """All uncommitted changes of a working tree, split by origin."""

    all: List[FileChange] = field(default_factory=list)
    staged: List[FileChange] = field(default_factory=list)
    unstaged: List[FileChange] = field(default_factory=list)
    untracked: List[FileChange] = field(default_factory=list)

    @property
    def total_files(self) -> int:
        return len(self.all)


class GitError(Exception):
    """Raised when a Git command fails."""

    pass


def count_diff_lines(diff: str) -> Tuple[int, int]:
    """Return the number of added and deleted lines in a unified diff."""
    additions = 0
    deletions = 0
    for line in diff.splitlines():
        if line.startswith("+++") or line.startswith("---"):
            continue
        if line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return additions, deletions


class GitClient:
    """Client for interacting with a Git repository."""

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = repo_root

    # ------------------------------------------------------------------
    # Static helpers
    # ------------------------------------------------------------------
    @staticmethod
    def is_repo(path: Path) -> bool:
        """Return True if the given path is the root of a Git repository."""
        return (path / ".git").exists()

    @staticmethod
    def find_repo_root(start: Path) -> Optional[Path]:
        """Find the root of the Git repository starting from ``start``.

        Walk upwards until a ``.git`` directory (or worktree file) is found
        or the filesystem root is reached.
        """
        current = start.resolve()
        while True:
            if (current / ".git").exists():
                return current
            if current.parent == current:
                # reached filesystem root
                return None
            current = current.parent

    # ------------------------------------------------------------------
    # Basic Git commands
    # ------------------------------------------------------------------
    def _run(self, args: List[str], check: bool = True) -> subprocess.CompletedProcess:
        """Run a Git command in the repository root.

        Raises
        ------
        GitError
            If the command exits with a non-zero status when ``check`` is True.
        """
        full_cmd = ["git"] + args
        logger.debug("Executing Git command: %s", " ".join(full_cmd))
        try:
            result = subprocess.run(
                full_cmd,
                cwd=self.repo_root,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding='utf-8',
                errors='replace',  # Replace invalid characters instead of failing
            )
        except UnicodeDecodeError as e:
            logger.error("Unicode decode error in Git output: %s", e)
            raise GitError(f"Failed to decode Git output: {e}") from e

        if check and result.returncode != 0:
            logger.error(
                "Git command failed: %s\nSTDOUT: %s\nSTDERR: %s",
                " ".join(full_cmd),
                result.stdout,
                result.stderr,
            )
            raise GitError(result.stderr.strip() or result.stdout.strip())
        return result

    def _has_head(self) -> bool:
        """Return True if the current branch has at least one commit."""
        result = self._run(["rev-parse", "--verify", "-q", "HEAD"], check=False)
        return result.returncode == 0

    # ------------------------------------------------------------------
    # Status and change detection
    # ------------------------------------------------------------------
    def _parse_status(self, output: str) -> List[Tuple[str, str, str, Optional[str]]]:
        """Split ``git status --porcelain -z`` output into entries.

        Each entry is ``(index_status, worktree_status, path, original_path)``.
        """
        entries = []
        parts = output.split("\0")
        i = 0
        while i < len(parts):
            item = parts[i]
            i += 1
            # Each record is "XY path"; anything shorter is padding
            if len(item) < 4:
                continue
            x, y, path = item[0], item[1], item[3:]
            original = None
            if x in ("R", "C"):
                # Renames and copies carry the source path as the next record
                original = parts[i] if i < len(parts) else None
                i += 1
            entries.append((x, y, path, original))
        return entries

    def _file_diff(self, args: List[str]) -> str:
        try:
            return self._run(["diff"] + args, check=True).stdout
        except GitError as exc:
            logger.warning("Could not read diff for %s: %s", args[-1], exc)
            return ""

    def get_all_changes(self) -> ChangesSummary:
        """Get every uncommitted change in the working tree.

        Staged files are diffed against the index, unstaged ones against
        the working tree, and files with both kinds of change against
        ``HEAD``. Untracked files are reported with an empty diff.

        Returns
        -------
        ChangesSummary
            The changes, with ``all`` ordered staged, unstaged, untracked.

        Raises
        ------
        GitError
            If the git status command fails.
        """
        result = self._run(
            ["status", "--porcelain", "-z", "--untracked-files=all"], check=True
        )
        summary = ChangesSummary()

        for x, y, path, original in self._parse_status(result.stdout):
            if x == "?" and y == "?":
                summary.untracked.append(FileChange(path=path, status="untracked"))
                continue
            if x == "!":
                continue

            staged = x != " "
            if staged:
                status = _STATUS_NAMES.get(x, "modified")
                if x == "R" and original:
                    diff = self._file_diff(["--cached", "-M", "--", original, path])
                elif y != " ":
                    diff = self._file_diff(["HEAD", "--", path]) if self._has_head() \
                        else self._file_diff(["--cached", "--", path])
                else:
                    diff = self._file_diff(["--cached", "--", path])
            else:
                status = _STATUS_NAMES.get(y, "modified")
                diff = self._file_diff(["--", path])

            additions, deletions = count_diff_lines(diff)
            change = FileChange(
                path=path,
                status=status,
                diff=diff,
                additions=additions,
                deletions=deletions,
                original_path=original if status == "renamed" else None,
            )
            if staged:
                summary.staged.append(change)
            else:
                summary.unstaged.append(change)

        summary.all = summary.staged + summary.unstaged + summary.untracked
        logger.debug(
            "Found %d changed file(s): %d staged, %d unstaged, %d untracked",
            summary.total_files,
            len(summary.staged),
            len(summary.unstaged),
            len(summary.untracked),
        )
        return summary

    def get_recent_commit_messages(self, count: int) -> List[str]:
        """Return the subjects of the last ``count`` commits, newest first.

        Failures (no commits yet, git unavailable) are logged and yield an
        empty list; this method never raises.
        """
        if count <= 0:
            return []
        try:
            result = self._run(["log", "-n", str(count), "--format=%s"], check=True)
        except (GitError, OSError) as exc:
            logger.warning("Could not read recent commit messages: %s", exc)
            return []
        return [line for line in result.stdout.splitlines() if line.strip()]

    # ------------------------------------------------------------------
    # Staging, hooks, committing
    # ------------------------------------------------------------------
    def stage_files(self, paths: List[str]) -> None:
        """Stage the given paths, including deletions."""
        if not paths:
            return
        self._run(["add", "-A", "--"] + list(paths), check=True)

    def unstage_all(self) -> None:
        """Remove everything from the index, keeping the working tree."""
        if self._has_head():
            self._run(["reset", "-q"], check=True)
        else:
            # Nothing to reset to on an unborn branch
            self._run(["rm", "-r", "-q", "--cached", "--ignore-unmatch", "."], check=True)

    def run_pre_commit_hook(self) -> None:
        """Run the repository's pre-commit hook against the current index.

        Raises
        ------
        GitError
            If the hook rejects the staged changes. The message carries the
            hook's output.
        """
        self._run(["hook", "run", "--ignore-missing", "pre-commit"], check=True)

    def commit(self, message: str, no_verify: bool = False) -> str:
        """Create a commit with the staged changes and return its SHA.

        Multi-line commit messages are supported. If the commit fails,
        a GitError is raised.
        """
        args = ["commit", "-m", message]
        if no_verify:
            args.append("--no-verify")
        self._run(args, check=True)
        return self._run(["rev-parse", "HEAD"], check=True).stdout.strip()

    def stage_and_commit(self, paths: List[str], message: str, no_verify: bool = False) -> str:
        """Commit exactly ``paths`` with ``message``.

        The index is cleared first so that nothing staged earlier ends up in
        the commit.
        """
        self.unstage_all()
        self.stage_files(paths)
        return self.commit(message, no_verify=no_verify)
