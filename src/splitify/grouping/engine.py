"""
The grouping engine.

:class:`GroupingEngine` owns the partition of one analysis session: the
list of commit groups and the pool of ungrouped files. It

* analyses the working tree: asks the diff provider for the changes,
  drops ignored files, asks the suggestion provider for groups and turns
  each suggestion into a :class:`CommitGroup` as soon as it has been
  parsed from the model's stream, then puts every file the model did not
  assign into a catch-all group;
* exposes the editing operations (move, remove, add, create, merge,
  message edit, discard, clear);
* commits one group or a batch of groups through the diff provider.

Every path of the analysed change set is in exactly one group or in the
ungrouped pool. Observers registered with :meth:`GroupingEngine.subscribe`
are called synchronously with the current group list after every
operation that changed it; they must not call back into the engine's
editing operations from inside the callback.

Collaborators are duck-typed:

diff provider
    ``get_all_changes()``, ``get_recent_commit_messages(count)``,
    ``stage_and_commit(paths, message, no_verify)``, ``stage_files(paths)``,
    ``unstage_all()``, ``run_pre_commit_hook()``
    (see :class:`splitify.vcs.git_client.GitClient`).
suggestion provider
    ``request_grouping(files, history, cancellation)`` returning an
    iterable of text chunks and ``request_grouping_batch(files, history)``
    returning the whole text
    (see :class:`splitify.llm.grouping_advisor.GroupingAdvisor`).
ignore filter
    ``should_exclude(path)``; optional
    (see :class:`splitify.ignore.ignore_filter.IgnoreFilter`).
cancellation
    anything with ``is_set()``, normally a :class:`threading.Event`.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from splitify.grouping.group_model import (
    CommitAllResult,
    CommitGroup,
    GroupStatus,
    HookStrategy,
)
from splitify.grouping.path_normalizer import normalize_path
from splitify.llm.suggestion_parser import (
    GroupingSuggestion,
    StreamingSuggestionParser,
    parse_response,
)
from splitify.vcs.git_client import FileChange


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


CATCH_ALL_NAME = "unassigned-changes"
CATCH_ALL_MESSAGE = "chore: commit remaining changes"
CATCH_ALL_REASONING = (
    "These files were not assigned to any group by the AI and were "
    "collected here so that no change is left out."
)
MANUAL_REASONING = "manually created"
DEFAULT_HISTORY_COUNT = 20

GroupsListener = Callable[[List[CommitGroup]], None]
ProgressCallback = Callable[[int, int, CommitGroup], None]


class GroupingError(Exception):
    """Base class for errors raised by the grouping engine."""


class NoChangesError(GroupingError):
    """Raised when there is nothing to analyse after ignore filtering."""


class GroupNotFoundError(GroupingError):
    """Raised when an operation refers to an unknown group id."""


class CommitError(GroupingError):
    """Raised when committing a single group fails.

    The message names the group and ends with the underlying error; the
    original exception is chained as ``__cause__``.
    """


class PreCommitHookError(GroupingError):
    """Raised when the single pre-commit hook run of a batch fails.

    No group has been committed and the index has been cleared.
    """


def _is_cancelled(cancellation: Optional[Any]) -> bool:
    return cancellation is not None and cancellation.is_set()


class GroupingEngine:
    """Analyse changes into commit groups and manage them until committed."""

    def __init__(
        self,
        diff_provider: Any,
        suggestion_provider: Any,
        ignore_filter: Optional[Any] = None,
        history_count: int = DEFAULT_HISTORY_COUNT,
        streaming: bool = True,
        hook_strategy: Union[HookStrategy, str] = HookStrategy.PER_GROUP,
    ) -> None:
        self.diff_provider = diff_provider
        self.suggestion_provider = suggestion_provider
        self.ignore_filter = ignore_filter
        self.history_count = history_count
        self.streaming = streaming
        self.hook_strategy = HookStrategy(hook_strategy)
        self._groups: List[CommitGroup] = []
        self._ungrouped: List[FileChange] = []
        self._listeners: List[GroupsListener] = []
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    # State and observers
    # ------------------------------------------------------------------
    @property
    def groups(self) -> List[CommitGroup]:
        """Snapshot of the current groups, in display order."""
        return list(self._groups)

    @property
    def ungrouped(self) -> List[FileChange]:
        """Snapshot of the files removed from groups and not yet reassigned."""
        return list(self._ungrouped)

    def get_group(self, group_id: str) -> Optional[CommitGroup]:
        for group in self._groups:
            if group.id == group_id:
                return group
        return None

    def pending_groups(self) -> List[CommitGroup]:
        return [g for g in self._groups if g.status is GroupStatus.PENDING]

    def subscribe(self, listener: GroupsListener) -> Callable[[], None]:
        """Register ``listener`` and return a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        snapshot = self.groups
        for listener in list(self._listeners):
            listener(snapshot)

    def _next_id(self) -> str:
        return f"group-{next(self._ids)}"

    def _drop_if_empty(self, group: CommitGroup) -> None:
        if not group.files and group in self._groups:
            logger.debug("Removing emptied group %s", group.id)
            self._groups.remove(group)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------
    def analyze(self, cancellation: Optional[Any] = None) -> List[CommitGroup]:
        """Analyse the working tree and build the commit groups.

        Groups are appended and announced one at a time, in the order the
        model proposes them, followed by the catch-all group when some
        files were left out. Cancelling stops reading the model's output
        and keeps the groups parsed so far; it is not an error.

        Raises
        ------
        NoChangesError
            If no change is left after ignore filtering.
        ParseError
            If the model's answer contains no usable group and cannot be
            parsed as a whole either.
        LLMError, GitError
            If a collaborator fails. The partition is left empty.
        """
        self._groups = []
        self._ungrouped = []
        self._notify()

        files = self._collect_changes()
        if not files:
            raise NoChangesError("No changes to analyze")

        history = self._fetch_history()
        by_key: Dict[str, FileChange] = {normalize_path(f.path): f for f in files}
        claimed: Set[str] = set()

        try:
            if self.streaming:
                self._read_stream(files, history, cancellation, by_key, claimed)
            else:
                self._read_batch(files, history, cancellation, by_key, claimed)
        except Exception:
            self._groups = []
            self._notify()
            raise

        self._reconcile(files, claimed)
        logger.info("Analysis produced %d group(s) for %d file(s)", len(self._groups), len(files))
        return self.groups

    def _collect_changes(self) -> List[FileChange]:
        summary = self.diff_provider.get_all_changes()
        files = list(summary.all)
        if self.ignore_filter is None:
            return files
        kept = [f for f in files if not self.ignore_filter.should_exclude(f.path)]
        if len(kept) != len(files):
            logger.info("Ignoring %d file(s) matching ignore patterns", len(files) - len(kept))
        return kept

    def _fetch_history(self) -> List[str]:
        try:
            return list(self.diff_provider.get_recent_commit_messages(self.history_count))
        except Exception as exc:
            logger.warning("Could not read commit history, continuing without it: %s", exc)
            return []

    def _read_stream(
        self,
        files: List[FileChange],
        history: List[str],
        cancellation: Optional[Any],
        by_key: Dict[str, FileChange],
        claimed: Set[str],
    ) -> None:
        chunks = self.suggestion_provider.request_grouping(files, history, cancellation)
        parser = StreamingSuggestionParser()
        cancelled = False
        try:
            for chunk in chunks:
                if _is_cancelled(cancellation):
                    cancelled = True
                    break
                for suggestion in parser.feed(chunk):
                    self._add_suggested_group(suggestion, by_key, claimed)
        finally:
            close = getattr(chunks, "close", None)
            if close is not None:
                close()

        if cancelled or _is_cancelled(cancellation):
            logger.info("Analysis cancelled after %d group(s)", len(self._groups))
            return
        for suggestion in parser.finish():
            self._add_suggested_group(suggestion, by_key, claimed)

    def _read_batch(
        self,
        files: List[FileChange],
        history: List[str],
        cancellation: Optional[Any],
        by_key: Dict[str, FileChange],
        claimed: Set[str],
    ) -> None:
        response = self.suggestion_provider.request_grouping_batch(files, history)
        if _is_cancelled(cancellation):
            logger.info("Analysis cancelled before any group was created")
            return
        for suggestion in parse_response(response):
            self._add_suggested_group(suggestion, by_key, claimed)

    def _add_suggested_group(
        self,
        suggestion: GroupingSuggestion,
        by_key: Dict[str, FileChange],
        claimed: Set[str],
    ) -> None:
        """Resolve a suggestion's paths and append it as a pending group.

        Unknown paths are dropped; a path already claimed by an earlier
        group stays there. A suggestion left without files is skipped.
        """
        resolved: List[FileChange] = []
        for raw_path in suggestion.files:
            key = normalize_path(raw_path)
            change = by_key.get(key)
            if change is None:
                logger.debug("Group '%s' names unknown path %r", suggestion.name, raw_path)
                continue
            if key in claimed:
                logger.debug("Path %r already assigned; not adding to '%s'", raw_path, suggestion.name)
                continue
            claimed.add(key)
            resolved.append(change)

        if not resolved:
            logger.debug("Skipping group '%s' with no known files", suggestion.name)
            return

        group = CommitGroup(
            id=self._next_id(),
            name=suggestion.name,
            message=suggestion.message,
            files=resolved,
            reasoning=suggestion.reasoning,
        )
        self._groups.append(group)
        logger.debug("Created group %s '%s' with %d file(s)", group.id, group.name, len(resolved))
        self._notify()

    def _reconcile(self, files: List[FileChange], claimed: Set[str]) -> None:
        missed = [f for f in files if normalize_path(f.path) not in claimed]
        if not missed:
            return
        logger.info("%d file(s) were not assigned by the model", len(missed))
        group = CommitGroup(
            id=self._next_id(),
            name=CATCH_ALL_NAME,
            message=CATCH_ALL_MESSAGE,
            files=missed,
            reasoning=CATCH_ALL_REASONING,
        )
        self._groups.append(group)
        self._notify()

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------
    def move_file_to_group(self, path: str, from_group_id: str, to_group_id: str) -> bool:
        """Move the change at ``path`` from one group to another.

        Returns False, without notifying, when either group is unknown or
        the source does not contain the file. Moving within the same group
        changes nothing but still succeeds.
        """
        source = self.get_group(from_group_id)
        target = self.get_group(to_group_id)
        if source is None or target is None:
            return False
        index = next((i for i, f in enumerate(source.files) if f.path == path), None)
        if index is None:
            return False

        if source is not target:
            target.files.append(source.files.pop(index))
            self._drop_if_empty(source)
        self._notify()
        return True

    def remove_file_from_group(self, path: str, group_id: str) -> bool:
        """Move the change at ``path`` from a group to the ungrouped pool."""
        group = self.get_group(group_id)
        if group is None:
            return False
        index = next((i for i, f in enumerate(group.files) if f.path == path), None)
        if index is None:
            return False

        self._ungrouped.append(group.files.pop(index))
        self._drop_if_empty(group)
        self._notify()
        return True

    def add_file_to_group(self, path: str, group_id: str) -> bool:
        """Move the change at ``path`` from the ungrouped pool into a group."""
        group = self.get_group(group_id)
        if group is None:
            return False
        index = next((i for i, f in enumerate(self._ungrouped) if f.path == path), None)
        if index is None:
            return False

        group.files.append(self._ungrouped.pop(index))
        self._notify()
        return True

    def create_group(self, name: str, message: str) -> CommitGroup:
        """Append a new, empty, pending group."""
        group = CommitGroup(
            id=self._next_id(),
            name=name,
            message=message,
            reasoning=MANUAL_REASONING,
        )
        self._groups.append(group)
        self._notify()
        return group

    def merge_groups(self, source_id: str, target_id: str) -> bool:
        """Move every file of the source group into the target and drop the source."""
        if source_id == target_id:
            return False
        source = self.get_group(source_id)
        target = self.get_group(target_id)
        if source is None or target is None:
            return False

        for change in source.files:
            if not target.has_file(change.path):
                target.files.append(change)
        self._groups.remove(source)
        self._notify()
        return True

    def update_group_message(self, group_id: str, message: str) -> bool:
        group = self.get_group(group_id)
        if group is None:
            return False
        group.message = message
        self._notify()
        return True

    def discard_group(self, group_id: str) -> bool:
        """Forget a group without touching the repository."""
        group = self.get_group(group_id)
        if group is None:
            return False
        self._groups.remove(group)
        self._notify()
        return True

    def clear_groups(self) -> None:
        self._groups = []
        self._ungrouped = []
        self._notify()

    # ------------------------------------------------------------------
    # Committing
    # ------------------------------------------------------------------
    @staticmethod
    def _commit_paths(groups: Iterable[CommitGroup]) -> List[str]:
        # A rename is only complete when its old path is committed too
        paths: List[str] = []
        seen: Set[str] = set()
        for group in groups:
            for change in group.files:
                for path in (change.original_path, change.path):
                    if path and path not in seen:
                        seen.add(path)
                        paths.append(path)
        return paths

    def _commit(self, group: CommitGroup, no_verify: bool) -> str:
        if group.status is GroupStatus.ERROR:
            group.status = GroupStatus.PENDING
        try:
            sha = self.diff_provider.stage_and_commit(
                self._commit_paths([group]), group.message, no_verify
            )
        except Exception as exc:
            logger.error("Commit of group %s '%s' failed: %s", group.id, group.name, exc)
            group.status = GroupStatus.ERROR
            self._notify()
            raise CommitError(f"Failed to commit group '{group.name}': {exc}") from exc

        logger.info("Committed group %s '%s' as %s", group.id, group.name, sha)
        group.status = GroupStatus.COMMITTED
        self._groups.remove(group)
        self._notify()
        return sha

    def commit_group(self, group_id: str, no_verify: bool = False) -> str:
        """Commit one group and return the commit id.

        A group in the error state is retried.

        Raises
        ------
        GroupNotFoundError
            If ``group_id`` is unknown.
        CommitError
            If the commit fails; the group stays listed with status ERROR.
        """
        group = self.get_group(group_id)
        if group is None:
            raise GroupNotFoundError(f"Group not found: {group_id}")
        return self._commit(group, no_verify)

    def _run_hooks_once(self, groups: List[CommitGroup]) -> None:
        paths = self._commit_paths(groups)
        logger.info("Running pre-commit hook once over %d path(s)", len(paths))
        try:
            self.diff_provider.stage_files(paths)
            self.diff_provider.run_pre_commit_hook()
        except Exception as exc:
            logger.error("Pre-commit hook failed, no group committed: %s", exc)
            raise PreCommitHookError(f"Pre-commit hook failed: {exc}") from exc
        finally:
            self.diff_provider.unstage_all()

    def commit_all(
        self,
        group_ids: Optional[Iterable[str]] = None,
        cancellation: Optional[Any] = None,
        on_progress: Optional[ProgressCallback] = None,
        hook_strategy: Optional[Union[HookStrategy, str]] = None,
    ) -> CommitAllResult:
        """Commit pending groups one after the other.

        Parameters
        ----------
        group_ids : iterable of str, optional
            Restrict the batch to these groups. Ids that are unknown or not
            pending are ignored; groups keep their display order.
        cancellation : threading.Event, optional
            Checked before each group; the remaining groups are counted as
            cancelled.
        on_progress : callable, optional
            Called as ``on_progress(committed, total, group)`` before each
            attempt.
        hook_strategy : HookStrategy or str, optional
            Overrides the engine's strategy for this batch.

        Returns
        -------
        CommitAllResult
            Success, failure and cancellation tallies. Failures of single
            groups are counted, not raised.

        Raises
        ------
        PreCommitHookError
            With ``HookStrategy.ONCE``, if the hook rejects the changes.
        """
        strategy = HookStrategy(hook_strategy) if hook_strategy is not None else self.hook_strategy
        targets = self.pending_groups()
        if group_ids is not None:
            wanted = set(group_ids)
            targets = [g for g in targets if g.id in wanted]

        result = CommitAllResult()
        total = len(targets)
        if not targets:
            return result
        if _is_cancelled(cancellation):
            result.cancelled = total
            return result

        if strategy is HookStrategy.ONCE:
            self._run_hooks_once(targets)
        no_verify = strategy is not HookStrategy.PER_GROUP

        for index, group in enumerate(targets):
            if _is_cancelled(cancellation):
                result.cancelled = total - index
                logger.info("Batch commit cancelled; %d group(s) left", result.cancelled)
                break
            if on_progress is not None:
                on_progress(result.success, total, group)
            try:
                self._commit(group, no_verify)
                result.success += 1
            except CommitError:
                result.failed += 1

        logger.info(
            "Batch commit finished: %d committed, %d failed, %d cancelled",
            result.success,
            result.failed,
            result.cancelled,
        )
        return result
