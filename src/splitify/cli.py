"""
Command line interface for splitify.

This module defines the ``main`` function used as the entry point of the
``splitify`` command. It is the composition root of the tool: it detects
the repository, loads the configuration, wires the Git client, ignore
filter and LLM advisor into a :class:`GroupingEngine`, runs the analysis
while printing each group as the model proposes it, and then either
commits everything (``--yes``) or opens an interactive review session in
which groups can be edited and committed one by one.
"""

from __future__ import annotations

import logging
import os
import signal
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import click

from splitify import __version__
from splitify.config.loader import ConfigError, load_config
from splitify.grouping.engine import (
    CommitError,
    GroupingEngine,
    GroupNotFoundError,
    NoChangesError,
    PreCommitHookError,
)
from splitify.grouping.group_model import (
    CommitGroup,
    GroupItem,
    GroupRef,
    GroupStatus,
    HookStrategy,
    extract_group_id,
)
from splitify.ignore.ignore_filter import IgnoreFilter
from splitify.llm.grouping_advisor import GroupingAdvisor
from splitify.llm.ollama_client import LLMError, OllamaClient
from splitify.llm.suggestion_parser import ParseError
from splitify.vcs.git_client import GitClient, GitError

# Module-level logger with a null handler; the CLI configures the root
# logger in ``main`` when messages should be shown.
logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------
EXIT_SUCCESS = 0
EXIT_GENERIC_ERROR = 1
EXIT_INVALID_USAGE = 2
EXIT_NO_REPO = 3
EXIT_NO_CHANGES = 4
EXIT_CONFIG_ERROR = 5
EXIT_VCS_FAILURE = 6
EXIT_LLM_FAILURE = 7
EXIT_NOTHING_COMMITTED = 8


# ---------------------------------------------------------------------------
# Progress and status display utilities
# ---------------------------------------------------------------------------

class ProgressIndicator:
    """Simple progress indicator for user feedback."""

    def __init__(self, message: str):
        self.message = message
        self.start_time = 0.0

    def __enter__(self):
        self.start_time = time.time()
        click.echo(f"⠋ {self.message}...", nl=False)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.time() - self.start_time
        if exc_type is None:
            click.echo(f"\r✓ {self.message} (took {elapsed:.1f}s)")
        else:
            click.echo(f"\r✗ {self.message} (failed after {elapsed:.1f}s)")
        return False


def print_step(step_num: int, total_steps: int, message: str):
    """Print a step indicator."""
    click.echo(f"\n{'='*60}")
    click.echo(f"Step {step_num}/{total_steps}: {message}")
    click.echo(f"{'='*60}")


def print_info(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}ℹ {message}")


def print_success(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}✓ {message}")


def print_warning(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}⚠ {message}")


def print_error(message: str, indent: int = 0):
    prefix = "  " * indent
    click.echo(f"{prefix}✗ {message}", err=True)


def plural(count: int, word: str) -> str:
    return f"{count} {word}{'s' if count != 1 else ''}"


def subject_line(message: str) -> str:
    """First line of a commit message, or an empty string."""
    return (message.splitlines() or [""])[0]


def non_empty(value: str) -> str:
    """``value_proc`` for prompts that must not be left blank."""
    value = value.strip()
    if not value:
        raise click.BadParameter("a value is required")
    return value


def print_group(group: CommitGroup, number: int, indent: int = 1):
    """Print one group: number, name, status, message subject and files."""
    prefix = "  " * indent
    status = "" if group.status is GroupStatus.PENDING else f" [{group.status.value}]"
    click.echo(
        f"{prefix}{number}. {click.style(group.name, fg='cyan', bold=True)}"
        f" ({plural(len(group.files), 'file')}){status}"
    )
    subject = subject_line(group.message)
    click.echo(f"{prefix}   💬 {subject}")
    for change in group.files:
        click.echo(f"{prefix}     • {change.path} ({change.status}, +{change.additions}/-{change.deletions})")


def print_groups(engine: GroupingEngine):
    groups = engine.groups
    click.echo(f"\n📦 Commit groups ({len(groups)}):")
    if not groups:
        click.echo("   (none)")
    for number, group in enumerate(groups, start=1):
        print_group(group, number)
    ungrouped = engine.ungrouped
    if ungrouped:
        click.echo(f"\n📂 Ungrouped files ({len(ungrouped)}):")
        for change in ungrouped:
            click.echo(f"     • {change.path}")


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

@contextmanager
def cancel_on_interrupt() -> Iterator[threading.Event]:
    """Turn the first Ctrl-C into a cancellation request.

    Yields the event handed to the engine. A second Ctrl-C aborts as usual.
    """
    event = threading.Event()

    def handler(signum, frame):
        if event.is_set():
            raise KeyboardInterrupt
        click.echo("\n⚠ Cancelling... (press Ctrl-C again to abort)")
        event.set()

    installed = False
    previous: Any = None
    try:
        previous = signal.signal(signal.SIGINT, handler)
        installed = True
    except ValueError:
        # signal handlers can only be installed from the main thread
        logger.debug("Ctrl-C cancellation unavailable outside the main thread")
    try:
        yield event
    finally:
        if installed:
            signal.signal(signal.SIGINT, previous if previous is not None else signal.default_int_handler)


def build_engine(repo_root: Path, config: Dict[str, Any], streaming: bool, hooks: str) -> GroupingEngine:
    """Create the collaborators from the configuration and inject them."""
    git_client = GitClient(repo_root)
    ignore_filter = IgnoreFilter.load(repo_root, config.get("ignore_patterns", []))
    ollama_client = OllamaClient(
        base_url=config["base_url"],
        port=config["port"],
        model=config["model"],
        request_timeout=float(config.get("request_timeout", 60)),
        max_tokens=config.get("max_tokens"),
    )
    return GroupingEngine(
        diff_provider=git_client,
        suggestion_provider=GroupingAdvisor(ollama_client),
        ignore_filter=ignore_filter,
        history_count=config.get("history_count", 20),
        streaming=streaming,
        hook_strategy=hooks,
    )


def run_analysis(engine: GroupingEngine) -> List[CommitGroup]:
    """Analyse the changes, printing every group as soon as it appears."""
    shown = 0

    def on_groups(groups: List[CommitGroup]) -> None:
        nonlocal shown
        # Only announce newly appended groups; resets shrink the list
        if len(groups) < shown:
            shown = 0
        for number in range(shown + 1, len(groups) + 1):
            print_group(groups[number - 1], number)
        shown = max(shown, len(groups))

    unsubscribe = engine.subscribe(on_groups)
    try:
        with cancel_on_interrupt() as cancellation:
            groups = engine.analyze(cancellation)
            if cancellation.is_set():
                print_warning("Analysis cancelled; keeping the groups found so far")
    finally:
        unsubscribe()
    return groups


def run_commit_all(
    engine: GroupingEngine,
    config: Dict[str, Any],
    hooks: str,
    group_ids: Optional[List[str]] = None,
) -> int:
    """Commit a batch of groups and report the outcome.

    Returns the number of groups that failed.
    """
    def on_progress(committed: int, total: int, group: CommitGroup) -> None:
        click.echo(f"   → ({committed + 1}/{total}) {subject_line(group.message)}")

    try:
        with cancel_on_interrupt() as cancellation:
            result = engine.commit_all(
                group_ids=group_ids,
                cancellation=cancellation,
                on_progress=on_progress,
                hook_strategy=hooks,
            )
    except PreCommitHookError as exc:
        print_error(f"Nothing committed: {exc}")
        return len(group_ids) if group_ids is not None else len(engine.pending_groups())

    attempted = result.success + result.failed + result.cancelled
    if result.cancelled:
        print_warning(f"Committed {result.success} of {plural(attempted, 'group')} (cancelled)")
    elif result.failed:
        print_warning(f"Committed {result.success} of {plural(attempted, 'group')}")
        for group in engine.groups:
            if group.status is GroupStatus.ERROR:
                print_error(f"Failed: {group.name}", indent=1)
    elif config.get("show_notifications", True):
        print_success(f"Committed {plural(result.success, 'group')}")
    return result.failed


# ---------------------------------------------------------------------------
# Interactive review
# ---------------------------------------------------------------------------

def resolve_group_ref(engine: GroupingEngine, text: str) -> GroupRef:
    """Interpret user input as a 1-based group number or a group id."""
    text = text.strip()
    if text.isdigit():
        groups = engine.groups
        index = int(text)
        if 1 <= index <= len(groups):
            return GroupItem(group=groups[index - 1], index=index)
        return None
    return text or None


def prompt_group(engine: GroupingEngine, label: str) -> Optional[CommitGroup]:
    raw = click.prompt(f"   {label} (number or id)", default="", show_default=False)
    group_id = extract_group_id(resolve_group_ref(engine, raw))
    group = engine.get_group(group_id) if group_id else None
    if group is None:
        print_warning("No such group")
    return group


def prompt_file(files: List[Any], label: str) -> Optional[str]:
    """Ask for a file by number within ``files`` or by path."""
    for number, change in enumerate(files, start=1):
        click.echo(f"     {number}. {change.path}")
    raw = click.prompt(f"   {label} (number or path)", default="", show_default=False).strip()
    if raw.isdigit() and 1 <= int(raw) <= len(files):
        return files[int(raw) - 1].path
    if any(change.path == raw for change in files):
        return raw
    print_warning("No such file")
    return None


def edit_message(message: str) -> Optional[str]:
    """Let the user edit a commit message; return None to keep it."""
    editor = os.environ.get("EDITOR")
    if editor:
        print_info("Opening editor...")
        edited = click.edit(message, editor=editor, extension=".txt")
        if edited is None or not edited.strip():
            return None
        return edited.strip()

    click.echo("\n   💡 No EDITOR environment variable set.")
    click.echo("   Enter the new commit message below.")
    click.echo("   End with a line containing only a period (.)")
    lines: List[str] = []
    while True:
        line = click.prompt("   ", default="", show_default=False)
        if line.strip() == ".":
            break
        lines.append(line)
    edited = "\n".join(lines).strip()
    return edited or None


ACTIONS = {
    "c": "commit a group",
    "a": "commit all",
    "s": "commit selected",
    "m": "move a file",
    "r": "remove a file",
    "f": "add an ungrouped file",
    "n": "new group",
    "g": "merge groups",
    "e": "edit message",
    "d": "discard a group",
    "z": "re-analyze",
    "q": "quit",
}


def interactive_session(engine: GroupingEngine, config: Dict[str, Any], hooks: str) -> int:
    """Review loop over the engine's operations. Returns the number of commits made."""
    committed = 0
    while True:
        if not engine.groups and not engine.ungrouped:
            print_success("No groups left")
            return committed
        print_groups(engine)
        click.echo("\n   " + " | ".join(f"{k} = {v}" for k, v in ACTIONS.items()))
        choice = click.prompt(
            "   Choose action",
            type=click.Choice(list(ACTIONS), case_sensitive=False),
            default="q",
            show_choices=False,
        ).lower()

        if choice == "q":
            return committed

        if choice == "c":
            group = prompt_group(engine, "Group to commit")
            if group is None:
                continue
            try:
                engine.commit_group(group.id, no_verify=hooks == HookStrategy.SKIP.value)
                committed += 1
                if config.get("show_notifications", True):
                    print_success(f"Committed \"{subject_line(group.message)}\"")
            except (CommitError, GroupNotFoundError) as exc:
                print_error(str(exc))

        elif choice in ("a", "s"):
            group_ids = None
            if choice == "s":
                raw = click.prompt("   Groups to commit (numbers or ids, comma separated)", default="", show_default=False)
                refs = [resolve_group_ref(engine, part) for part in raw.split(",")]
                group_ids = [gid for gid in (extract_group_id(ref) for ref in refs) if gid]
                if not group_ids:
                    print_warning("No groups selected")
                    continue
            before = len(engine.groups)
            pending = len(engine.pending_groups())
            if not click.confirm(f"   Commit {plural(len(group_ids) if group_ids else pending, 'group')}?", default=True):
                continue
            run_commit_all(engine, config, hooks, group_ids)
            committed += before - len(engine.groups)

        elif choice == "m":
            source = prompt_group(engine, "Move from group")
            if source is None:
                continue
            path = prompt_file(source.files, "File to move")
            target = prompt_group(engine, "Move to group") if path else None
            if path and target and engine.move_file_to_group(path, source.id, target.id):
                print_success(f"Moved {path} to {target.name}")

        elif choice == "r":
            group = prompt_group(engine, "Remove from group")
            path = prompt_file(group.files, "File to remove") if group else None
            if group and path and engine.remove_file_from_group(path, group.id):
                print_success(f"{path} moved to the ungrouped files")

        elif choice == "f":
            if not engine.ungrouped:
                print_warning("There are no ungrouped files")
                continue
            path = prompt_file(engine.ungrouped, "File to add")
            group = prompt_group(engine, "Add to group") if path else None
            if path and group and engine.add_file_to_group(path, group.id):
                print_success(f"Added {path} to {group.name}")

        elif choice == "n":
            name = click.prompt("   Group name", value_proc=non_empty)
            message = click.prompt("   Commit message", value_proc=non_empty)
            group = engine.create_group(name, message)
            print_success(f"Created group {group.name}; add files to it from the ungrouped files")

        elif choice == "g":
            source = prompt_group(engine, "Merge group")
            target = prompt_group(engine, "Into group") if source else None
            if source and target:
                if engine.merge_groups(source.id, target.id):
                    print_success(f"Merged {source.name} into {target.name}")
                else:
                    print_warning("A group cannot be merged into itself")

        elif choice == "e":
            group = prompt_group(engine, "Edit message of group")
            if group is None:
                continue
            message = edit_message(group.message)
            if message is None:
                print_warning("Empty message, keeping the original")
            elif engine.update_group_message(group.id, message):
                print_success("Message updated")

        elif choice == "d":
            group = prompt_group(engine, "Discard group")
            if group and click.confirm(f"   Discard {group.name}? Its files stay changed on disk", default=False):
                engine.discard_group(group.id)
                print_success(f"Discarded {group.name}")

        elif choice == "z":
            try:
                run_analysis(engine)
            except NoChangesError:
                print_warning("No changes left to analyze")
                return committed
            except (LLMError, ParseError, GitError) as exc:
                print_error(f"Re-analysis failed: {exc}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

@click.command()
@click.option("--yes", "yes", is_flag=True, help="Commit every generated group without prompting.")
@click.option("--batch", is_flag=True, help="Wait for the complete model answer instead of streaming it.")
@click.option(
    "--hooks",
    type=click.Choice([s.value for s in HookStrategy]),
    default=None,
    help="How pre-commit hooks run when committing several groups (default from config).",
)
@click.option("--no-verify", "no_verify", is_flag=True, help="Skip pre-commit hooks (same as --hooks skip).")
@click.option("--verbose", is_flag=True, help="Enable verbose (debug) output.")
@click.version_option(version=__version__, prog_name="splitify")
def main(yes: bool, batch: bool, hooks: Optional[str], no_verify: bool, verbose: bool) -> None:
    """✂️  Split your uncommitted changes into logical commits using AI.

    The changes of the current Git repository are grouped by a language
    model; review, edit and commit the groups one by one.
    """
    # force=True reconfigures handlers on every invocation (important for tests)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
        force=True,
    )

    click.echo("\n" + "="*60)
    click.echo("✂️  splitify".center(60))
    click.echo("="*60)

    ctx = click.get_current_context(silent=True)
    total_steps = 4

    try:
        # Step 1: Detect repository
        print_step(1, total_steps, "Detecting Repository")
        repo_root = GitClient.find_repo_root(Path.cwd())
        if repo_root is None:
            print_error("Current directory is not inside a Git repository.")
            raise click.exceptions.Exit(EXIT_NO_REPO)
        print_success(f"Found Git repository at: {repo_root}")

        # Step 2: Load configuration
        print_step(2, total_steps, "Loading Configuration")
        try:
            with ProgressIndicator("Reading splitify configuration"):
                config = load_config(repo_root)
        except ConfigError as exc:
            print_error(f"Configuration error: {exc}")
            raise click.exceptions.Exit(EXIT_CONFIG_ERROR)
        print_info(f"LLM Server: {config['base_url']}:{config['port']}", indent=1)
        print_info(f"Model: {config['model']}", indent=1)

        strategy = HookStrategy.SKIP.value if no_verify else (hooks or config.get("pre_commit_hooks", "per_group"))
        streaming = config.get("streaming", True) and not batch
        engine = build_engine(repo_root, config, streaming=streaming, hooks=strategy)
        logger.debug("Hook strategy: %s, streaming: %s", strategy, streaming)

        # Step 3: Analyze
        print_step(3, total_steps, "Analyzing Changes")
        print_info("Asking the model to group your changes (Ctrl-C keeps the groups found so far)")
        try:
            groups = run_analysis(engine)
        except NoChangesError:
            print_warning("No changes detected to commit.")
            raise click.exceptions.Exit(EXIT_NO_CHANGES)
        except (LLMError, ParseError) as exc:
            print_error(f"LLM error: {exc}")
            print_info("Make sure Ollama is running and accessible", indent=1)
            raise click.exceptions.Exit(EXIT_LLM_FAILURE)
        except GitError as exc:
            print_error(f"VCS error: {exc}")
            raise click.exceptions.Exit(EXIT_VCS_FAILURE)
        print_success(f"Found {plural(len(groups), 'commit group')}")

        # Step 4: Review and commit
        print_step(4, total_steps, "Review and Commit")
        if yes:
            print_info("Auto-accept mode enabled - committing all groups")
            failed = run_commit_all(engine, config, strategy)
            if failed:
                raise click.exceptions.Exit(EXIT_VCS_FAILURE)
            raise click.exceptions.Exit(EXIT_SUCCESS)

        committed = interactive_session(engine, config, strategy)
        if committed == 0:
            print_warning("No groups were committed.")
            raise click.exceptions.Exit(EXIT_NOTHING_COMMITTED)

        click.echo(f"\n🎉 Committed {plural(committed, 'group')}.\n")
        raise click.exceptions.Exit(EXIT_SUCCESS)

    except click.exceptions.Exit:
        # Click uses its own Exit exception; re-raise to let Click handle it
        raise
    except click.exceptions.Abort:
        raise
    except Exception as exc:
        logging.exception("Unhandled error: %s", exc)
        print_error(f"Unexpected error: {exc}")
        ctx.exit(EXIT_GENERIC_ERROR)
