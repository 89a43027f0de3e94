"""
Prompt construction for grouping suggestions.

The prompt shows the model every changed file with a truncated diff,
optionally a sample of recent commit subjects so the proposed messages
match the repository's style, a numbered checklist of files that must
each land in exactly one group, and the JSON shape of the expected answer.
"""

from __future__ import annotations

from textwrap import dedent
from typing import List, Optional, Sequence, Tuple

# Maximum characters of each diff sent to the model
MAX_DIFF_LENGTH = 1000

# Number of recent commits needed before the model is asked to copy the style
MIN_STYLE_EXAMPLES = 5
MAX_STYLE_EXAMPLES = 15

SYSTEM_CONTEXT = (
    "You are an expert at analyzing code changes and organizing them into "
    "logical, atomic commits."
)


def build_changes_section(changes: Sequence[Tuple[str, str]]) -> str:
    """Render each ``(path, diff)`` pair as a fenced diff block."""
    parts = []
    for path, diff in changes:
        if not diff:
            parts.append(f"### File: {path}\n(new file, no diff)")
            continue
        truncated = diff[:MAX_DIFF_LENGTH]
        suffix = "\n... (truncated)" if len(diff) > MAX_DIFF_LENGTH else ""
        parts.append(f"### File: {path}\n```diff\n{truncated}{suffix}\n```")
    return "\n\n".join(parts)


def build_commit_style_section(recent_commits: Optional[List[str]] = None) -> str:
    """Tell the model which commit message style to follow."""
    if recent_commits and len(recent_commits) >= MIN_STYLE_EXAMPLES:
        examples = "\n".join(f"  - {msg}" for msg in recent_commits[:MAX_STYLE_EXAMPLES])
        return (
            "- Follow the commit message style and conventions used in this "
            "repository. Here are recent commit messages for reference:\n"
            f"{examples}\n"
            "  Match their format, prefix style, and tone."
        )
    return "- Write clear, descriptive commit messages that explain what the change does"


def build_grouping_prompt(
    changes: Sequence[Tuple[str, str]],
    recent_commits: Optional[List[str]] = None,
) -> str:
    """Build the complete prompt asking the model to group ``changes``."""
    checklist = "\n".join(f"{i}. {path}" for i, (path, _) in enumerate(changes, start=1))
    # The sections are substituted after dedent so that diff text with its
    # own indentation does not disturb the template.
    template = dedent(
        """
        {system}

        Analyze the following file changes and group them into logical commits. Each group should:
        - Contain related changes that serve a single purpose
        - Be atomic (could be reverted independently)
        - IMPORTANT: Every file listed below MUST appear in exactly one group. Do not omit any files. If a file doesn't clearly belong with others, create a separate group for it.
        {style}

        ## Changes to analyze:

        {changes}

        ## File checklist (every file below MUST appear in exactly one group):
        {checklist}

        ## Response format (JSON):

        ```json
        {{
          "groups": [
            {{
              "name": "short-identifier",
              "message": "commit message matching the repository style",
              "files": ["path/to/file1.py", "path/to/file2.py"],
              "reasoning": "Brief explanation of why these files are grouped together"
            }}
          ]
        }}
        ```

        Respond ONLY with the JSON, no additional text. Ensure every file from the checklist above appears in exactly one group.
        """
    ).strip()
    return template.format(
        system=SYSTEM_CONTEXT,
        style=build_commit_style_section(recent_commits),
        changes=build_changes_section(changes),
        checklist=checklist,
    )
