"""
Grouping suggestions from an LLM.

:class:`GroupingAdvisor` is the suggestion provider of the grouping
engine. It turns the changed files and the recent commit history into a
prompt (see :mod:`splitify.llm.prompts`) and hands back the model's raw
output, either as a stream of text fragments or as one string. Parsing
the output into groups is left to
:mod:`splitify.llm.suggestion_parser`.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Tuple

from splitify.llm.ollama_client import OllamaClient
from splitify.llm.prompts import build_grouping_prompt


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


def _as_path_diff(file: Any) -> Tuple[str, str]:
    # Accept FileChange-like objects as well as {"path", "diff"} mappings
    if isinstance(file, dict):
        return file["path"], file.get("diff", "") or ""
    return file.path, getattr(file, "diff", "") or ""


class GroupingAdvisor:
    """Ask the model how to split a change set into commits."""

    def __init__(self, ollama_client: OllamaClient) -> None:
        self.ollama_client = ollama_client

    def _build_prompt(self, files: Iterable[Any], history: Optional[List[str]]) -> str:
        changes: Sequence[Tuple[str, str]] = [_as_path_diff(f) for f in files]
        if not changes:
            raise ValueError("No changes to analyze")
        logger.debug(
            "Building grouping prompt for %d file(s) with %d history message(s)",
            len(changes),
            len(history or []),
        )
        return build_grouping_prompt(changes, history)

    def request_grouping(
        self,
        files: Iterable[Any],
        history: Optional[List[str]] = None,
        cancellation: Optional[Any] = None,
    ) -> Iterator[str]:
        """Return the model's answer as a stream of raw text chunks.

        Parameters
        ----------
        files : iterable
            ``FileChange`` objects or ``{"path", "diff"}`` mappings.
        history : list of str, optional
            Recent commit messages used for style inference.
        cancellation : threading.Event, optional
            Passed through to the transport to stop the stream early.

        Raises
        ------
        ValueError
            If ``files`` is empty.
        """
        prompt = self._build_prompt(files, history)
        return self.ollama_client.stream_generate(prompt, cancellation)

    def request_grouping_batch(
        self,
        files: Iterable[Any],
        history: Optional[List[str]] = None,
    ) -> str:
        """Return the model's whole answer at once."""
        prompt = self._build_prompt(files, history)
        return self.ollama_client.generate(prompt)
