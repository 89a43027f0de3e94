"""
Parsing of grouping suggestions from model output.

The model answers with a JSON document of the form
``{"groups": [{"name", "message", "files", "reasoning"}, ...]}``. Waiting
for the whole answer before showing anything makes the tool feel slow,
so :class:`StreamingSuggestionParser` pulls each group object out of the
partially received text as soon as its closing brace arrives.

Extraction is a small scanner that tracks three things: whether it is
inside a string, whether the previous character was an escaping
backslash, and the brace depth outside strings. The buffer is re-scanned
from the start of the ``groups`` array on every call; only objects past
the ones already examined are surfaced.
Reasoning blocks such as ``<think>...</think>`` are left out of the scan,
and an unclosed one holds the scan back until it closes.

When the stream produced no valid object at all (for example because the
model wrapped the answer in a markdown fence in an unexpected way), the
whole text is parsed as one document with :func:`parse_response`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

from splitify.llm.ollama_client import strip_thinking_tags


logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


_GROUPS_ARRAY_RE = re.compile(r'"groups"\s*:\s*\[')
_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_THINKING_OPEN_RE = re.compile(r"<(think|thinking|thought|reasoning)>", re.IGNORECASE)


class ParseError(Exception):
    """Raised when a model response cannot be turned into suggestions.

    Attributes
    ----------
    kind : str
        ``invalid_json`` when the text is not valid JSON,
        ``missing_groups`` when the document has no ``groups`` array, and
        ``generic`` for anything else.
    """

    INVALID_JSON = "invalid_json"
    MISSING_GROUPS = "missing_groups"
    GENERIC = "generic"

    def __init__(self, message: str, kind: str = GENERIC) -> None:
        super().__init__(message)
        self.kind = kind


@dataclass
class GroupingSuggestion:
    """One group proposed by the model, before its paths are resolved."""

    name: str
    message: str
    files: List[str] = field(default_factory=list)
    reasoning: str = ""


def extract_complete_groups(buffer: str) -> List[str]:
    """Return the raw text of every complete object in the ``groups`` array.

    Scanning stops at the end of the array, at anything that is not an
    object, or at an object whose closing brace has not arrived yet.
    """
    results: List[str] = []
    match = _GROUPS_ARRAY_RE.search(buffer)
    if match is None:
        return results

    pos = match.end()
    length = len(buffer)
    while pos < length:
        while pos < length and (buffer[pos].isspace() or buffer[pos] == ","):
            pos += 1
        if pos >= length or buffer[pos] != "{":
            break

        start = pos
        depth = 0
        in_string = False
        escaped = False
        complete = False
        while pos < length:
            ch = buffer[pos]
            pos += 1
            if escaped:
                escaped = False
            elif in_string:
                if ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    complete = True
                    break

        if not complete:
            # Truncated object; retried once more text has arrived
            break
        results.append(buffer[start:pos])
    return results


def validate_suggestion(raw: Union[str, dict]) -> Optional[GroupingSuggestion]:
    """Turn one raw group object into a suggestion, or None if it is invalid.

    A valid group has a non-empty ``name`` and ``message`` and a ``files``
    list. Non-string file entries are dropped and a missing ``reasoning``
    becomes an empty string.
    """
    if isinstance(raw, str):
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.debug("Skipping undecodable group object: %s", exc)
            return None
    else:
        data = raw

    if not isinstance(data, dict):
        logger.debug("Skipping group that is not an object: %r", data)
        return None
    name = data.get("name")
    message = data.get("message")
    files = data.get("files")
    if not isinstance(name, str) or not name.strip():
        logger.debug("Skipping group without a name")
        return None
    if not isinstance(message, str) or not message.strip():
        logger.debug("Skipping group '%s' without a message", name)
        return None
    if not isinstance(files, list):
        logger.debug("Skipping group '%s' without a files list", name)
        return None
    reasoning = data.get("reasoning")
    return GroupingSuggestion(
        name=name,
        message=message,
        files=[f for f in files if isinstance(f, str)],
        reasoning=reasoning if isinstance(reasoning, str) else "",
    )


def parse_response(response: str) -> List[GroupingSuggestion]:
    """Parse a complete model response into suggestions.

    Reasoning tags are removed and, when the JSON is wrapped in a markdown
    code fence, only the fenced part is decoded. Entries of the ``groups``
    array that fail validation are skipped.

    Raises
    ------
    ParseError
        With ``kind`` telling invalid JSON apart from a missing ``groups``
        array and from other failures.
    """
    text = strip_thinking_tags(response)
    fence = _CODE_FENCE_RE.search(text)
    if fence:
        text = fence.group(1)

    try:
        parsed = json.loads(text.strip())
    except json.JSONDecodeError as exc:
        logger.error("Model response is not valid JSON: %s", exc)
        raise ParseError(
            "Failed to parse AI grouping suggestions: Invalid JSON format",
            kind=ParseError.INVALID_JSON,
        ) from exc
    except Exception as exc:
        raise ParseError(f"Failed to parse AI grouping suggestions: {exc}") from exc

    if not isinstance(parsed, dict) or not isinstance(parsed.get("groups"), list):
        logger.error("Model response has no groups array")
        raise ParseError(
            "Invalid response structure: missing groups array",
            kind=ParseError.MISSING_GROUPS,
        )

    suggestions = []
    for entry in parsed["groups"]:
        suggestion = validate_suggestion(entry)
        if suggestion is not None:
            suggestions.append(suggestion)
    return suggestions


def visible_text(buffer: str) -> str:
    """Return the part of a partial response that may hold the answer.

    Closed reasoning blocks are removed. Everything from a reasoning tag
    that has not been closed yet is held back, since a draft answer inside
    it must not be taken for the real one.
    """
    text = strip_thinking_tags(buffer)
    match = _THINKING_OPEN_RE.search(text)
    if match is not None:
        text = text[:match.start()]
    return text


class StreamingSuggestionParser:
    """Accumulate streamed model output and emit suggestions as they complete.

    Example
    -------
    >>> parser = StreamingSuggestionParser()
    >>> parser.feed('{"groups": [{"name": "a", "message": "m", "fi')
    []
    >>> [s.name for s in parser.feed('les": []}')]
    ['a']
    """

    def __init__(self) -> None:
        self.buffer = ""
        self.emitted: List[GroupingSuggestion] = []
        # Complete objects already examined, valid or not
        self._examined = 0

    def feed(self, chunk: str) -> List[GroupingSuggestion]:
        """Append ``chunk`` and return the suggestions completed by it."""
        self.buffer += chunk
        objects = extract_complete_groups(visible_text(self.buffer))
        new: List[GroupingSuggestion] = []
        for raw in objects[self._examined:]:
            suggestion = validate_suggestion(raw)
            if suggestion is not None:
                new.append(suggestion)
        self._examined = max(self._examined, len(objects))
        self.emitted.extend(new)
        return new

    def finish(self) -> List[GroupingSuggestion]:
        """Close the stream.

        If nothing valid was emitted, the whole buffer is parsed as one
        document and its suggestions are returned (and recorded as
        emitted); otherwise nothing new is returned.

        Raises
        ------
        ParseError
            If the fallback parse fails.
        """
        if self.emitted:
            return []
        suggestions = parse_response(self.buffer)
        self.emitted.extend(suggestions)
        return suggestions
