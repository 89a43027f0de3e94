"""
Client for interacting with an Ollama LLM server.

This client wraps HTTP requests to the Ollama REST API. It supports
text generation via the `/api/generate` endpoint, either as a single
response or as a stream of text fragments. On error conditions (HTTP
errors, timeouts, malformed responses), a :class:`LLMError` is raised.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import requests


logger = logging.getLogger(__name__)
# Attach a null handler to avoid errors when the root logger is missing a
# stream. Messages will still propagate to the root logger if configured.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


class LLMError(Exception):
    """Raised when communication with the LLM server fails."""

    pass


def strip_thinking_tags(text: str) -> str:
    """Remove thinking process tags from LLM responses.

    Many modern LLMs with reasoning capabilities output their thinking
    process in XML-like tags such as <think>, <thinking>, <thought>,
    or <reasoning>. This function strips these tags and their contents
    from the response, leaving only the actual output.

    Parameters
    ----------
    text : str
        The raw LLM response text.

    Returns
    -------
    str
        The text with all thinking tags removed.

    Examples
    --------
    >>> strip_thinking_tags("<think>reasoning...</think>Answer")
    'Answer'
    >>> strip_thinking_tags("<thinking>thoughts</thinking>\\n\\n{}")
    '{}'
    """
    thinking_patterns = [
        r'<think>.*?</think>',
        r'<thinking>.*?</thinking>',
        r'<thought>.*?</thought>',
        r'<reasoning>.*?</reasoning>',
    ]

    result = text
    for pattern in thinking_patterns:
        result = re.sub(pattern, '', result, flags=re.DOTALL | re.IGNORECASE)

    return result.strip()


@dataclass
class OllamaClient:
    """Client for interacting with an Ollama server.

    Parameters
    ----------
    base_url : str
        Base URL of the Ollama server, e.g. ``"http://localhost"``.
    port : int
        Port number of the Ollama server, e.g. ``11434``.
    model : str
        Name of the model to use for generation, e.g. ``"llama3"``.
    request_timeout : float, optional
        Timeout in seconds for HTTP requests. For streaming requests this
        bounds the wait for each fragment, not the whole response.
        Defaults to 60 seconds.
    max_tokens : int, optional
        Maximum number of tokens to generate. If provided, passed via
        the ``options`` payload.
    """

    base_url: str
    port: int
    model: str
    request_timeout: float = 60.0
    max_tokens: Optional[int] = None

    def _endpoint(self) -> str:
        return f"{self.base_url}:{self.port}/api/generate"

    def _payload(self, prompt: str, stream: bool) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "prompt": prompt,
            "stream": stream,
        }
        options: Dict[str, Any] = {}
        if self.max_tokens is not None:
            options["num_predict"] = self.max_tokens
        if options:
            payload["options"] = options
        return payload

    def generate(self, prompt: str) -> str:
        """Generate a complete response from the model.

        Returns
        -------
        str
            The generated response text, without thinking tags.

        Raises
        ------
        LLMError
            If the request fails or the server returns an error.
        """
        payload = self._payload(prompt, stream=False)
        url = self._endpoint()
        logger.debug("Sending request to LLM at %s with model %s", url, self.model)
        try:
            response = requests.post(
                url,
                json=payload,
                timeout=self.request_timeout,
            )
        except requests.RequestException as exc:
            logger.error("Failed to connect to LLM: %s", exc)
            raise LLMError(str(exc)) from exc
        if response.status_code != 200:
            logger.error(
                "LLM returned non-200 status %s: %s", response.status_code, response.text
            )
            raise LLMError(f"LLM returned status {response.status_code}: {response.text}")
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError) as exc:
            logger.error("Failed to parse LLM response: %s", exc)
            raise LLMError("Failed to parse LLM response") from exc
        # The generate endpoint returns a top-level 'response' field; /api/chat
        # style servers return 'message' with the assistant content.
        if "response" in data:
            return strip_thinking_tags(data.get("response", "").strip())
        if "message" in data and isinstance(data["message"], dict):
            return strip_thinking_tags(data["message"].get("content", "").strip())
        raise LLMError("Unexpected response structure from LLM")

    def stream_generate(self, prompt: str, cancellation: Optional[Any] = None) -> Iterator[str]:
        """Generate a response as a stream of text fragments.

        Parameters
        ----------
        prompt : str
            The prompt to send to the model.
        cancellation : threading.Event, optional
            When set, the stream stops before the next fragment and the
            HTTP connection is closed.

        Yields
        ------
        str
            Each non-empty text fragment, in arrival order. Fragments are
            raw model output; thinking tags are not removed.

        Raises
        ------
        LLMError
            If the request fails, the server reports an error, or a stream
            line cannot be decoded.
        """
        payload = self._payload(prompt, stream=True)
        url = self._endpoint()
        logger.debug("Opening streaming request to LLM at %s with model %s", url, self.model)
        try:
            response = requests.post(
                url,
                json=payload,
                timeout=self.request_timeout,
                stream=True,
            )
        except requests.RequestException as exc:
            logger.error("Failed to connect to LLM: %s", exc)
            raise LLMError(str(exc)) from exc

        try:
            if response.status_code != 200:
                logger.error(
                    "LLM returned non-200 status %s: %s", response.status_code, response.text
                )
                raise LLMError(f"LLM returned status {response.status_code}: {response.text}")

            for line in response.iter_lines():
                if cancellation is not None and cancellation.is_set():
                    logger.debug("LLM stream cancelled")
                    return
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except (json.JSONDecodeError, ValueError) as exc:
                    logger.error("Failed to parse LLM stream line: %s", exc)
                    raise LLMError("Failed to parse LLM stream") from exc
                if data.get("error"):
                    logger.error("LLM reported an error: %s", data["error"])
                    raise LLMError(f"LLM error: {data['error']}")
                fragment = data.get("response")
                if fragment is None and isinstance(data.get("message"), dict):
                    fragment = data["message"].get("content")
                if fragment:
                    yield fragment
                if data.get("done"):
                    return
        except requests.RequestException as exc:
            logger.error("LLM stream interrupted: %s", exc)
            raise LLMError(str(exc)) from exc
        finally:
            response.close()
