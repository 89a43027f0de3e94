"""
Language model integration for splitify.

This package contains the :class:`OllamaClient` for communicating with an
Ollama server, the :class:`GroupingAdvisor` which asks the model to split
a change set into commits, and the parser that turns the (possibly still
streaming) answer into :class:`GroupingSuggestion` objects.
"""

from .ollama_client import OllamaClient, LLMError  # noqa: F401
from .grouping_advisor import GroupingAdvisor  # noqa: F401
from .suggestion_parser import (  # noqa: F401
    GroupingSuggestion,
    ParseError,
    StreamingSuggestionParser,
    parse_response,
)
