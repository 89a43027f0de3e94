"""
Configuration loading for splitify.

Provides a loader for the user-level Ollama/engine configuration and the
optional per-repository overrides. See :mod:`splitify.config.loader` for
implementation details.
"""

from .loader import ConfigError, load_config  # noqa: F401
