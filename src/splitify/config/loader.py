"""
Configuration loader for splitify.

The connection settings for the Ollama server live in a JSON file named
``config.json`` inside the ``~/.splitify/`` directory of the user's home.
A repository may additionally carry a ``.splitify.json`` file at its
root which overrides the engine settings (ignore patterns, hook strategy,
history size, streaming) but never the connection settings.

If a configuration file is malformed, or the user-level file is missing
or lacks required keys, a :class:`ConfigError` is raised.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)
# Attach a null handler to avoid "No handler" warnings or logging errors in
# environments where the root logger may be closed. The CLI configures
# logging explicitly when it needs the messages.
if not logger.handlers:
    logger.addHandler(logging.NullHandler())
    logger.propagate = False


CONFIG_FILE_NAME = "config.json"
REPO_CONFIG_FILE_NAME = ".splitify.json"

HOOK_STRATEGIES = ("once", "per_group", "skip")

# Engine settings that may appear in either file, with their defaults.
ENGINE_DEFAULTS: Dict[str, Any] = {
    "ignore_patterns": [],
    "pre_commit_hooks": "per_group",
    "history_count": 20,
    "streaming": True,
    "show_notifications": True,
}


class ConfigError(Exception):
    """Raised when a configuration file is missing or invalid."""

    pass


def _get_config_directory() -> Path:
    """Return the user-level configuration directory, ``~/.splitify/``."""
    return Path.home() / ".splitify"


def _read_json(path: Path) -> Dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
        data = json.loads(content)
    except (OSError, json.JSONDecodeError) as exc:
        logger.error("Failed to read or parse configuration file %s: %s", path, exc)
        raise ConfigError(f"Invalid JSON in {path.name}: {exc}") from exc
    if not isinstance(data, dict):
        logger.error("Configuration file %s does not contain a JSON object", path)
        raise ConfigError(f"{path.name} must contain a JSON object")
    return data


def _validate_engine_settings(data: Dict[str, Any], source: str) -> None:
    """Validate the optional engine settings present in ``data``."""
    if "ignore_patterns" in data:
        patterns = data["ignore_patterns"]
        if not isinstance(patterns, list) or not all(isinstance(p, str) for p in patterns):
            raise ConfigError(f"'ignore_patterns' in {source} must be a list of strings")
    if "pre_commit_hooks" in data and data["pre_commit_hooks"] not in HOOK_STRATEGIES:
        raise ConfigError(
            f"'pre_commit_hooks' in {source} must be one of: {', '.join(HOOK_STRATEGIES)}"
        )
    if "history_count" in data:
        count = data["history_count"]
        # bool is a subclass of int; reject it explicitly
        if not isinstance(count, int) or isinstance(count, bool) or count < 0:
            raise ConfigError(f"'history_count' in {source} must be a non-negative integer")
    for key in ("streaming", "show_notifications"):
        if key in data and not isinstance(data[key], bool):
            raise ConfigError(f"'{key}' in {source} must be a boolean")


def load_config(repo_root: Optional[Path] = None) -> Dict[str, Any]:
    """Load the splitify configuration and return it.

    Args:
        repo_root: Root of the repository being analysed. When given and the
                   repository contains a ``.splitify.json`` file, its engine
                   settings override the user-level ones.

    Returns:
        A dictionary containing the validated configuration with keys:
        - base_url (str): The base URL of the Ollama server
        - port (int): The port number
        - model (str): The model name
        - request_timeout (int|float): Request timeout in seconds
        - max_tokens (int, optional): Maximum tokens for generation
        - ignore_patterns (list[str]): Extra ignore patterns
        - pre_commit_hooks (str): ``once``, ``per_group`` or ``skip``
        - history_count (int): Number of recent commit messages to send
        - streaming (bool): Whether to stream the model response
        - show_notifications (bool): Whether to print success messages

    Raises:
        ConfigError: If a configuration file is missing, malformed, or invalid.
    """
    config_dir = _get_config_directory()
    config_path = config_dir / CONFIG_FILE_NAME

    if not config_path.exists():
        logger.error("Configuration file '%s' does not exist", config_path)
        raise ConfigError(
            f"Missing splitify configuration file: {config_path}. "
            f"Expected location: {config_dir}\n"
            f"Create it with at least 'base_url', 'port' and 'model'."
        )

    data = _read_json(config_path)

    # Validate required keys
    required_keys = ["base_url", "port", "model"]
    missing = [key for key in required_keys if key not in data]
    if missing:
        logger.error("Configuration file missing required keys: %s", missing)
        raise ConfigError(
            f"Missing required configuration keys: {', '.join(missing)}"
        )

    if not isinstance(data.get("base_url"), str):
        raise ConfigError("'base_url' must be a string")
    # bool is a subclass of int; reject it explicitly
    if not isinstance(data.get("port"), int) or isinstance(data["port"], bool):
        raise ConfigError("'port' must be an integer")
    if not isinstance(data.get("model"), str):
        raise ConfigError("'model' must be a string")

    timeout = data.get("request_timeout", 60)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool):
        raise ConfigError("'request_timeout' must be a number")
    if "max_tokens" in data and (
        not isinstance(data["max_tokens"], int) or isinstance(data["max_tokens"], bool)
    ):
        raise ConfigError("'max_tokens' must be an integer")

    _validate_engine_settings(data, CONFIG_FILE_NAME)

    config: Dict[str, Any] = {"request_timeout": 60}
    config.update(ENGINE_DEFAULTS)
    config["ignore_patterns"] = []
    config.update(data)

    if repo_root is not None:
        repo_config_path = Path(repo_root) / REPO_CONFIG_FILE_NAME
        if repo_config_path.exists():
            repo_data = _read_json(repo_config_path)
            _validate_engine_settings(repo_data, REPO_CONFIG_FILE_NAME)
            overrides = {k: v for k, v in repo_data.items() if k in ENGINE_DEFAULTS}
            ignored = sorted(set(repo_data) - set(overrides))
            if ignored:
                logger.warning(
                    "Ignoring unsupported keys in %s: %s", repo_config_path, ", ".join(ignored)
                )
            config.update(overrides)
            logger.debug("Applied repository overrides from: %s", repo_config_path)

    logger.debug("Loaded splitify configuration from: %s", config_path)
    logger.debug("Configuration data: %s", config)
    return config
