"""
Helper utilities for the sift engine.

Provides common functions used across the engine modules:
- Diagnostic reporting for configuration and plugin errors
- Settings loading from TOML
- Tree path manipulation for tree-like sources
- Calling plugin hooks that may or may not be coroutines
"""

import inspect
import json
import os
import traceback
from pathlib import Path
from typing import Any, Dict, Optional

import toml
from loguru import logger

from sift.types import TreePath


def report_error(*messages: Any) -> None:
    """
    Report an error on the diagnostic channel.

    Exceptions are rendered with their traceback, dicts and lists as JSON.

    Args:
        messages: Parts of the message, joined by newlines
    """
    parts = []
    for message in messages:
        if isinstance(message, BaseException):
            parts.append("".join(traceback.format_exception(message)).rstrip())
        elif isinstance(message, (dict, list)):
            parts.append(json.dumps(message, default=str))
        else:
            parts.append(str(message))
    logger.error("\n".join(parts))


async def maybe_await(value):
    """Await value if it is awaitable, so plugin hooks may be sync or async."""
    if inspect.isawaitable(value):
        return await value
    return value


def default_settings() -> Dict[str, Any]:
    return {
        "sift": {
            "search_paths": [],
            "profile": False,
        },
        "global": {},
        "local": {},
        "alias": {},
    }


def load_settings(settings_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load sift settings from a TOML file.

    Returns:
        Dictionary containing settings with defaults applied

    Example settings structure:
        [sift]
        search_paths = ["~/.config/sift"]

        [global]
        ui = "std"
        sources = ["file_rec"]

        [global.sourceOptions._]
        matchers = ["matcher_substring"]

        [local.files]
        sources = ["file"]

        [alias.source]
        files = "file_rec"
    """
    defaults = default_settings()

    if settings_path is None:
        settings_path = Path(os.environ.get(
            "SIFT_SETTINGS",
            Path.home() / ".config" / "sift" / "settings.toml",
        ))
    settings_path = Path(settings_path)

    if not settings_path.exists():
        logger.debug(f"Settings file not found at {settings_path}, using defaults")
        return defaults

    try:
        loaded = toml.load(settings_path)
    except (toml.TomlDecodeError, OSError) as e:
        logger.warning(f"Could not load settings from {settings_path}: {e}")
        return defaults

    return _deep_merge(defaults, loaded)


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary with defaults
        override: Dictionary with overrides

    Returns:
        Merged dictionary (override takes precedence)
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def tree_path_to_filename(tree_path: TreePath) -> str:
    return tree_path if isinstance(tree_path, str) else os.sep.join(tree_path)


def convert_tree_path(tree_path: Optional[TreePath]) -> list[str]:
    if not tree_path:
        return []
    return tree_path.split(os.sep) if isinstance(tree_path, str) else list(tree_path)


def chomp_tree_path(tree_path: Optional[TreePath]) -> TreePath:
    """Strip trailing separators (and trailing empty segments)."""
    if not tree_path:
        return []

    if isinstance(tree_path, str):
        return tree_path[:-1] if tree_path.endswith(os.sep) else tree_path

    chomped = [p[:-1] if p.endswith(os.sep) else p for p in tree_path]
    while chomped and chomped[-1] == "":
        chomped.pop()
    return chomped


def is_parent_path(check_path: list[str], search_path: list[str]) -> bool:
    """True if check_path is a strict ancestor of search_path."""
    return check_path != search_path and os.sep.join(search_path).startswith(
        os.sep.join(check_path) + os.sep
    )


def item_to_key(item) -> str:
    """Stable identity of an item within a session (source + tree path)."""
    tree_path = item.tree_path
    if isinstance(tree_path, str):
        path = tree_path
    elif tree_path:
        path = os.sep.join(tree_path)
    else:
        path = item.word
    return f"{item._source_index}{item._source_name}:{path}"
