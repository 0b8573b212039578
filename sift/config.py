"""
Sift Config - User configuration entry points.

Configuration comes from either a TOML settings file or a Python file
exporting a Config class:

  settings.toml
    [sift]           search_paths, profile
    [global]         options for every session
    [local.<name>]   options for the session called <name>
    [alias.<kind>]   alias = "base name"

  config.py
    class Config(BaseConfig):
        def config(self, args):
            args.context_builder.patch_global({"ui": "std"})
            args.set_alias("source", "files", "file_rec")
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Union

from loguru import logger

from sift.errors import ConfigurationError
from sift.host import Host
from sift.loader import Loader, load_module
from sift.options import ContextBuilder
from sift.types import ALIAS_TYPES
from sift.utils.helpers import load_settings, maybe_await


@dataclass
class ConfigArguments:
    host: Host
    context_builder: ContextBuilder
    set_alias: Callable[[str, str, str], None]


class BaseConfig:
    """Base class of Python configuration files."""

    api_version = 1

    def config(self, args: ConfigArguments) -> Any:
        pass


async def load_python_config(path: Path, args: ConfigArguments) -> None:
    """Import path and run its Config().config(args)."""
    module = load_module(path)
    config_class = getattr(module, "Config", None)
    if config_class is None:
        raise ConfigurationError(f"{path} does not export 'Config'")

    await maybe_await(config_class().config(args))


def apply_settings(
    settings: dict,
    loader: Loader,
    context_builder: ContextBuilder,
) -> None:
    """Apply parsed settings (see load_settings) to the loader and options."""
    for search_path in settings["sift"].get("search_paths", []):
        loader.add_search_path(search_path)

    global_options = dict(settings["global"])
    if settings["sift"].get("profile"):
        global_options.setdefault("profile", True)
    if global_options:
        context_builder.patch_global(global_options)

    for name, options in settings["local"].items():
        context_builder.patch_local(name, options)

    for kind, aliases in settings["alias"].items():
        if kind not in ALIAS_TYPES:
            logger.warning(f"Skipping aliases of unknown type '{kind}'")
            continue
        for alias, base in aliases.items():
            loader.register_alias(kind, alias, base)


async def load_config(
    path: Union[str, Path],
    host: Host,
    loader: Loader,
    context_builder: ContextBuilder,
) -> None:
    """
    Load a .toml settings file or a .py file exporting Config.

    Raises:
        ConfigurationError: The file type is unsupported or Config is missing
    """
    path = Path(path).expanduser()

    if path.suffix == ".toml":
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        apply_settings(load_settings(path), loader, context_builder)
    elif path.suffix == ".py":
        await load_python_config(path, ConfigArguments(
            host=host,
            context_builder=context_builder,
            set_alias=loader.register_alias,
        ))
    else:
        raise ConfigurationError(f"Unsupported config file: {path}")

    logger.debug(f"Loaded config from {path}")
