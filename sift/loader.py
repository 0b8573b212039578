"""
Loader - Plugin registry with aliases and lazy instantiation.

Plugin modules are registered per extension kind, either from a Python
file (register_path, autoload) or from a constructor handed over by the
embedding application (register_extension). Instances are built lazily,
once per (profile, kind, name), and stamped with their name and path.

A plugin file for kind "source" must export a class named Source; likewise
Ui, Filter, Kind and Column.
"""

import asyncio
import hashlib
import importlib
import importlib.util
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from loguru import logger

from sift.errors import ConfigurationError, ExtensionLoadError
from sift.types import ALIAS_TYPES, EXT_TYPES

BUILTIN_PLUGIN_DIR = Path(__file__).parent / "plugins"

CLASS_NAMES = {
    "ui": "Ui",
    "source": "Source",
    "filter": "Filter",
    "kind": "Kind",
    "column": "Column",
}


@dataclass
class Mod:
    """A registered plugin constructor and where it came from."""
    factory: Callable[[], Any]
    path: str = ""


class Extension:
    """Plugin instances of one profile, keyed by kind then name."""

    def __init__(self):
        self._instances: dict[str, dict[str, Any]] = {kind: {} for kind in EXT_TYPES}

    def get(self, kind: str, mod: Mod, name: str) -> Any:
        instances = self._instances[kind]
        if name not in instances:
            obj = mod.factory()
            obj.name = name
            obj.path = mod.path
            instances[name] = obj
        return instances[name]


class Loader:
    def __init__(self, search_paths: Optional[Iterable[Union[str, Path]]] = None):
        self._extensions: dict[str, Extension] = {}
        self._mods: dict[str, dict[str, Mod]] = {kind: {} for kind in EXT_TYPES}
        self._aliases: dict[str, dict[str, str]] = {kind: {} for kind in ALIAS_TYPES}
        self._check_paths: set[str] = set()
        self._register_lock = asyncio.Lock()
        self._search_paths: list[Path] = []
        self._cached_paths: dict[str, Path] = {}
        self._scanned_paths: Optional[list[Path]] = None

        for path in search_paths or []:
            self.add_search_path(path)

    @property
    def search_paths(self) -> list[Path]:
        """User plugin roots followed by the built-in plugin directory."""
        return self._search_paths + [BUILTIN_PLUGIN_DIR]

    def add_search_path(self, path: Union[str, Path]) -> None:
        path = Path(path).expanduser()
        if path not in self._search_paths:
            self._search_paths.append(path)

    async def autoload(self, kind: str, name: str) -> bool:
        """
        Find <root>/<kind>s/<name>.py on the search paths and register it.

        Args:
            kind: Extension kind ("source", "filter", ...)
            name: Extension name or alias

        Returns:
            True if the plugin is available afterwards
        """
        search_paths = self.search_paths
        if search_paths != self._scanned_paths:
            self._cached_paths = self._scan(search_paths)
            self._scanned_paths = search_paths

        key = f"{kind}s/{self.get_alias(kind, name) or name}"
        path = self._cached_paths.get(key)
        if path is None:
            logger.debug(f"No {kind} plugin found for '{name}'")
            return False

        await self.register_path(kind, path)
        return True

    def _scan(self, search_paths: list[Path]) -> dict[str, Path]:
        paths: dict[str, Path] = {}
        for root in search_paths:
            for kind in EXT_TYPES:
                directory = root / f"{kind}s"
                if not directory.is_dir():
                    continue
                for path in sorted(directory.glob("*.py")):
                    if path.name.startswith("_"):
                        continue
                    # The first root wins for a given name
                    paths.setdefault(f"{kind}s/{path.stem}", path)
        return paths

    def register_alias(self, kind: str, alias: str, base: str) -> None:
        if kind not in ALIAS_TYPES:
            raise ConfigurationError(f"Invalid alias type: {kind}")
        self._aliases[kind][alias] = base

        # Back-fill an alias of an already registered plugin
        if kind in self._mods and base in self._mods[kind]:
            self._mods[kind][alias] = self._mods[kind][base]

    async def register_path(self, kind: str, path: Union[str, Path]) -> None:
        """Load the plugin module at path, at most once."""
        async with self._register_lock:
            try:
                self._register(kind, Path(path))
            except Exception as e:
                logger.error(f"Failed to load file '{path}': {e}")
                raise

    def register_extension(
        self,
        kind: str,
        name: str,
        factory: Callable[[], Any],
        path: str = "",
    ) -> None:
        """Register a plugin constructor (a class or zero-argument callable)."""
        if kind not in EXT_TYPES:
            raise ConfigurationError(f"Invalid extension type: {kind}")
        self._set_mod(kind, name, Mod(factory=factory, path=path))
        logger.debug(f"Registered {kind} '{name}'")

    def get_ui(self, index: str, name: str) -> Any:
        return self._get(index, "ui", name)

    def get_source(self, index: str, name: str) -> Any:
        return self._get(index, "source", name)

    def get_filter(self, index: str, name: str) -> Any:
        return self._get(index, "filter", name)

    def get_kind(self, index: str, name: str) -> Any:
        return self._get(index, "kind", name)

    def get_column(self, index: str, name: str) -> Any:
        return self._get(index, "column", name)

    def get_alias(self, kind: str, name: str) -> Optional[str]:
        return self._aliases[kind].get(name)

    def get_alias_names(self, kind: str) -> list[str]:
        return list(self._aliases[kind])

    def get_source_names(self) -> list[str]:
        return list(self._mods["source"])

    def _get(self, index: str, kind: str, name: str) -> Any:
        mod = self._mods[kind].get(name)
        if mod is None:
            return None
        if index not in self._extensions:
            self._extensions[index] = Extension()
        return self._extensions[index].get(kind, mod, name)

    def _set_mod(self, kind: str, name: str, mod: Mod) -> None:
        mods = self._mods[kind]
        mods[name] = mod
        for alias, base in self._aliases[kind].items():
            if base == name:
                mods[alias] = mod

    def _register(self, kind: str, path: Path) -> None:
        key = str(path)
        if key in self._check_paths:
            return

        if kind not in CLASS_NAMES:
            raise ExtensionLoadError(f"Invalid extension type: {kind}")

        module = load_module(path)
        class_name = CLASS_NAMES[kind]
        factory = getattr(module, class_name, None)
        if factory is None:
            raise ExtensionLoadError(f"{path} does not export '{class_name}'")

        self._set_mod(kind, path.stem, Mod(factory=factory, path=key))
        self._check_paths.add(key)
        logger.debug(f"Loaded {kind} '{path.stem}' from {path}")


def load_module(path: Path) -> Any:
    """Import a Python file; files under the built-in plugin directory by dotted name."""
    path = path.resolve()
    try:
        relative = path.relative_to(BUILTIN_PLUGIN_DIR.resolve())
    except ValueError:
        relative = None

    if relative is not None:
        dotted = ".".join(("sift", "plugins") + relative.with_suffix("").parts)
        return importlib.import_module(dotted)

    digest = hashlib.md5(str(path).encode()).hexdigest()[:8]
    module_name = f"sift_user_{path.stem}_{digest}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ExtensionLoadError(f"Cannot load plugin module from {path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        del sys.modules[module_name]
        raise
    return module
