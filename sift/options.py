"""
Options model - Layered resolution of session and extension options.

Options are plain dicts. A resolution is a left fold over partial layers
starting from a defaults factory; None layers count as empty. Per-extension
sections (sourceOptions, filterParams, ...) map an extension name, or "_"
for every extension of that kind, to a partial override and are merged key
by key instead of being replaced.
"""

from typing import Callable, Iterable, Optional

from sift.base.source import default_source_options
from sift.host import Host
from sift.types import Context
from sift.utils.helpers import report_error

Merge = Callable[[dict, dict], dict]

# Sections merged key by key, in the order they are rebuilt
SECTION_KEYS = (
    "uiOptions",
    "uiParams",
    "sourceOptions",
    "sourceParams",
    "filterOptions",
    "filterParams",
    "columnOptions",
    "columnParams",
    "kindOptions",
    "kindParams",
    "actionOptions",
    "actionParams",
)


def overwrite(a: dict, b: dict) -> dict:
    return {**a, **b}


# Extension options and params are flat records
merge_ui_options = overwrite
merge_source_options = overwrite
merge_filter_options = overwrite
merge_column_options = overwrite
merge_kind_options = overwrite
merge_action_options = overwrite
merge_params = overwrite


def fold_merge(
    merge: Merge,
    default: Callable[[], dict],
    layers: Iterable[Optional[dict]],
) -> dict:
    """
    Fold partial layers over default() from left to right.

    Args:
        merge: Two-argument merge, applied as merge(accumulated, layer)
        default: Factory for the starting record
        layers: Partial overrides; None entries are treated as {}

    Returns:
        The fully populated record
    """
    result = default()
    for layer in layers:
        result = merge(result, layer or {})
    return result


def default_context() -> Context:
    return Context()


def default_sift_options() -> dict:
    return {
        "actionOptions": {},
        "actionParams": {},
        "actions": [],
        "columnOptions": {},
        "columnParams": {},
        "expandInput": False,
        "filterOptions": {},
        "filterParams": {},
        "input": "",
        "kindOptions": {},
        "kindParams": {},
        "name": "default",
        "postFilters": [],
        "profile": False,
        "push": False,
        "refresh": False,
        "resume": False,
        "searchPath": "",
        "sourceOptions": {},
        "sourceParams": {},
        "sources": [],
        "sync": False,
        "syncLimit": 0,
        "syncTimeout": 0,
        "ui": "",
        "uiOptions": {},
        "uiParams": {},
        "unique": False,
    }


def default_dummy() -> dict:
    return {}


def _migrate_each_keys(
    merge: Merge,
    a: Optional[dict],
    b: Optional[dict],
) -> Optional[dict]:
    """Merge two sectioned maps key by key; None when both are missing."""
    if not a and not b:
        return None

    result = dict(a or {})
    for key, value in (b or {}).items():
        if key in result:
            result[key] = merge(result[key], value)
        else:
            result[key] = value
    return result


def merge_sift_options(a: dict, b: dict) -> dict:
    """
    Merge partial options b over options a.

    Top-level keys are overwritten; sectioned maps are merged per extension.
    """
    merged = overwrite(a, b)
    for key in SECTION_KEYS:
        merged[key] = _migrate_each_keys(overwrite, a.get(key), b.get(key)) or {}
    return merged


def patch_sift_options(a: dict, b: dict) -> dict:
    """
    Patch partial options a with partial options b.

    Unlike merge_sift_options the result stays partial: a sectioned map is
    only written when one of the sides carries it, so a patch never adds
    empty sections and never drops another extension's settings.
    """
    patched = overwrite(a, b)
    for key in SECTION_KEYS:
        section = _migrate_each_keys(overwrite, a.get(key), b.get(key))
        if section:
            patched[key] = section
    return patched


class OptionsStore:
    """
    End user customization: global options plus per-name local options.

    One store belongs to one App; nothing here is module-global.
    """

    def __init__(self):
        self.global_options: dict = {}
        self.local_options: dict[str, dict] = {}

    def get(self, user_options: Optional[dict]) -> dict:
        # The session name may itself come from the global layer
        options = fold_merge(
            merge_sift_options, default_sift_options,
            [self.global_options, user_options],
        )
        local = self.local_options.get(options["name"], {})
        return fold_merge(
            merge_sift_options, default_sift_options,
            [self.global_options, local, user_options],
        )

    def set_global(self, options: dict) -> "OptionsStore":
        self.global_options = options
        return self

    def set_local(self, name: str, options: dict) -> "OptionsStore":
        self.local_options[name] = options
        return self

    def patch_global(self, options: dict) -> "OptionsStore":
        self.global_options = patch_sift_options(self.global_options, options)
        return self

    def patch_local(self, name: str, options: dict) -> "OptionsStore":
        self.local_options[name] = patch_sift_options(
            self.local_options.get(name, {}), options
        )
        return self


class ContextBuilder:
    """Builds the effective options and the Context for a session start."""

    def __init__(self, store: Optional[OptionsStore] = None):
        self._store = store or OptionsStore()

    async def get(self, host: Host, user_options: Optional[dict]) -> tuple[Context, dict]:
        """
        Resolve options for a start and capture the host state.

        Unknown option keys are reported but do not abort the start.
        """
        options = self._store.get(user_options)

        self.validate("options", options, default_sift_options())
        for source_options in options["sourceOptions"].values():
            self.validate("sourceOptions", source_options, default_source_options())

        cwd = await host.cwd()
        context = default_context()
        context.buf_name = await host.buf_name()
        context.buf_nr = await host.buf_nr()
        context.cwd = cwd
        context.mode = await host.mode()
        context.path = cwd
        context.win_id = await host.win_id()

        return context, options

    def validate(self, name: str, options: dict, defaults: dict) -> bool:
        valid = True
        for key in options:
            if key not in defaults:
                report_error(f'Invalid {name}: "{key}"')
                valid = False
        return valid

    def get_global(self) -> dict:
        return self._store.global_options

    def get_local(self) -> dict[str, dict]:
        return self._store.local_options

    def set_global(self, options: dict) -> None:
        self._store.set_global(options)

    def set_local(self, name: str, options: dict) -> None:
        self._store.set_local(name, options)

    def patch_global(self, options: dict) -> None:
        self._store.patch_global(options)

    def patch_local(self, name: str, options: dict) -> None:
        self._store.patch_local(name, options)
