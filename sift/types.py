"""
Core types - Items, context and action flags shared by the engine and plugins.

Plugins produce plain Item records. The engine wraps them into SiftItem,
which carries the bookkeeping fields (prefixed with an underscore) used for
matching, provenance and tree state.
"""

from dataclasses import dataclass, field
from enum import IntFlag
from typing import Any, Callable, Optional, Union

TreePath = Union[str, list[str]]

# Extension kinds handled by the loader, plus "action" for alias lookups
EXT_TYPES = ("ui", "source", "filter", "kind", "column")
ALIAS_TYPES = EXT_TYPES + ("action",)


class ActionFlags(IntFlag):
    """Follow-up work requested by an action handler."""
    NONE = 0
    REFRESH_ITEMS = 1 << 0
    REDRAW = 1 << 1
    PERSIST = 1 << 2
    RESTORE_CURSOR = 1 << 3


@dataclass
class ActionResult:
    """Handler result carrying a search path besides the flags."""
    flags: ActionFlags = ActionFlags.NONE
    search_path: TreePath = ""


@dataclass
class Action:
    """A described action; kinds may also map names to bare callables."""
    callback: Callable
    description: str = ""


@dataclass
class ItemHighlight:
    name: str
    hl_group: str
    col: int
    width: int


@dataclass
class Item:
    """A single candidate produced by a source."""
    word: str
    display: Optional[str] = None
    action: Any = None  # opaque payload, interpreted by the kind
    data: dict = field(default_factory=dict)
    highlights: list[ItemHighlight] = field(default_factory=list)
    kind: Optional[str] = None
    level: Optional[int] = None
    is_expanded: bool = False
    is_tree: bool = False
    tree_path: Optional[TreePath] = None
    status: Optional[dict] = None


@dataclass
class SiftItem(Item):
    """An item tagged by the engine with matching and provenance data."""
    matcher_key: str = ""
    _source_index: int = 0
    _source_name: str = ""
    _level: int = 0
    _expanded: bool = False
    _column_texts: dict[int, str] = field(default_factory=dict)
    _grouped_path: str = ""


@dataclass
class FilterResult:
    """Filter result that may also rewrite the current input."""
    items: list[SiftItem]
    input: Optional[str] = None


@dataclass
class SourceInfo:
    name: str
    index: int
    path: TreePath
    kind: str


@dataclass
class Context:
    """Per-session state visible to plugins."""
    buf_name: str = ""
    buf_nr: int = 0
    cwd: str = ""
    done: bool = False
    done_ui: bool = False
    input: str = ""
    max_items: int = 0
    mode: str = ""
    path: TreePath = ""
    path_histories: list[TreePath] = field(default_factory=list)
    win_id: int = 0


@dataclass
class Clipboard:
    action: str = "none"
    items: list[SiftItem] = field(default_factory=list)
    mode: str = ""


@dataclass
class ActionHistory:
    actions: list[dict] = field(default_factory=list)


@dataclass
class ExpandItem:
    """Expansion request for one tree item."""
    item: SiftItem
    search: Optional[TreePath] = None
    max_level: Optional[int] = None
    is_grouped: bool = False
    is_in_tree: bool = False


def convert_user_string(user) -> Optional[dict]:
    """Normalize a user extension entry: "name" becomes {"name": "name"}."""
    if user is None:
        return None
    if isinstance(user, str):
        return {"name": user}
    return user
