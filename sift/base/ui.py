"""
UI base class - Renders the result list and exposes UI-level actions.

Every hook has a harmless default; a UI only needs its actions map and
params(). Hooks may be plain functions or coroutines.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping, Optional

from sift.host import Host
from sift.types import Context, SiftItem, SourceInfo


@dataclass
class UiInitArguments:
    host: Host
    ui_options: dict
    ui_params: dict


@dataclass
class UiHookArguments:
    """Arguments of on_before_action and on_after_action."""
    host: Host
    ui_options: dict
    ui_params: dict


@dataclass
class UiArguments:
    """Arguments shared by redraw, quit, win_ids and update_cursor."""
    host: Host
    context: Context
    options: dict
    ui_options: dict
    ui_params: dict


@dataclass
class RefreshItemsArguments(UiArguments):
    sources: list[SourceInfo] = None
    items: list[SiftItem] = None


@dataclass
class ExpandItemArguments(UiArguments):
    parent: SiftItem = None
    children: list[SiftItem] = None
    is_grouped: bool = False


@dataclass
class ItemArguments(UiArguments):
    """Arguments of collapse_item and search_item."""
    item: SiftItem = None


@dataclass
class VisibleArguments(UiArguments):
    tab_nr: int = 0


@dataclass
class UiActionArguments(UiArguments):
    session: Any = None
    action_params: Optional[dict] = None


class BaseUi(ABC):
    """Base class for all UIs."""

    name = ""
    path = ""
    is_initialized = False
    prev_done = False

    # Instances that add actions assign their own mapping
    actions: Mapping[str, Any] = MappingProxyType({})

    def on_init(self, args: UiInitArguments) -> None:
        pass

    def on_before_action(self, args: UiHookArguments) -> None:
        pass

    def on_after_action(self, args: UiHookArguments) -> None:
        pass

    def refresh_items(self, args: RefreshItemsArguments) -> None:
        pass

    def collapse_item(self, args: ItemArguments) -> int:
        return 0

    def expand_item(self, args: ExpandItemArguments) -> int:
        return 0

    def search_item(self, args: ItemArguments) -> None:
        pass

    def redraw(self, args: UiArguments) -> None:
        pass

    def quit(self, args: UiArguments) -> None:
        pass

    def visible(self, args: VisibleArguments) -> bool:
        return False

    def win_ids(self, args: UiArguments) -> list[int]:
        return []

    def update_cursor(self, args: UiArguments) -> None:
        pass

    @abstractmethod
    def params(self) -> dict:
        ...


def default_ui_options() -> dict:
    return {
        "actions": {},
        "defaultAction": "default",
        "persist": False,
        "toggle": False,
    }
