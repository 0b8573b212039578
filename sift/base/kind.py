"""
Kind base class - Actions applicable to items of one semantic type.

An action is a callable (or an Action wrapping one) taking ActionArguments
and returning ActionFlags or an ActionResult. It may be a coroutine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from sift.host import Host
from sift.types import ActionHistory, Clipboard, Context, SiftItem


@dataclass
class ActionArguments:
    host: Host
    context: Context
    options: dict
    source_options: dict
    source_params: dict
    kind_options: dict
    kind_params: dict
    action_params: dict
    items: list[SiftItem]
    clipboard: Clipboard = field(default_factory=Clipboard)
    action_history: ActionHistory = field(default_factory=ActionHistory)
    session: Any = None


@dataclass
class GetPreviewerArguments:
    host: Host
    options: dict
    action_params: dict
    item: SiftItem


class BaseKind(ABC):
    """Base class for all kinds."""

    name = ""
    path = ""
    is_initialized = False

    # Instances that add actions assign their own mapping
    actions: Mapping[str, Any] = MappingProxyType({})

    @abstractmethod
    def params(self) -> dict:
        ...

    def get_previewer(self, args: GetPreviewerArguments) -> Optional[dict]:
        return None


def default_kind_options() -> dict:
    return {
        "actions": {},
        "defaultAction": "",
    }


def default_action_options() -> dict:
    return {
        "quit": True,
    }
