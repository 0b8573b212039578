"""
Source base class - Producers of candidate items.

A source's gather() returns an async iterator of item batches. The stream
is lazy, finite and not restartable: the engine calls gather() again to
regather.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, AsyncIterator, Mapping, Optional

from sift.host import Host
from sift.types import Context, Item, SiftItem


@dataclass
class SourceInitArguments:
    host: Host
    source_options: dict
    source_params: dict


@dataclass
class SourceEventArguments:
    host: Host
    source_options: dict
    source_params: dict
    event: str


@dataclass
class GatherArguments:
    host: Host
    context: Context
    options: dict
    source_options: dict
    source_params: dict
    input: str
    parent: Optional[SiftItem] = None


@dataclass
class CheckUpdatedArguments:
    host: Host
    context: Context
    options: dict
    source_options: dict
    source_params: dict


class BaseSource(ABC):
    """Base class for all sources."""

    name = ""
    path = ""
    is_initialized = False

    kind = "base"
    # Instances that add actions assign their own mapping
    actions: Mapping[str, Any] = MappingProxyType({})

    def on_init(self, args: SourceInitArguments) -> None:
        pass

    def on_event(self, args: SourceEventArguments) -> None:
        pass

    def check_updated(self, args: CheckUpdatedArguments) -> bool:
        return False

    @abstractmethod
    def gather(self, args: GatherArguments) -> AsyncIterator[list[Item]]:
        """Return an async iterator of item batches."""
        ...

    @abstractmethod
    def params(self) -> dict:
        """Default params of this source."""
        ...


def default_source_options() -> dict:
    return {
        "actions": {},
        "columns": [],
        "converters": [],
        "defaultAction": "",
        "ignoreCase": False,
        "limitPath": "",
        "matcherKey": "word",
        "matchers": [],
        "maxItems": 10000,
        "path": "",
        "preview": True,
        "smartCase": False,
        "sorters": [],
        "volatile": False,
    }
