"""
Filter base class - Matchers, sorters and converters.

A filter receives a copy of the collected items and returns either a new
list or a FilterResult that may also rewrite the input.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Union

from sift.host import Host
from sift.types import Context, FilterResult, SiftItem


@dataclass
class FilterInitArguments:
    host: Host
    filter_options: dict
    filter_params: dict


@dataclass
class OnRefreshItemsArguments:
    host: Host
    filter_options: dict
    filter_params: dict


@dataclass
class FilterArguments:
    host: Host
    context: Context
    options: dict
    source_options: dict
    filter_options: dict
    filter_params: dict
    input: str
    items: list[SiftItem]


class BaseFilter(ABC):
    """Base class for all filters."""

    name = ""
    path = ""
    is_initialized = False

    def on_init(self, args: FilterInitArguments) -> None:
        pass

    def on_refresh_items(self, args: OnRefreshItemsArguments) -> None:
        pass

    @abstractmethod
    def filter(self, args: FilterArguments) -> Union[list[SiftItem], FilterResult]:
        ...

    @abstractmethod
    def params(self) -> dict:
        ...


def default_filter_options() -> dict:
    return {
        "minInputLength": 0,
    }
