"""
Column base class - One segment of a rendered line.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from sift.host import Host
from sift.types import Context, ItemHighlight, SiftItem


@dataclass
class ColumnInitArguments:
    host: Host
    column_options: dict
    column_params: dict


@dataclass
class GetBaseTextArguments:
    host: Host
    context: Context
    options: dict
    column_options: dict
    column_params: dict
    item: SiftItem


@dataclass
class GetLengthArguments:
    host: Host
    context: Context
    options: dict
    column_options: dict
    column_params: dict
    items: list[SiftItem]


@dataclass
class GetTextArguments:
    host: Host
    context: Context
    options: dict
    column_options: dict
    column_params: dict
    start_col: int
    end_col: int
    item: SiftItem
    base_text: Optional[str] = None


@dataclass
class GetTextResult:
    text: str
    highlights: list[ItemHighlight] = field(default_factory=list)


class BaseColumn(ABC):
    """
    Base class for all columns.

    get_length() is computed over every collected item, not only the
    visible ones, so the column width stays stable while scrolling.
    get_base_text() is cached per item by the engine.
    """

    name = ""
    path = ""
    is_initialized = False

    def on_init(self, args: ColumnInitArguments) -> None:
        pass

    def get_base_text(self, args: GetBaseTextArguments) -> str:
        return args.item.word

    @abstractmethod
    def get_length(self, args: GetLengthArguments) -> int:
        ...

    @abstractmethod
    def get_text(self, args: GetTextArguments) -> GetTextResult:
        ...

    @abstractmethod
    def params(self) -> dict:
        ...


def default_column_options() -> dict:
    return {
        "placeholder": None,
    }
