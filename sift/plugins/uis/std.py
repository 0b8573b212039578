"""
std - Plain text UI.

Renders the result list into a text stream (stdout by default): a status
line followed by one line per item, selected items marked with "*" and
the cursor line with ">". Keeps its own copy of the items so tree
expansion and collapse work without a full refresh.
"""

import sys

from sift.base.ui import (
    BaseUi,
    ExpandItemArguments,
    ItemArguments,
    RefreshItemsArguments,
    UiActionArguments,
    UiArguments,
    VisibleArguments,
)
from sift.types import Action, ActionFlags, SiftItem
from sift.utils.helpers import convert_tree_path, is_parent_path, item_to_key

WIN_ID = 1001


class Ui(BaseUi):
    def __init__(self):
        self.items: list[SiftItem] = []
        self.selected: set[int] = set()
        self.cursor = 0
        self.lines: list[str] = []
        self._visible = False

        self.actions = {
            "doAction": Action(self._do_action, "Run an item action on the selection"),
            "toggleSelectItem": Action(self._toggle_select_item, "Toggle the cursor item"),
            "cursorNext": Action(self._cursor_next, "Move the cursor down"),
            "cursorPrevious": Action(self._cursor_previous, "Move the cursor up"),
            "quit": Action(self._quit, "Close the UI"),
        }

    def refresh_items(self, args: RefreshItemsArguments) -> None:
        self.items = list(args.items[:args.ui_params["maxItems"]])
        self.selected.clear()
        self._clamp_cursor()

    def expand_item(self, args: ExpandItemArguments) -> int:
        index = self._index_of(args.parent)
        if index < 0:
            return 0

        if args.is_grouped:
            # The single child replaces its parent
            self.items[index:index + 1] = args.children
        else:
            self.items[index:index + 1] = [args.parent] + args.children
        return len(args.children)

    def collapse_item(self, args: ItemArguments) -> int:
        parent_path = convert_tree_path(args.item.tree_path)
        before = len(self.items)
        self.items = [
            item for item in self.items
            if not (
                item.tree_path
                and is_parent_path(parent_path, convert_tree_path(item.tree_path))
            )
        ]
        self._clamp_cursor()
        return before - len(self.items)

    def search_item(self, args: ItemArguments) -> None:
        index = self._index_of(args.item)
        if index >= 0:
            self.cursor = index

    def clear_selected_items(self, args: UiArguments) -> None:
        self.selected.clear()

    def redraw(self, args: UiArguments) -> None:
        status = "" if args.context.done else " ..."
        header = (
            f"[{args.options['name']}] {args.context.input}"
            f" ({len(self.items)}/{args.context.max_items}){status}"
        )

        self.lines = [header] + [
            "{}{}{}".format(
                ">" if index == self.cursor else " ",
                "*" if index in self.selected else " ",
                item.display or item.word,
            )
            for index, item in enumerate(self.items)
        ]

        stream = args.ui_params["stream"] or sys.stdout
        stream.write("\n".join(self.lines) + "\n")
        stream.flush()

        self._visible = True

    def quit(self, args: UiArguments) -> None:
        self._visible = False

    def visible(self, args: VisibleArguments) -> bool:
        return self._visible

    def win_ids(self, args: UiArguments) -> list[int]:
        return [WIN_ID] if self._visible else []

    def params(self) -> dict:
        return {
            "maxItems": 1000,
            "stream": None,
        }

    def _index_of(self, target: SiftItem) -> int:
        key = item_to_key(target)
        for index, item in enumerate(self.items):
            if item_to_key(item) == key:
                return index
        return -1

    def _clamp_cursor(self) -> None:
        self.cursor = max(0, min(self.cursor, len(self.items) - 1))

    async def _do_action(self, args: UiActionArguments) -> ActionFlags:
        if self.selected:
            items = [self.items[index] for index in sorted(self.selected)]
        elif self.items:
            items = [self.items[self.cursor]]
        else:
            return ActionFlags.NONE

        params = args.action_params or {}
        await args.session.item_action(
            params.get("name", "default"),
            items,
            params.get("params", {}),
        )
        return ActionFlags.NONE

    def _toggle_select_item(self, args: UiActionArguments) -> ActionFlags:
        if not self.items:
            return ActionFlags.NONE

        if self.cursor in self.selected:
            self.selected.remove(self.cursor)
        else:
            self.selected.add(self.cursor)
        return ActionFlags.REDRAW

    def _cursor_next(self, args: UiActionArguments) -> ActionFlags:
        self.cursor += 1
        self._clamp_cursor()
        return ActionFlags.REDRAW

    def _cursor_previous(self, args: UiActionArguments) -> ActionFlags:
        self.cursor -= 1
        self._clamp_cursor()
        return ActionFlags.REDRAW

    def _quit(self, args: UiActionArguments) -> ActionFlags:
        self.quit(args)
        if args.session is not None:
            args.session.quit()
        return ActionFlags.NONE
