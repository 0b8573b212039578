"""
filename - Tree indentation, expand icon and the item word.
"""

from sift.base.column import BaseColumn, GetLengthArguments, GetTextArguments, GetTextResult


class Column(BaseColumn):
    def get_length(self, args: GetLengthArguments) -> int:
        if not args.items:
            return 0
        return max(item._level + 2 + len(item.word) for item in args.items)

    def get_text(self, args: GetTextArguments) -> GetTextResult:
        item = args.item
        if not isinstance(item.action, dict) or not item.action.get("isDirectory"):
            icon = " "
        elif item._expanded:
            icon = args.column_params["expandedIcon"]
        else:
            icon = args.column_params["collapsedIcon"]

        text = " " * item._level + icon + " " + (args.base_text or item.word)
        return GetTextResult(text=text)

    def params(self) -> dict:
        return {
            "collapsedIcon": "+",
            "expandedIcon": "-",
        }
