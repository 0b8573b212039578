"""
matcher_substring - Keep items containing every word of the input.

Honors the ignoreCase and smartCase source options; with smartCase an
input containing an upper case letter is matched case sensitively.
"""

from sift.base.filter import BaseFilter, FilterArguments


class Filter(BaseFilter):
    def filter(self, args: FilterArguments):
        ignore_case = args.source_options["ignoreCase"] and not (
            args.source_options["smartCase"] and args.input != args.input.lower()
        )

        words = args.input.split()
        if ignore_case:
            words = [word.lower() for word in words]

        items = args.items
        for word in words:
            if ignore_case:
                items = [item for item in items if word in item.matcher_key.lower()]
            else:
                items = [item for item in items if word in item.matcher_key]
        return items

    def params(self) -> dict:
        return {}
