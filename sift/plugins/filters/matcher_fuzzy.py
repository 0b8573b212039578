"""
matcher_fuzzy - Typo tolerant matching with rapidfuzz.

Scores each item's matcher key against the input with the weighted ratio
and drops items below the threshold. Matches are ordered by score unless
the sort param is off.
"""

from rapidfuzz import fuzz, process

from sift.base.filter import BaseFilter, FilterArguments


class Filter(BaseFilter):
    def filter(self, args: FilterArguments):
        if not args.input.strip():
            return args.items

        choices = {index: item.matcher_key for index, item in enumerate(args.items)}

        matches = process.extract(
            args.input,
            choices,
            scorer=fuzz.WRatio,
            limit=None,
            score_cutoff=args.filter_params["threshold"],
        )

        # matches: list of (matched_string, score, key)
        indexes = [index for _matched, _score, index in matches]
        if not args.filter_params["sort"]:
            indexes.sort()
        return [args.items[index] for index in indexes]

    def params(self) -> dict:
        return {
            "sort": True,
            "threshold": 50,
        }
