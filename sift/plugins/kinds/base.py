"""
base - Kind without actions.
"""

from sift.base.kind import BaseKind


class Kind(BaseKind):
    def params(self) -> dict:
        return {}
