# Sift Plugin Base Classes
"""
Base classes for sift plugins.

Plugins subclass one of these, but the loader accepts any object that
provides the same methods.
"""

from .column import BaseColumn, GetTextResult, default_column_options
from .filter import BaseFilter, default_filter_options
from .kind import BaseKind, default_action_options, default_kind_options
from .source import BaseSource, default_source_options
from .ui import BaseUi, default_ui_options

__all__ = [
    "BaseColumn",
    "BaseFilter",
    "BaseKind",
    "BaseSource",
    "BaseUi",
    "GetTextResult",
    "default_action_options",
    "default_column_options",
    "default_filter_options",
    "default_kind_options",
    "default_source_options",
    "default_ui_options",
]
