# Sift Utilities Package
"""
Shared utility functions and helpers for the sift engine.
"""

from .helpers import load_settings, maybe_await, report_error

__all__ = ["load_settings", "maybe_await", "report_error"]
