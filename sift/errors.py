"""
Error types raised by the engine and by well-behaved plugins.

Configuration errors abort a single call and are reported on the
diagnostic channel. RedrawNotAllowedError is raised by a UI when the host
is in a state where drawing is impossible; the engine defers the redraw.
"""


class SiftError(Exception):
    """Base class for all sift errors."""


class ConfigurationError(SiftError):
    """Invalid options or an unusable user configuration."""


class ExtensionNotFoundError(ConfigurationError):
    def __init__(self, ext_type: str, name: str):
        super().__init__(f"Not found {ext_type}: {name}")
        self.ext_type = ext_type
        self.name = name


class ExtensionLoadError(SiftError):
    """A plugin module could not be imported or does not export its class."""


class MixedSelectionError(ConfigurationError):
    """Selected items span several sources or several kinds."""


class UndefinedActionError(ConfigurationError):
    """No action could be resolved for the selected items."""


class RedrawNotAllowedError(SiftError):
    """The host refused a redraw in its current state; retry later."""
