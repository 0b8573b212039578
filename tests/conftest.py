"""
Shared test fixtures for the sift test suite.

Provides a process-local host rooted in a temporary directory, a real file
tree and settings files on disk (no mocking of the filesystem), a loguru
sink collecting log messages, and small in-memory plugins registered on a
fresh App.
"""

import asyncio

import pytest
import toml
from loguru import logger

from sift.app import App
from sift.base import BaseFilter, BaseKind, BaseSource, BaseUi
from sift.host import LocalHost
from sift.types import Action, ActionFlags, Item


class ListSource(BaseSource):
    """Yields the batches of its "batches" param, in order."""

    kind = "record"

    def __init__(self):
        self.gather_count = 0
        self.init_count = 0

    def on_init(self, args):
        self.init_count += 1

    async def gather(self, args):
        self.gather_count += 1
        for batch in args.source_params["batches"]:
            await asyncio.sleep(args.source_params["delay"])
            yield [
                Item(**entry) if isinstance(entry, dict) else Item(word=entry)
                for entry in batch
            ]

    def params(self) -> dict:
        return {"batches": [], "delay": 0}


class HangingSource(BaseSource):
    """Yields its first batch, then never finishes."""

    kind = "record"

    async def gather(self, args):
        yield [Item(word=word) for word in args.source_params["first"]]
        await asyncio.sleep(3600)

    def params(self) -> dict:
        return {"first": ["hang"]}


class FailingSource(BaseSource):
    kind = "record"

    async def gather(self, args):
        yield [Item(word="before-failure")]
        raise RuntimeError("source exploded")

    def params(self) -> dict:
        return {}


class ReverseFilter(BaseFilter):
    def filter(self, args):
        return list(reversed(args.items))

    def params(self) -> dict:
        return {}


class BrokenFilter(BaseFilter):
    def filter(self, args):
        raise ValueError("filter exploded")

    def params(self) -> dict:
        return {}


class RecordingKind(BaseKind):
    """Records the words each action was invoked with."""

    def __init__(self):
        self.calls = []
        self.actions = {
            "record": Action(self._record, "Record the items"),
            "refresh": self._refresh,
        }

    def _record(self, args):
        self.calls.append(("record", [item.word for item in args.items]))
        return ActionFlags.NONE

    async def _refresh(self, args):
        self.calls.append(("refresh", [item.word for item in args.items]))
        return ActionFlags.REFRESH_ITEMS

    def params(self) -> dict:
        return {}


class RecordingUi(BaseUi):
    """Records every refresh_items and redraw call."""

    def __init__(self):
        self.refreshed = []
        self.redraw_count = 0
        self.quit_count = 0
        self._visible = False
        self.actions = {
            "redrawMe": lambda args: ActionFlags.REDRAW,
        }

    def refresh_items(self, args):
        self.refreshed.append([item.word for item in args.items])

    async def redraw(self, args):
        self.redraw_count += 1
        await asyncio.sleep(args.ui_params["redrawDelay"])
        self._visible = True

    def quit(self, args):
        self.quit_count += 1
        self._visible = False

    def visible(self, args):
        return self._visible

    def win_ids(self, args):
        return [2000] if self._visible else []

    def params(self) -> dict:
        return {"redrawDelay": 0}


@pytest.fixture
def host(tmp_path):
    """LocalHost whose working directory is the test's tmp_path."""
    return LocalHost(cwd=str(tmp_path))


@pytest.fixture
def make_app(host):
    """
    Factory for an App with the in-memory plugins registered.

    Call it inside the running event loop: the App's locks and the gather
    queues belong to that loop.
    """
    def _make():
        app = App(host)
        app.register_extension("source", "list", ListSource)
        app.register_extension("source", "hang", HangingSource)
        app.register_extension("source", "failing", FailingSource)
        app.register_extension("filter", "reverse", ReverseFilter)
        app.register_extension("filter", "broken", BrokenFilter)
        app.register_extension("kind", "record", RecordingKind)
        app.register_extension("ui", "record", RecordingUi)
        return app
    return _make


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during the test."""
    messages = []
    handler_id = logger.add(messages.append, level="DEBUG", format="{message}")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def tmp_tree(tmp_path):
    """Create a small real directory tree."""
    root = tmp_path / "project"
    (root / "src" / "pkg").mkdir(parents=True)
    (root / "docs").mkdir()
    (root / ".git").mkdir()
    (root / "README.md").write_text("# project\n")
    (root / "src" / "main.py").write_text("print('hello')\n")
    (root / "src" / "pkg" / "util.py").write_text("VALUE = 1\n")
    (root / "docs" / "index.md").write_text("docs\n")
    (root / ".git" / "HEAD").write_text("ref: refs/heads/main\n")
    return root


@pytest.fixture
def tmp_settings(tmp_path):
    """Create a real settings TOML file with all sections."""
    settings_path = tmp_path / "settings.toml"
    data = {
        "sift": {"search_paths": [str(tmp_path / "plugins")], "profile": False},
        "global": {
            "ui": "record",
            "sourceOptions": {"_": {"matchers": ["matcher_substring"]}},
        },
        "local": {
            "files": {"sources": ["file_rec"]},
        },
        "alias": {
            "source": {"files": "file_rec"},
            "action": {"edit": "open"},
        },
    }
    settings_path.write_text(toml.dumps(data))
    return settings_path
