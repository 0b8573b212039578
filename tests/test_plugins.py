"""
Tests for the built-in plugins.

Sources run against a real directory tree; the std UI renders into an
in-memory stream.
"""

import asyncio
import io
import os

from sift.plugins.kinds import file as file_kind
from sift.types import ExpandItem


def _words(items):
    return [item.word for item in items]


def _file_rec(path, **params):
    return {"name": "file_rec", "options": {"path": str(path)}, "params": params}


class TestFileRecSource:
    """file_rec walks a directory recursively."""

    def test_lists_files_and_skips_git(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({"sources": [_file_rec(tmp_tree)]})

        items = asyncio.run(scenario())

        assert _words(items) == [
            "README.md",
            os.path.join("docs", "index.md"),
            os.path.join("src", "main.py"),
            os.path.join("src", "pkg", "util.py"),
        ]
        assert items[0].action == {"path": str(tmp_tree / "README.md")}
        assert items[0].kind == "file"

    def test_small_chunks_keep_every_file(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({"sources": [_file_rec(tmp_tree, chunkSize=1)]})

        assert len(asyncio.run(scenario())) == 4

    def test_defaults_to_session_path(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({"sources": ["file_rec"]})

        words = _words(asyncio.run(scenario()))
        assert os.path.join("project", "README.md") in words

    def test_fuzzy_matching_over_paths(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({
                "input": "util",
                "sources": [_file_rec(tmp_tree)],
                "sourceOptions": {"_": {"matchers": ["matcher_fuzzy"]}},
            })

        assert _words(asyncio.run(scenario()))[0] == os.path.join("src", "pkg", "util.py")


class TestFileSource:
    """file lists one directory as tree items."""

    def test_directories_first(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({
                "sources": [{"name": "file", "options": {"path": str(tmp_tree)}}],
            })

        items = asyncio.run(scenario())

        assert _words(items) == ["docs" + os.sep, "src" + os.sep, "README.md"]
        assert items[0].is_tree
        assert items[0].tree_path == str(tmp_tree / "docs")
        assert not items[2].is_tree

    def test_show_hidden(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({
                "sources": [{
                    "name": "file",
                    "options": {"path": str(tmp_tree)},
                    "params": {"showHidden": True},
                }],
            })

        assert ".git" + os.sep in _words(asyncio.run(scenario()))

    def test_missing_directory_is_logged(self, make_app, tmp_path, log_messages):
        async def scenario():
            return await make_app().get_items({
                "sources": [{"name": "file", "options": {"path": str(tmp_path / "nope")}}],
            })

        assert asyncio.run(scenario()) == []
        assert "Cannot list directory" in "".join(log_messages)


class TestLineSource:
    def test_lines_param(self, make_app):
        async def scenario():
            return await make_app().get_items({
                "sources": [{"name": "line", "params": {"lines": ["first", "second"]}}],
            })

        items = asyncio.run(scenario())

        assert _words(items) == ["first", "second"]
        assert items[1].action["lineNr"] == 2

    def test_lines_of_file(self, make_app, tmp_tree):
        async def scenario():
            return await make_app().get_items({
                "sources": [{"name": "line", "params": {"path": str(tmp_tree / "README.md")}}],
            })

        assert _words(asyncio.run(scenario())) == ["# project"]

    def test_unreadable_file_is_logged(self, make_app, tmp_path, log_messages):
        async def scenario():
            return await make_app().get_items({
                "sources": [{"name": "line", "params": {"path": str(tmp_path / "missing.txt")}}],
            })

        assert asyncio.run(scenario()) == []
        assert "Cannot read" in "".join(log_messages)


class TestStdUi:
    """The std UI renders, selects and runs actions."""

    def _options(self, stream, source, **extra):
        return {
            "ui": "std",
            "uiParams": {"std": {"stream": stream}},
            "sources": [source],
            **extra,
        }

    def test_renders_items(self, make_app, tmp_tree):
        stream = io.StringIO()

        async def scenario():
            app = make_app()
            await app.start(self._options(stream, _file_rec(tmp_tree)))
            return app.loader.get_ui("default", "std")

        ui = asyncio.run(scenario())

        assert ui.lines[0] == "[default]  (4/4)"
        assert ui.lines[1] == "> README.md"
        assert "\n".join(ui.lines) in stream.getvalue()

    def test_max_items_limits_rendered_items(self, make_app, tmp_tree):
        stream = io.StringIO()

        async def scenario():
            app = make_app()
            await app.start({
                **self._options(stream, _file_rec(tmp_tree)),
                "uiParams": {"std": {"stream": stream, "maxItems": 2}},
            })
            return app.loader.get_ui("default", "std")

        assert len(asyncio.run(scenario()).items) == 2

    def test_select_and_yank(self, make_app, tmp_tree):
        stream = io.StringIO()

        async def scenario():
            app = make_app()
            await app.start(self._options(stream, _file_rec(tmp_tree)))
            await app.ui_action("default", "cursorNext")
            await app.ui_action("default", "toggleSelectItem")
            selected_line = app.loader.get_ui("default", "std").lines[2]
            await app.ui_action("default", "doAction", {"name": "yank"})
            return app, selected_line

        app, selected_line = asyncio.run(scenario())
        ui = app.loader.get_ui("default", "std")

        assert selected_line.startswith(">*")
        assert app.clipboard.action == "yank"
        assert _words(app.clipboard.items) == [os.path.join("docs", "index.md")]
        # Yank persists the UI and clears the selection
        assert ui.visible(None)
        assert not ui.selected

    def test_quit_action(self, make_app, tmp_tree):
        stream = io.StringIO()

        async def scenario():
            app = make_app()
            await app.start(self._options(stream, _file_rec(tmp_tree)))
            await app.ui_action("default", "quit")
            return app

        app = asyncio.run(scenario())

        assert app.get_session("default").quitted
        assert not app.loader.get_ui("default", "std").visible(None)

    def test_expand_and_collapse_tree(self, make_app, tmp_tree):
        stream = io.StringIO()
        source = {"name": "file", "options": {"path": str(tmp_tree)}}

        async def scenario():
            app = make_app()
            await app.start(self._options(
                stream, source, sourceOptions={"_": {"columns": ["filename"]}},
            ))
            session = app.get_session("default")
            ui = app.loader.get_ui("default", "std")
            src = next(item for item in session.get_items() if item.word == "src" + os.sep)

            await app.redraw_tree("default", "expand", [ExpandItem(item=src)])
            expanded = (_words(ui.items), src.display, session.get_context().max_items)

            await app.redraw_tree("default", "collapse", [ExpandItem(item=src)])
            collapsed = (_words(ui.items), src.display, session.get_context().max_items)
            return expanded, collapsed

        expanded, collapsed = asyncio.run(scenario())

        assert expanded == (
            ["docs" + os.sep, "src" + os.sep, "pkg" + os.sep, "main.py", "README.md"],
            "- src" + os.sep,
            5,
        )
        assert collapsed == (
            ["docs" + os.sep, "src" + os.sep, "README.md"],
            "+ src" + os.sep,
            3,
        )

    def test_tree_expansion_releases_gather_states(self, make_app, tmp_tree):
        stream = io.StringIO()
        source = {"name": "file", "options": {"path": str(tmp_tree)}}

        async def scenario():
            app = make_app()
            await app.start(self._options(stream, source))
            session = app.get_session("default")
            src = next(item for item in session.get_items() if item.word == "src" + os.sep)

            for _ in range(10):
                await app.redraw_tree("default", "expand", [ExpandItem(item=src)])
                await app.redraw_tree("default", "collapse", [ExpandItem(item=src)])
            return session

        session = asyncio.run(scenario())

        assert session.cancelled.children == []

    def test_redraw_restores_expanded_tree(self, make_app, tmp_tree):
        stream = io.StringIO()
        source = {"name": "file", "options": {"path": str(tmp_tree)}}

        async def scenario():
            app = make_app()
            await app.start(self._options(stream, source))
            session = app.get_session("default")
            src = next(item for item in session.get_items() if item.word == "src" + os.sep)
            await app.redraw_tree("default", "expand", [ExpandItem(item=src)])

            await app.redraw("default")
            return _words(app.loader.get_ui("default", "std").items)

        assert "main.py" in asyncio.run(scenario())


class TestFileKind:
    """open, yank and cd on file items."""

    def _start(self, app, tmp_tree, **extra):
        return app.start({
            "ui": "record",
            "sources": [_file_rec(tmp_tree)],
            **extra,
        })

    def test_open_runs_command(self, make_app, tmp_tree, monkeypatch):
        calls = []
        monkeypatch.setattr(
            file_kind.subprocess, "Popen", lambda command, **kwargs: calls.append(command),
        )

        async def scenario():
            app = make_app()
            await self._start(app, tmp_tree, kindParams={"file": {"openCommand": "my-open"}})
            items = app.get_session("default").get_items()
            await app.item_action("default", "open", items[:1])

        asyncio.run(scenario())
        assert calls == [["my-open", str(tmp_tree / "README.md")]]

    def test_open_failure_is_logged(self, make_app, tmp_tree, monkeypatch, log_messages):
        def failing_popen(command, **kwargs):
            raise OSError("no such command")

        monkeypatch.setattr(file_kind.subprocess, "Popen", failing_popen)

        async def scenario():
            app = make_app()
            await self._start(app, tmp_tree)
            items = app.get_session("default").get_items()
            await app.item_action("default", "open", items[:1])

        asyncio.run(scenario())
        assert "Failed to open" in "".join(log_messages)

    def test_default_action_is_open(self, make_app, tmp_tree, monkeypatch):
        calls = []
        monkeypatch.setattr(
            file_kind.subprocess, "Popen", lambda command, **kwargs: calls.append(command),
        )

        async def scenario():
            app = make_app()
            await self._start(app, tmp_tree, kindOptions={"file": {"defaultAction": "open"}})
            items = app.get_session("default").get_items()
            await app.item_action("default", "default", items[:1])

        asyncio.run(scenario())
        assert len(calls) == 1

    def test_cd_narrows_source_path(self, make_app, tmp_tree):
        async def scenario():
            app = make_app()
            await self._start(app, tmp_tree)
            session = app.get_session("default")
            main = next(item for item in session.get_items() if item.word.endswith("main.py"))
            await app.item_action("default", "cd", [main])
            return session

        session = asyncio.run(scenario())
        context = session.get_context()

        assert _words(session.get_items()) == ["main.py", os.path.join("pkg", "util.py")]
        assert context.path == str(tmp_tree / "src")
        assert context.path_histories[-1] == str(tmp_tree)

    def test_cd_outside_limit_path_is_ignored(self, make_app, tmp_tree):
        async def scenario():
            app = make_app()
            await self._start(
                app, tmp_tree,
                sourceOptions={"file_rec": {"limitPath": str(tmp_tree / "docs")}},
            )
            session = app.get_session("default")
            main = next(item for item in session.get_items() if item.word.endswith("main.py"))
            await app.item_action("default", "cd", [main])
            return session

        session = asyncio.run(scenario())

        assert len(session.get_items()) == 4
        assert session.get_context().path == str(tmp_tree)

    def test_base_kind_has_no_actions(self, make_app):
        async def scenario():
            app = make_app()
            await app.start({
                "ui": "record",
                "sources": [{"name": "list", "params": {"batches": [[{"word": "a", "kind": "base"}]]}}],
            })
            items = app.get_session("default").get_items()
            return await app.get_item_action_names("default", items)

        assert asyncio.run(scenario()) == []

    def test_previewer_of_line_item(self, make_app, tmp_tree):
        readme = str(tmp_tree / "README.md")

        async def scenario():
            app = make_app()
            await app.start({
                "ui": "record",
                "sources": [{"name": "line", "params": {"path": readme}}],
            })
            item = app.get_session("default").get_items()[0]
            return await app.get_previewer("default", item)

        assert asyncio.run(scenario()) == {"kind": "buffer", "path": readme, "lineNr": 1}

    def test_kind_without_previewer(self, make_app):
        async def scenario():
            app = make_app()
            await app.start({
                "ui": "record",
                "sources": [{"name": "list", "params": {"batches": [["a"]]}}],
            })
            item = app.get_session("default").get_items()[0]
            return await app.get_previewer("default", item)

        assert asyncio.run(scenario()) is None
