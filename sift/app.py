"""
App - Command surface of the engine.

An App owns the plugin loader, the options store, the shared clipboard and
action history, and a stack of sessions per session name. Commands that
start or redraw sessions are serialized by one lock; queued redraw
commands are coalesced so only the latest one runs.
"""

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Union

from loguru import logger

from sift import config
from sift.base.column import default_column_options
from sift.base.filter import default_filter_options
from sift.base.kind import default_action_options, default_kind_options
from sift.base.source import default_source_options
from sift.base.ui import default_ui_options
from sift.errors import ConfigurationError
from sift.ext import (
    get_filter,
    get_item_action,
    get_item_actions,
    get_previewer,
    ui_search_item,
)
from sift.host import Host, LocalHost
from sift.loader import Loader
from sift.options import ContextBuilder, default_sift_options, fold_merge, merge_sift_options
from sift.session import Session
from sift.types import ActionHistory, Clipboard, Context, ExpandItem, SiftItem
from sift.utils.helpers import load_settings, report_error


@dataclass
class RedrawCommand:
    # Skip the redraw unless a source reports an update
    check: bool = False
    input: Optional[str] = None
    # "refresh_items", "ui_redraw" or None for a plain redraw
    method: Optional[str] = None
    search_item: Optional[SiftItem] = None


class App:
    """Dispatches commands to named sessions."""

    def __init__(
        self,
        host: Optional[Host] = None,
        search_paths: Optional[Iterable[Union[str, Path]]] = None,
    ):
        self.host = host or LocalHost()
        self.loader = Loader(search_paths)
        self.context_builder = ContextBuilder()
        self.clipboard = Clipboard()
        self.action_history = ActionHistory()

        self._sessions: dict[str, list[Session]] = {}
        self._lock = asyncio.Lock()
        self._redraw_lock = asyncio.Lock()
        self._queued_redraw: Optional[tuple[str, RedrawCommand]] = None

        if isinstance(self.host, LocalHost) and self.host.on_lazy_redraw is None:
            self.host.on_lazy_redraw = self.redraw

    @classmethod
    def from_settings(
        cls,
        settings_path: Optional[Path] = None,
        host: Optional[Host] = None,
    ) -> "App":
        """Create an App configured from a TOML settings file."""
        app = cls(host)
        config.apply_settings(load_settings(settings_path), app.loader, app.context_builder)
        return app

    def _check_session(self, name: str) -> bool:
        self._sessions.setdefault(name, [])
        return len(self._sessions[name]) != 0

    def get_session(self, name: str) -> Session:
        if not self._check_session(name):
            self._sessions[name].append(self._new_session())
        return self._sessions[name][-1]

    def push_session(self, name: str) -> Session:
        self._check_session(name)
        self._sessions[name].append(self._new_session())
        return self._sessions[name][-1]

    def pop_session(self, name: str) -> Optional[Session]:
        if not self._check_session(name):
            return None
        return self._sessions[name].pop()

    def _new_session(self) -> Session:
        return Session(
            self.host, self.loader, self._redraw_lock, self.clipboard, self.action_history,
        )

    def alias(self, kind: str, alias: str, base: str) -> None:
        self.loader.register_alias(kind, alias, base)

    async def register_path(self, kind: str, path: Union[str, Path]) -> None:
        await self.loader.register_path(kind, path)

    def register_extension(self, kind: str, name: str, factory: Callable[[], Any]) -> None:
        self.loader.register_extension(kind, name, factory)

    def set_global(self, options: dict) -> None:
        self.context_builder.set_global(options)

    def set_local(self, name: str, options: dict) -> None:
        self.context_builder.set_local(name, options)

    def patch_global(self, options: dict) -> None:
        self.context_builder.patch_global(options)

    def patch_local(self, name: str, options: dict) -> None:
        self.context_builder.patch_local(name, options)

    def get_global(self) -> dict:
        return self.context_builder.get_global()

    def get_local(self) -> dict[str, dict]:
        return self.context_builder.get_local()

    def get_default_options(self) -> dict:
        options = default_sift_options()
        options.update({
            "actionOptions": default_action_options(),
            "columnOptions": default_column_options(),
            "filterOptions": default_filter_options(),
            "kindOptions": default_kind_options(),
            "sourceOptions": default_source_options(),
            "uiOptions": default_ui_options(),
        })
        return options

    async def get_current(self, name: str) -> dict:
        return await self.get_session(name).get_current_options()

    def get_context(self, name: str) -> Context:
        return self.get_session(name).get_context()

    def get_names(self) -> list[str]:
        names = list(self.context_builder.get_local())
        names += [name for name in self._sessions if name not in names]
        return names

    def get_source_names(self) -> list[str]:
        return self.loader.get_source_names()

    def get_alias_names(self, kind: str) -> list[str]:
        return self.loader.get_alias_names(kind)

    async def load_config(self, path: Union[str, Path]) -> None:
        """Load a .toml or .py config; start() waits until it finished."""
        async with self._lock:
            try:
                await config.load_config(path, self.host, self.loader, self.context_builder)
            except Exception as e:
                logger.error(f"Failed to load file '{path}': {e}")
                raise

    async def load_extensions(self, kind: str, names: Iterable[str]) -> None:
        for name in names:
            await self.loader.autoload(kind, name)

    async def start(self, user_options: Optional[dict] = None) -> None:
        """
        Start a session.

        Errors are logged and never raised to the caller.
        """
        user_options = dict(user_options or {})
        async with self._lock:
            try:
                await self._start(user_options)
            except Exception as e:
                report_error("Failed to start the session", e)

    async def _start(self, user_options: dict) -> None:
        context, options = await self.context_builder.get(self.host, user_options)

        if options["push"] and self._check_session(options["name"]):
            prev_session = self.get_session(options["name"])
            session = self.push_session(options["name"])

            # Extends previous options
            prev_options = {**prev_session.get_options(), "input": ""}
            user_options = fold_merge(
                merge_sift_options, default_sift_options, [prev_options, user_options],
            )
            context, options = await self.context_builder.get(self.host, user_options)
        else:
            session = self.get_session(options["name"])

        await session.start(context, options, user_options)

    async def get_items(self, user_options: Optional[dict] = None) -> list[SiftItem]:
        """Gather synchronously without a UI and return the filtered items."""
        items: list[SiftItem] = []

        async with self._lock:
            user_options = dict(user_options or {})
            user_options["ui"] = ""
            user_options["sync"] = True

            context, options = await self.context_builder.get(self.host, user_options)

            session = self.get_session(options["name"])
            await session.start(context, options, user_options)

            items = session.get_items()

        return items

    async def redraw(
        self,
        name: str,
        check: bool = False,
        input: Optional[str] = None,
        method: Optional[str] = None,
        search_item: Optional[SiftItem] = None,
    ) -> None:
        """Queue a redraw of name; queued commands collapse to the latest."""
        self._queued_redraw = (name, RedrawCommand(check, input, method, search_item))

        async with self._lock:
            while self._queued_redraw is not None:
                name, command = self._queued_redraw
                self._queued_redraw = None

                session = self.get_session(name)

                if command.check and not await session.check_updated():
                    continue

                if command.input is not None:
                    await session.set_input(command.input)

                volatiles = [
                    index for index, (source_options, _) in enumerate(session.get_source_args())
                    if source_options["volatile"]
                ]

                if volatiles or command.method == "refresh_items":
                    await session.refresh(
                        () if command.method == "refresh_items" else volatiles,
                    )
                elif command.method == "ui_redraw":
                    await session.ui_redraw()
                else:
                    await session.redraw()
                await session.restore_tree()

                if command.search_item is not None:
                    await ui_search_item(
                        self.host,
                        self.loader,
                        session.get_context(),
                        session.get_options(),
                        command.search_item,
                    )

    async def redraw_tree(self, name: str, mode: str, items: list[ExpandItem]) -> None:
        session = self.get_session(name)

        if mode == "collapse":
            await session.collapse_items([expand.item for expand in items])
        elif mode == "expand":
            await session.expand_items(items)

    async def update_options(self, name: str, user_options: dict) -> None:
        session = self.get_session(name)

        # The previous execution may be frozen
        await session.cancel_to_refresh()

        if user_options.get("ui") and user_options["ui"] != session.get_options()["ui"]:
            await session.restart(user_options)
        else:
            await session.update_options(user_options)

    async def event(self, name: str, event: str) -> None:
        session = self.get_session(name)

        if event in ("close", "cancel"):
            session.quit()

        await session.on_event(event)

    async def pop(self, name: str, quit: bool = False) -> None:
        """Drop the top session of name and resume the one below it."""
        if not self._check_session(name):
            return

        depth = len(self._sessions[name])
        current = self.pop_session(name) if depth > 1 else self.get_session(name)
        if current is None:
            return

        if depth <= 1 or quit:
            current.quit()
            await current.on_event("cancel")
            return

        session = self.get_session(name)
        user_options = fold_merge(
            merge_sift_options, default_sift_options,
            [session.get_options(), {"refresh": True, "resume": True}],
        )
        context, options = await self.context_builder.get(self.host, user_options)
        await session.start(context, options, user_options)

    async def ui_action(
        self,
        name: str,
        action_name: str,
        params: Optional[dict] = None,
    ) -> None:
        session = self.get_session(name)
        if session.get_options()["ui"] != "":
            await session.ui_action(action_name, params or {})

    async def item_action(
        self,
        name: str,
        action_name: str,
        items: list[SiftItem],
        params: Optional[dict] = None,
    ) -> None:
        session = self.get_session(name)
        await session.item_action(
            action_name,
            items,
            params or {},
            self.clipboard,
            self.action_history,
        )

    async def get_item_action(self, name: str, items: list[SiftItem], action: str) -> Any:
        session = self.get_session(name)
        try:
            item_action = await get_item_action(
                self.host, self.loader, session.get_options(), action, items, {},
            )
        except ConfigurationError as e:
            report_error(str(e))
            return None
        return item_action.action if item_action else None

    async def get_item_action_names(self, name: str, items: list[SiftItem]) -> list[str]:
        """Action names of items, including action aliases, sorted."""
        session = self.get_session(name)
        try:
            item_actions = await get_item_actions(
                self.host, self.loader, session.get_options(), items,
            )
        except ConfigurationError as e:
            report_error(str(e))
            return []

        actions = list(item_actions.actions)
        use_actions = session.get_options()["actions"]
        for alias_action in self.loader.get_alias_names("action"):
            base = self.loader.get_alias("action", alias_action)
            if base and base in actions and (not use_actions or alias_action in use_actions):
                actions.append(alias_action)
        return sorted(actions)

    async def get_previewer(
        self,
        name: str,
        item: SiftItem,
        params: Optional[dict] = None,
    ) -> Optional[dict]:
        """Preview description of item from its kind, or None."""
        session = self.get_session(name)
        return await get_previewer(
            self.host, self.loader, session.get_options(), item, params or {},
        )

    async def get_filter(self, name: str, filter_name: str) -> tuple[str, dict, dict]:
        session = self.get_session(name)
        filter, filter_options, filter_params = await get_filter(
            self.host, self.loader, session.get_options(), filter_name,
        )
        return (filter.path if filter else ""), filter_options, filter_params

    async def ui_visible(self, name: str, tab_nr: int) -> bool:
        return await self.get_session(name).ui_visible(tab_nr)

    async def ui_win_ids(self, name: str) -> list[int]:
        return await self.get_session(name).ui_win_ids()

    async def ui_update_cursor(self, name: str) -> None:
        await self.get_session(name).ui_update_cursor()
