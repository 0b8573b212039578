"""
Session - The gather, filter, column and redraw pipeline of one finder.

A Session owns one GatherState per configured source, the root of the
cancellation tree, the expanded tree items and the current input. Every
delivered batch schedules a redraw; redraws run one at a time and a
request made while one runs is folded into the next pass.
"""

import asyncio
import copy
import dataclasses
import os
import time
from dataclasses import dataclass, fields
from typing import Any, AsyncIterator, Iterable, Optional

from loguru import logger

from sift.base.source import CheckUpdatedArguments, GatherArguments, SourceEventArguments
from sift.base.source import default_source_options
from sift.base.kind import ActionArguments
from sift.base.ui import ExpandItemArguments, ItemArguments, RefreshItemsArguments, UiArguments
from sift.base.ui import VisibleArguments
from sift.errors import ConfigurationError
from sift.ext import (
    call_columns,
    call_filters,
    call_on_refresh_items_hooks,
    get_column,
    get_filter,
    get_item_action,
    get_source,
    get_ui,
    init_source,
    source_args,
    ui_quit,
    ui_search_item,
)
from sift import ext
from sift.host import Host
from sift.loader import Loader
from sift.options import (
    SECTION_KEYS,
    default_context,
    default_sift_options,
    fold_merge,
    merge_sift_options,
)
from sift.state import (
    AvailableSourceInfo,
    CancelScope,
    GatherState,
    QuitAbortReason,
    RefreshAbortReason,
    is_refresh_target,
)
from sift.types import (
    Action,
    ActionFlags,
    ActionHistory,
    ActionResult,
    Clipboard,
    Context,
    ExpandItem,
    Item,
    SiftItem,
    SourceInfo,
    TreePath,
    convert_user_string,
)
from sift.utils.helpers import (
    chomp_tree_path,
    convert_tree_path,
    is_parent_path,
    item_to_key,
    maybe_await,
    report_error,
    tree_path_to_filename,
)

_ITEM_FIELDS = [f.name for f in fields(Item)]


@dataclass
class RedrawOptions:
    # Redraw without regather: tree item states must be restored
    restore_item_state: bool = False
    restore_tree: bool = False
    scope: Optional[CancelScope] = None


class Session:
    """One running finder, driven by App commands."""

    def __init__(
        self,
        host: Host,
        loader: Loader,
        redraw_lock: asyncio.Lock,
        clipboard: Optional[Clipboard] = None,
        action_history: Optional[ActionHistory] = None,
    ):
        self._host = host
        self._loader = loader
        self._redraw_lock = redraw_lock
        self._clipboard = clipboard if clipboard is not None else Clipboard()
        self._action_history = (
            action_history if action_history is not None else ActionHistory()
        )

        self._gather_states: dict[int, GatherState] = {}
        self._input = ""
        self._input_history: list[str] = []
        self._context: Context = default_context()
        self._options: dict = default_sift_options()
        self._user_options: dict = {}
        self._initialized = False
        self._quitted = False
        self._scope = CancelScope()
        self._redraw_future: Optional[asyncio.Future] = None
        self._redraw_task: Optional[asyncio.Task] = None
        self._scheduled_redraw: Optional[RedrawOptions] = None
        self._start_time = 0.0
        self._search_path: TreePath = ""
        self._items: list[SiftItem] = []
        self._expanded_items: dict[str, SiftItem] = {}

    @property
    def cancelled(self) -> CancelScope:
        return self._scope

    @property
    def quitted(self) -> bool:
        return self._quitted

    @property
    def input_history(self) -> list[str]:
        return self._input_history

    async def start(self, context: Context, options: dict, user_options: dict) -> None:
        """
        Start (or resume) the session.

        Args:
            context: Fresh context from ContextBuilder
            options: Effective options of this start
            user_options: Options given by the caller, before merging
        """
        prev_context = dataclasses.replace(self._context)
        prev_scope = self._scope

        self._context = context
        self._user_options = user_options

        resume = (
            (user_options.get("resume") is None and self._options["resume"])
            or user_options.get("resume")
        )

        ui_changed = (
            user_options.get("ui")
            and self._options["ui"] != ""
            and user_options["ui"] != self._options["ui"]
        )
        if ui_changed:
            await ui_quit(self._host, self._loader, self._context, self._options)
            self.quit()

        check_toggle = (
            self._initialized and not prev_scope.aborted and not user_options.get("refresh")
        )

        if (
            self._initialized and resume
            and prev_context.done and self._context.cwd == prev_context.cwd
            and (
                not user_options.get("sources")
                or user_options["sources"] == self._options["sources"]
            )
        ):
            # Sources are kept on resume
            user_options["sources"] = self._options["sources"]

            await self.update_options(user_options)

            if user_options.get("input") is not None:
                await self.set_input(user_options["input"])
            elif prev_context.input != "":
                await self.set_input(prev_context.input)

            self._context.path = prev_context.path
            self._context.max_items = prev_context.max_items

            ui, ui_options, _ = await get_ui(self._host, self._loader, self._options)
            if not ui:
                return

            if check_toggle and ui_options["toggle"]:
                await ui_quit(self._host, self._loader, self._context, self._options)
                self.quit()
                return

            if user_options.get("searchPath"):
                self._search_path = user_options["searchPath"]

            if not self._options["refresh"]:
                self._reset_quitted()

                if self._search_path:
                    await self.redraw(restore_item_state=True)
                    return

                # done must be set for the UI to draw the final state
                self._context.done = True
                await self.ui_redraw()
                self._context.done_ui = True
                return

            await self.cancel_to_refresh()
        else:
            await self.cancel_to_refresh()

            self._gather_states.clear()
            self._expanded_items.clear()
            self._options = options
            await self.set_input(self._options["input"])

        if self._options["searchPath"]:
            self._search_path = self._options["searchPath"]

        ui, ui_options, _ = await get_ui(self._host, self._loader, self._options)

        if check_toggle and ui and ui_options["toggle"]:
            await ui_quit(self._host, self._loader, self._context, self._options)
            self.quit()
            return

        if ui:
            ui.is_initialized = False
            ui.prev_done = False

        self._initialized = False
        self._reset_quitted()
        self._start_time = time.monotonic()

        scope = self._scope

        # Sources are initialized before the UI is drawn
        infos = await self._available_sources(initialize=True)
        states = [self._create_gather_state(info) for info in infos]

        # Draw the UI before items arrive so input is not blocked
        await self.ui_redraw(scope)

        await self._refresh_sources(states, RedrawOptions(scope=scope))

        self._initialized = True

    async def restart(self, user_options: dict) -> None:
        await ui_quit(self._host, self._loader, self._context, self._options)
        self.quit()

        user_options["resume"] = False

        await self.update_options(user_options)
        await self.start(self._context, self._options, user_options)

    async def refresh(
        self,
        refresh_indexes: Iterable[int] = (),
        restore_tree: bool = False,
    ) -> CancelScope:
        """
        Regather the targeted sources; an empty index set targets all.

        Untargeted sources keep streaming under the new root scope.
        """
        refresh_indexes = tuple(refresh_indexes)
        targets = list(refresh_indexes) or "all"
        logger.debug(f"Refreshing '{self._options['name']}' sources: {targets}")
        self._start_time = time.monotonic()
        self._context.done = False

        await self.cancel_to_refresh(refresh_indexes)
        self.reset_scope()

        scope = self._scope

        infos = await self._available_sources(indexes=refresh_indexes)
        states = [self._create_gather_state(info) for info in infos]

        await self._refresh_sources(
            states, RedrawOptions(restore_tree=restore_tree, scope=scope)
        )

        return scope

    async def _available_sources(
        self,
        initialize: bool = False,
        indexes: Iterable[int] = (),
    ) -> list[AvailableSourceInfo]:
        indexes = tuple(indexes)

        async def _resolve(source_index: int, user_source: dict):
            if indexes and source_index not in indexes:
                return None

            source, source_options, source_params = await get_source(
                self._host, self._loader, self._options, user_source["name"], user_source,
            )
            if source is None:
                return None

            if initialize:
                await init_source(self._host, source, source_options, source_params)

            return AvailableSourceInfo(
                source_index=source_index,
                source=source,
                source_options=source_options,
                source_params=source_params,
            )

        results = await asyncio.gather(*(
            _resolve(index, convert_user_string(user_source))
            for index, user_source in enumerate(self._options["sources"])
        ))
        return [info for info in results if info is not None]

    def _create_gather_state(self, info: AvailableSourceInfo) -> GatherState:
        state = self._gather_items(
            info.source_index, info.source, info.source_options, info.source_params, 0,
        )
        prev_state = self._gather_states.get(info.source_index)
        if prev_state is not None:
            prev_state.scope.release()
        self._gather_states[info.source_index] = state
        return state

    async def _refresh_sources(self, states: list[GatherState], opts: RedrawOptions) -> None:
        results = await asyncio.gather(
            *(self._refresh_items(state, opts) for state in states),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, Exception):
                report_error("Refreshing items failed", result)

        scope = opts.scope
        if scope.aborted:
            # Sources a refresh left alone finish under the new root
            if self._scope.aborted or all(state.scope.aborted for state in states):
                return
            scope = self._scope
        if not self._context.done:
            await self.redraw(
                restore_item_state=opts.restore_item_state,
                restore_tree=opts.restore_tree,
                scope=scope,
            )
        elif self._redraw_future is not None:
            await asyncio.shield(self._redraw_future)

    async def _refresh_items(self, state: GatherState, opts: RedrawOptions) -> None:
        source_options = state.source_info.source_options

        await call_on_refresh_items_hooks(
            self._host, self._loader, self._options, source_options,
        )

        # The source path, or the context path when it is empty
        path = source_options["path"] or self._context.path

        async for new_items in state.stream():
            if path != self._context.path:
                if self._context.path:
                    self._context.path_histories.append(self._context.path)
                self._context.path = path

            if self._check_sync() and new_items:
                self.redraw(
                    restore_item_state=opts.restore_item_state,
                    restore_tree=opts.restore_tree,
                    scope=self._redraw_scope(state, opts.scope),
                )

    def _redraw_scope(self, state: GatherState, scope: CancelScope) -> CancelScope:
        """The scope a batch of state is redrawn under."""
        if scope.aborted and not state.scope.aborted:
            # reset_scope() moved the state under the current root
            return self._scope
        return scope

    def _new_sift_item(
        self,
        source_index: int,
        source: Any,
        source_options: dict,
        item: Any,
        level: int = 0,
    ) -> SiftItem:
        if isinstance(item, dict):
            item = Item(**item)

        matcher_key_field = source_options["matcherKey"]
        if matcher_key_field in _ITEM_FIELDS:
            matcher_key = getattr(item, matcher_key_field)
        else:
            matcher_key = item.data.get(matcher_key_field)
        if matcher_key is None:
            matcher_key = item.word

        values = {name: getattr(item, name) for name in _ITEM_FIELDS}
        values["kind"] = item.kind or source.kind
        sift_item = SiftItem(
            **values,
            matcher_key=str(matcher_key),
            _source_index=source_index,
            _source_name=source.name,
            _level=item.level if item.level is not None else level,
        )
        if item.is_expanded:
            self._set_expanded(sift_item)
            sift_item._expanded = self._is_expanded(sift_item)

        return sift_item

    def _gather_items(
        self,
        source_index: int,
        source: Any,
        source_options: dict,
        source_params: dict,
        item_level: int,
        parent: Optional[SiftItem] = None,
    ) -> GatherState:
        args = GatherArguments(
            host=self._host,
            context=self._context,
            options=self._options,
            source_options=source_options,
            source_params=source_params,
            input=self._input,
            parent=parent,
        )

        async def _batches() -> AsyncIterator[list[SiftItem]]:
            stream = await maybe_await(source.gather(args))
            async for batch in stream:
                yield [
                    self._new_sift_item(source_index, source, source_options, item, item_level)
                    for item in batch
                ]

        return GatherState(
            AvailableSourceInfo(
                source_index=source_index,
                source=source,
                source_options=source_options,
                source_params=source_params,
            ),
            _batches(),
            parent=self._scope,
        )

    def redraw(
        self,
        restore_item_state: bool = False,
        restore_tree: bool = False,
        scope: Optional[CancelScope] = None,
    ) -> asyncio.Future:
        """
        Schedule a redraw and return an awaitable of its completion.

        While a redraw runs, new requests replace the pending one with the
        flags OR-ed together, so the next pass reads the latest items.
        """
        new_opts = RedrawOptions(restore_item_state, restore_tree, scope or self._scope)

        if self._redraw_future is not None:
            prev_opts = self._scheduled_redraw or RedrawOptions()
            scope = new_opts.scope
            if scope.aborted and prev_opts.scope is not None and not prev_opts.scope.aborted:
                scope = prev_opts.scope
            self._scheduled_redraw = RedrawOptions(
                restore_item_state=prev_opts.restore_item_state or restore_item_state,
                restore_tree=prev_opts.restore_tree or restore_tree,
                scope=scope,
            )
        else:
            self._redraw_future = asyncio.get_running_loop().create_future()
            self._scheduled_redraw = new_opts
            self._redraw_task = asyncio.ensure_future(
                self._run_scheduled_redraws(self._redraw_future)
            )

        return asyncio.shield(self._redraw_future)

    async def _run_scheduled_redraws(self, future: asyncio.Future) -> None:
        try:
            while self._scheduled_redraw is not None:
                opts = self._scheduled_redraw
                self._scheduled_redraw = None
                try:
                    await self._redraw_internal(opts)
                except Exception as e:
                    report_error(f"Redraw of '{self._options['name']}' failed", e)
        finally:
            self._redraw_future = None
            if not future.done():
                future.set_result(None)

    async def _redraw_internal(self, opts: RedrawOptions) -> None:
        scope = opts.scope
        if scope.aborted:
            return

        self._context.done_ui = False
        self._context.max_items = 0

        async def _filter_source(source_index: int, user_source: dict):
            source, source_options, _ = await get_source(
                self._host, self._loader, self._options, user_source["name"], user_source,
            )
            if not source:
                return None

            source_info = SourceInfo(
                name=user_source["name"],
                index=source_index,
                path=source_options["path"],
                kind=source.kind or "base",
            )
            done, max_items, items = await self._filter_items(
                user_source, source_index, self._input,
            )

            if opts.restore_item_state:
                for item in items:
                    if item.tree_path:
                        item._expanded = self._is_expanded(item)
                        item.is_expanded = item._expanded

            return source_info, done, max_items, items

        results = [
            result for result in await asyncio.gather(*(
                _filter_source(index, convert_user_string(user_source))
                for index, user_source in enumerate(self._options["sources"])
            ))
            if result is not None
        ]

        sources = [source_info for source_info, _, _, _ in results]
        all_items = [item for _, _, _, items in results for item in items]
        self._context.done = all(done for _, done, _, _ in results)
        self._context.max_items = sum(max_items for _, _, max_items, _ in results)

        all_items = await call_filters(
            self._host,
            self._loader,
            self._context,
            self._options,
            default_source_options(),
            self._options["postFilters"],
            self._input,
            all_items,
        )

        if self._options["unique"]:
            words = set()
            unique_items = []
            for item in all_items:
                if item.word not in words:
                    words.add(item.word)
                    unique_items.append(item)
            all_items = unique_items
            self._context.max_items = len(all_items)

        self._items = all_items

        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui or scope.aborted:
            return

        await maybe_await(ui.refresh_items(RefreshItemsArguments(
            host=self._host,
            context=self._context,
            options=self._options,
            ui_options=ui_options,
            ui_params=ui_params,
            sources=sources,
            items=all_items,
        )))

        if opts.restore_tree:
            await self.restore_tree(prevent_redraw=True, scope=scope)

        search_path = self._search_path
        search_tree_path = convert_tree_path(search_path)
        search_target: Optional[SiftItem] = None

        for item in list(all_items):
            if search_path:
                item_tree_path = convert_tree_path(item.tree_path or item.word)

                if item_tree_path == search_tree_path:
                    search_target = item

                if (
                    search_target is None and item.tree_path
                    and is_parent_path(item_tree_path, search_tree_path)
                ):
                    search_target = await self.expand_item(
                        item,
                        search=search_path,
                        max_level=-1,
                        prevent_redraw=True,
                        scope=scope,
                    )
                    continue

            if item._expanded and not item.is_expanded:
                await self.expand_item(
                    item,
                    search=search_path,
                    max_level=-1,
                    prevent_redraw=True,
                    scope=scope,
                )

        if self._context.done and self._options["profile"]:
            elapsed = int((time.monotonic() - self._start_time) * 1000)
            report_error(f"Refresh all items: {elapsed} ms")

        await self.ui_redraw(scope)

        if search_target is not None and not scope.aborted:
            # Search once only
            self._search_path = ""
            await ui_search_item(
                self._host, self._loader, self._context, self._options, search_target,
            )

        self._context.done_ui = self._context.done

    async def _filter_items(
        self,
        user_source: dict,
        source_index: int,
        input: str,
    ) -> tuple[bool, int, list[SiftItem]]:
        source, source_options, _ = await get_source(
            self._host, self._loader, self._options, user_source["name"], user_source,
        )

        state = self._gather_states.get(source_index)
        if not state or not source:
            return False, 0, []

        # Read done first: the copied items are then complete when it is set
        done = state.is_done

        # Filters may rewrite items; the accumulated ones stay untouched
        items = [_copy_item(item) for item in state.items]
        all_items = len(items)

        await call_columns(
            self._host,
            self._loader,
            self._context,
            self._options,
            source_options["columns"],
            items,
            items,
        )

        has_tree_items = any(
            item.tree_path and item.is_tree and item.is_expanded for item in items
        )
        original_items = [_copy_item(item) for item in items] if has_tree_items else items

        items = await call_filters(
            self._host,
            self._loader,
            self._context,
            self._options,
            source_options,
            source_options["matchers"] + source_options["sorters"],
            input,
            items,
        )

        if has_tree_items:
            items = self._preserve_parent_items(items, original_items)

        # Truncate before converters
        if len(items) > source_options["maxItems"]:
            items = items[:source_options["maxItems"]]

        items = await call_filters(
            self._host,
            self._loader,
            self._context,
            self._options,
            source_options,
            source_options["converters"],
            input,
            items,
        )

        return done, all_items, items

    def _preserve_parent_items(
        self,
        filtered_items: list[SiftItem],
        original_items: list[SiftItem],
    ) -> list[SiftItem]:
        """Keep the tree parents of matched children visible."""
        if not any(item.tree_path for item in filtered_items):
            return filtered_items

        matched_keys = {item_to_key(item) for item in filtered_items}
        items_by_key = {item_to_key(item): item for item in original_items}

        parents_to_add: dict[str, SiftItem] = {}
        for item in filtered_items:
            if not item.tree_path:
                continue
            item_tree_path = convert_tree_path(item.tree_path)

            for key, candidate in items_by_key.items():
                if key in matched_keys or not candidate.tree_path:
                    continue
                if is_parent_path(convert_tree_path(candidate.tree_path), item_tree_path):
                    parents_to_add[key] = candidate
                    candidate._expanded = True
                    candidate.is_expanded = True
                    self._set_expanded(candidate)

        result = filtered_items + list(parents_to_add.values())
        # Parents before children
        return sorted(result, key=lambda item: (
            item._level,
            os.sep.join(convert_tree_path(item.tree_path or item.word)),
        ))

    async def ui_redraw(self, scope: Optional[CancelScope] = None) -> None:
        scope = scope or self._scope

        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui or scope.aborted:
            return

        await ext.ui_redraw(
            self._host,
            self._redraw_lock,
            self._context,
            self._options,
            ui,
            ui_options,
            ui_params,
            scope,
        )

    async def on_event(self, event: str) -> None:
        for user_source in map(convert_user_string, self._options["sources"]):
            source, source_options, source_params = await get_source(
                self._host, self._loader, self._options, user_source["name"], user_source,
            )
            if not source or not hasattr(source, "on_event"):
                continue

            await maybe_await(source.on_event(SourceEventArguments(
                host=self._host,
                source_options=source_options,
                source_params=source_params,
                event=event,
            )))

        if event in ("close", "cancel"):
            await ui_quit(self._host, self._loader, self._context, self._options)

    def quit(self) -> None:
        # Called after ui.quit()
        logger.debug(f"Quitting '{self._options['name']}'")
        self._quitted = True
        reason = QuitAbortReason()
        self._scope.abort(reason)
        self._cancel_gather_states((), reason)
        self._context.done = True

    def _reset_quitted(self) -> None:
        self._quitted = False
        self.reset_scope()

    async def cancel_to_refresh(self, refresh_indexes: Iterable[int] = ()) -> None:
        refresh_indexes = tuple(refresh_indexes)
        reason = RefreshAbortReason(refresh_indexes)
        self._scope.abort(reason)
        await asyncio.gather(*self._cancel_gather_states(refresh_indexes, reason))

    def _cancel_gather_states(self, source_indexes: Iterable[int], reason) -> list:
        waits = []
        for source_index, state in self._gather_states.items():
            if is_refresh_target(source_index, source_indexes):
                state.cancel(reason)
                waits.append(state.wait_done())
        return waits

    def reset_scope(self) -> None:
        """Replace an aborted root scope; live gather states move under it."""
        if self._quitted or not self._scope.aborted:
            return

        old_scope = self._scope
        self._scope = CancelScope()
        for child in list(old_scope.children):
            child.reparent(self._scope)

    async def ui_action(self, action_name: str, action_params: Optional[dict] = None) -> None:
        if await self._host.in_cmdwin():
            return

        ui, ui_options, ui_params, flags = await ext.ui_action(
            self._host,
            self._loader,
            self._context,
            self._options,
            action_name,
            action_params or {},
            session=self,
        )
        if not ui:
            return

        # The scope after the action ran
        scope = self._scope

        await self.set_input(self._context.input)

        if flags & ActionFlags.REFRESH_ITEMS:
            await self.refresh(restore_tree=True)
        elif flags & ActionFlags.REDRAW:
            await ext.ui_redraw(
                self._host,
                self._redraw_lock,
                self._context,
                self._options,
                ui,
                ui_options,
                ui_params,
                scope,
            )

        self._update_input_history()

    async def item_action(
        self,
        action_name: str,
        items: list[SiftItem],
        user_action_params: Optional[dict] = None,
        clipboard: Optional[Clipboard] = None,
        action_history: Optional[ActionHistory] = None,
    ) -> None:
        """
        Run an item action and apply the flags it returns.

        Resolution errors (mixed sources, unknown action) are reported and
        no handler runs.
        """
        clipboard = clipboard if clipboard is not None else self._clipboard
        action_history = action_history if action_history is not None else self._action_history

        try:
            item_action = await get_item_action(
                self._host, self._loader, self._options, action_name, items, user_action_params,
            )
        except ConfigurationError as e:
            report_error(str(e))
            return
        if item_action is None:
            return

        if item_action.action_options["quit"]:
            await ui_quit(self._host, self._loader, self._context, self._options)

        prev_path = chomp_tree_path(item_action.source_options["path"])

        action = item_action.action
        callback = action.callback if isinstance(action, Action) else action
        result = await maybe_await(callback(ActionArguments(
            host=self._host,
            context=self._context,
            options=self._options,
            source_options=item_action.source_options,
            source_params=item_action.source_params,
            kind_options=item_action.kind_options,
            kind_params=item_action.kind_params,
            action_params=item_action.action_params,
            items=items,
            clipboard=clipboard,
            action_history=action_history,
            session=self,
        )))

        action_history.actions.append({
            "name": action_name,
            "source": item_action.source_index,
            "items": [item.word for item in items],
        })

        flags = ActionFlags.NONE
        search_path: TreePath = ""
        if isinstance(result, ActionResult):
            flags = result.flags
            search_path = result.search_path
        elif isinstance(result, int):
            flags = ActionFlags(result)

        # Follow a path changed by the action, within limitPath
        limit_path = chomp_tree_path(item_action.source_options["limitPath"])
        new_path = chomp_tree_path(item_action.source_options["path"])
        if new_path and new_path != prev_path and (
            not limit_path
            or tree_path_to_filename(new_path) == tree_path_to_filename(limit_path)
            or is_parent_path(convert_tree_path(limit_path), convert_tree_path(new_path))
        ):
            user_source = dict(convert_user_string(item_action.user_source))
            user_source["options"] = {**(user_source.get("options") or {}), "path": new_path}
            if self._context.path:
                self._context.path_histories.append(self._context.path)

            sources = list(self._options["sources"])
            sources[item_action.source_index] = user_source
            self._options["sources"] = sources

            self._context.path = new_path

            # Input is cleared when the path changes
            await self.set_input("")

        if search_path:
            self._search_path = search_path

        win_id = await self._host.win_id()

        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui:
            return

        clear_selected_items = getattr(ui, "clear_selected_items", None)
        if clear_selected_items is not None:
            await maybe_await(clear_selected_items(self._ui_arguments(ui_options, ui_params)))

        if flags & ActionFlags.REFRESH_ITEMS:
            self._reset_quitted()
            await self.refresh(restore_tree=True)
        elif ui_options["persist"] or flags & ActionFlags.PERSIST:
            self._reset_quitted()
            await ext.ui_redraw(
                self._host,
                self._redraw_lock,
                self._context,
                self._options,
                ui,
                ui_options,
                ui_params,
                self._scope,
            )

        if flags & ActionFlags.RESTORE_CURSOR:
            await self._host.goto_win(win_id)

    async def expand_items(
        self,
        items: list[ExpandItem],
        prevent_redraw: bool = False,
        scope: Optional[CancelScope] = None,
    ) -> None:
        scope = scope or self._scope
        for expand in sorted(items, key=lambda expand: expand.item._level):
            if expand.max_level is not None and expand.max_level < 0:
                max_level = -1
            else:
                max_level = expand.item._level + (expand.max_level or 0)
            await self.expand_item(
                expand.item,
                search=expand.search,
                max_level=max_level,
                prevent_redraw=True,
                is_grouped=expand.is_grouped,
                is_in_tree=expand.is_in_tree,
                scope=scope,
            )

        if not prevent_redraw and not scope.aborted:
            await self.ui_redraw(scope)

    async def expand_item(
        self,
        parent: SiftItem,
        search: Optional[TreePath] = None,
        max_level: int = -1,
        prevent_redraw: bool = False,
        is_grouped: bool = False,
        is_in_tree: bool = False,
        scope: Optional[CancelScope] = None,
    ) -> Optional[SiftItem]:
        """
        Gather the children of a tree item and hand them to the UI.

        With search, expands recursively along the searched path; otherwise
        recursively up to max_level (-1 for unlimited, hidden entries
        skipped).

        Returns:
            The item matching search, if it was found
        """
        scope = scope or self._scope

        if parent._level < 0 or not parent.is_tree or not parent.tree_path or scope.aborted:
            return None

        source_index = parent._source_index
        source = self._loader.get_source(self._options["name"], parent._source_name)
        if source is None or source_index not in self._gather_states:
            return None

        source_options, source_params = source_args(
            source, self._options, self._options["sources"][source_index],
        )

        self._set_expanded(parent)
        parent._expanded = True

        save_path = self._context.path
        source_options["path"] = parent.tree_path or parent.word
        self._context.path = source_options["path"]

        children: list[SiftItem] = []
        grouped = False

        try:
            state = self._gather_items(
                source_index,
                source,
                source_options,
                source_params,
                parent._level + 1,
                parent=parent,
            )
            await state.read_all()
            children = list(state.items)

            if scope.aborted:
                return None

            if is_grouped and len(children) == 1 and children[0].is_tree:
                children[0].word = f"{parent.word}{children[0].word}"
                children[0]._level = parent._level
                children[0]._grouped_path = parent.word
                grouped = True

            # The parent is rendered again with its children
            column_items = [parent] + children
            await call_columns(
                self._host,
                self._loader,
                self._context,
                self._options,
                source_options["columns"],
                column_items,
                list(state.items) + column_items,
            )

            filters = (
                source_options["matchers"] + source_options["sorters"]
                + source_options["converters"]
            )
            items = await call_filters(
                self._host, self._loader, self._context, self._options,
                source_options, filters, self._input, [parent],
            )
            if items:
                parent.display = items[0].display

            children = await call_filters(
                self._host, self._loader, self._context, self._options,
                source_options, filters, self._input, children,
            )
            self._context.max_items += len(children)
        finally:
            self._context.path = save_path

        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if ui and not scope.aborted:
            known_keys = {item_to_key(item) for item in self._items}
            new_children = [child for child in children if item_to_key(child) not in known_keys]

            await maybe_await(ui.expand_item(ExpandItemArguments(
                host=self._host,
                context=self._context,
                options=self._options,
                ui_options=ui_options,
                ui_params=ui_params,
                parent=parent,
                children=new_children,
                is_grouped=grouped,
            )))

        searched_item: Optional[SiftItem] = None

        if max_level < 0 or parent._level < max_level:
            if search is not None:
                search_tree_path = convert_tree_path(search)
                targets = [
                    child for child in children
                    if child._expanded or (
                        child.is_tree and child.tree_path
                        and is_parent_path(convert_tree_path(child.tree_path), search_tree_path)
                    )
                ]
            else:
                targets = [
                    child for child in children
                    if child._expanded or (
                        child.is_tree and child.tree_path
                        and not os.path.basename(
                            tree_path_to_filename(child.tree_path)
                        ).startswith(".")
                    )
                ]

            for child in targets:
                hit = await self.expand_item(
                    child,
                    search=search,
                    max_level=max_level,
                    prevent_redraw=True,
                    is_grouped=is_grouped,
                    scope=scope,
                )
                if hit is not None:
                    searched_item = hit
        else:
            # Children beyond max_level are collapsed
            expanded_children = [child for child in children if child._expanded]
            if expanded_children:
                await self.collapse_items(expanded_children, prevent_redraw=True, scope=scope)

        if (
            search and searched_item is None and parent.tree_path
            and is_parent_path(convert_tree_path(parent.tree_path), convert_tree_path(search))
        ):
            search_tree_path = convert_tree_path(search)
            searched_item = next(
                (
                    child for child in children
                    if convert_tree_path(child.tree_path or child.word) == search_tree_path
                ),
                None,
            )

        if ui and not scope.aborted and not prevent_redraw:
            await ext.ui_redraw(
                self._host,
                self._redraw_lock,
                self._context,
                self._options,
                ui,
                ui_options,
                ui_params,
                scope,
            )
            if not scope.aborted:
                await ui_search_item(
                    self._host, self._loader, self._context, self._options,
                    searched_item or parent,
                )

        if is_in_tree and children and not grouped:
            # Move into the expanded directory
            await self.ui_action("cursorNext", {})

        return searched_item

    async def collapse_items(
        self,
        items: list[SiftItem],
        prevent_redraw: bool = False,
        scope: Optional[CancelScope] = None,
    ) -> None:
        scope = scope or self._scope

        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui or scope.aborted:
            return

        for item in items:
            if not item.tree_path:
                continue

            source_index = item._source_index
            source = self._loader.get_source(self._options["name"], item._source_name)
            state = self._gather_states.get(source_index)
            if source is None or state is None:
                continue

            source_options, _ = source_args(
                source, self._options, self._options["sources"][source_index],
            )

            self._set_unexpanded(item)
            item._expanded = False

            await call_columns(
                self._host,
                self._loader,
                self._context,
                self._options,
                source_options["columns"],
                [item],
                list(state.items) + [item],
            )

            filters = (
                source_options["matchers"] + source_options["sorters"]
                + source_options["converters"]
            )
            filtered = await call_filters(
                self._host, self._loader, self._context, self._options,
                source_options, filters, self._input, [item],
            )
            if filtered:
                item.display = filtered[0].display

            if scope.aborted:
                return

            collapsed = await maybe_await(ui.collapse_item(ItemArguments(
                host=self._host,
                context=self._context,
                options=self._options,
                ui_options=ui_options,
                ui_params=ui_params,
                item=item,
            )))
            if collapsed:
                self._context.max_items -= collapsed

        if not prevent_redraw and not scope.aborted:
            await ext.ui_redraw(
                self._host,
                self._redraw_lock,
                self._context,
                self._options,
                ui,
                ui_options,
                ui_params,
                scope,
            )

            if items and not scope.aborted:
                await ui_search_item(
                    self._host, self._loader, self._context, self._options, items[-1],
                )

    async def restore_tree(
        self,
        prevent_redraw: bool = False,
        scope: Optional[CancelScope] = None,
    ) -> None:
        """Expand again the remembered items whose tree still exists."""
        check_keys = {item_to_key(item) for item in self._items}

        def _exists(item: SiftItem) -> bool:
            key = item_to_key(item)
            while key:
                if key in check_keys:
                    return True
                parent_key = os.path.dirname(key)
                if parent_key == key:
                    break
                key = parent_key
            return False

        restore_items = [
            ExpandItem(item=item)
            for item in self._expanded_items.values()
            if _exists(item)
        ]
        if not restore_items:
            return

        await self.expand_items(restore_items, prevent_redraw=prevent_redraw, scope=scope)

    def _ui_arguments(self, ui_options: dict, ui_params: dict) -> UiArguments:
        return UiArguments(
            host=self._host,
            context=self._context,
            options=self._options,
            ui_options=ui_options,
            ui_params=ui_params,
        )

    async def ui_visible(self, tab_nr: int) -> bool:
        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui or self._quitted:
            return False

        return await maybe_await(ui.visible(VisibleArguments(
            host=self._host,
            context=self._context,
            options=self._options,
            ui_options=ui_options,
            ui_params=ui_params,
            tab_nr=tab_nr,
        )))

    async def ui_win_ids(self) -> list[int]:
        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui or self._quitted:
            return []

        return await maybe_await(ui.win_ids(self._ui_arguments(ui_options, ui_params)))

    async def ui_update_cursor(self) -> None:
        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if not ui or self._quitted:
            return

        await maybe_await(ui.update_cursor(self._ui_arguments(ui_options, ui_params)))

    async def set_input(self, input: str) -> None:
        # Expansion would break an input starting with "<"
        if self._options["expandInput"] and not input.startswith("<"):
            input = await self._host.expand(input)
        self._input = input
        self._context.input = input

    def get_context(self) -> Context:
        return self._context

    def get_options(self) -> dict:
        return self._options

    def get_user_options(self) -> dict:
        return self._user_options

    async def get_current_options(self) -> dict:
        """Options with the resolved options/params of every used extension."""
        current = dict(self._options)
        for key in SECTION_KEYS:
            current[key] = dict(self._options[key])

        ui, ui_options, ui_params = await get_ui(self._host, self._loader, self._options)
        if ui:
            current["uiOptions"][ui.name] = ui_options
            current["uiParams"][ui.name] = ui_params

        for user_source in map(convert_user_string, self._options["sources"]):
            source, source_options, source_params = await get_source(
                self._host, self._loader, self._options, user_source["name"], user_source,
            )
            if not source:
                continue

            current["sourceOptions"][source.name] = source_options
            current["sourceParams"][source.name] = source_params

            filters = (
                source_options["matchers"] + source_options["sorters"]
                + source_options["converters"]
            )
            for user_filter in filters:
                filter, filter_options, filter_params = await get_filter(
                    self._host, self._loader, self._options, user_filter,
                )
                if not filter:
                    continue
                current["filterOptions"][filter.name] = filter_options
                current["filterParams"][filter.name] = filter_params

            for user_column in source_options["columns"]:
                column, column_options, column_params = await get_column(
                    self._host, self._loader, self._options, user_column,
                )
                if not column:
                    continue
                current["columnOptions"][column.name] = column_options
                current["columnParams"][column.name] = column_params

        return current

    def get_source_args(self) -> list[tuple[dict, dict]]:
        return [
            source_args(
                self._loader.get_source(
                    self._options["name"], convert_user_string(user_source)["name"],
                ),
                self._options,
                user_source,
            )
            for user_source in self._options["sources"]
        ]

    def get_items(self) -> list[SiftItem]:
        return self._items

    async def update_options(self, user_options: dict) -> None:
        self._options = fold_merge(
            merge_sift_options, default_sift_options, [self._options, user_options],
        )

        if user_options.get("input"):
            await self.set_input(self._options["input"])

    async def check_updated(self) -> bool:
        for user_source in map(convert_user_string, self._options["sources"]):
            source, source_options, source_params = await get_source(
                self._host, self._loader, self._options, user_source["name"], user_source,
            )
            check_updated = getattr(source, "check_updated", None)
            if not source or check_updated is None:
                continue

            updated = await maybe_await(check_updated(CheckUpdatedArguments(
                host=self._host,
                context=self._context,
                options=self._options,
                source_options=source_options,
                source_params=source_params,
            )))
            if updated:
                return True

        return False

    def _is_expanded(self, item: SiftItem) -> bool:
        return bool(item.tree_path) and item_to_key(item) in self._expanded_items

    def _set_expanded(self, item: SiftItem) -> None:
        if item.tree_path:
            self._expanded_items[item_to_key(item)] = item

    def _set_unexpanded(self, item: SiftItem) -> None:
        if not item.tree_path:
            return

        key = item_to_key(item)
        item_tree_path = convert_tree_path(item.tree_path)
        for expanded_key, expanded in list(self._expanded_items.items()):
            if expanded_key == key or is_parent_path(
                item_tree_path, convert_tree_path(expanded.tree_path)
            ):
                del self._expanded_items[expanded_key]

    def _update_input_history(self) -> None:
        # Unique, keeping the most recent position of each input
        history = self._input_history + [self._input]
        seen = set()
        unique = []
        for input in reversed(history):
            if input not in seen:
                seen.add(input)
                unique.append(input)
        self._input_history = list(reversed(unique))

    def _check_sync(self) -> bool:
        if not self._options["sync"]:
            return True
        gathered = sum(len(state.items) for state in self._gather_states.values())
        if self._options["syncLimit"] > 0 and gathered >= self._options["syncLimit"]:
            return True
        elapsed = (time.monotonic() - self._start_time) * 1000
        return self._options["syncTimeout"] > 0 and elapsed >= self._options["syncTimeout"]


def _copy_item(item: SiftItem) -> SiftItem:
    """Shallow copy sharing the per-column base text cache."""
    copied = copy.copy(item)
    copied.highlights = list(item.highlights)
    return copied
