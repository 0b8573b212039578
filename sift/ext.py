"""
Extension calls - Resolve plugins with their options and invoke them.

Every get_* helper autoloads a missing plugin, resolves its options and
params through the wildcard cascade and runs on_init once. The call_*
helpers run the filter and column chains, and the ui_* helpers talk to
the current UI. Action resolution for selected items lives here too.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Optional, Union

from loguru import logger

from sift.base.column import (
    ColumnInitArguments,
    GetBaseTextArguments,
    GetLengthArguments,
    GetTextArguments,
    default_column_options,
)
from sift.base.filter import (
    FilterArguments,
    FilterInitArguments,
    OnRefreshItemsArguments,
    default_filter_options,
)
from sift.base.kind import (
    GetPreviewerArguments,
    default_action_options,
    default_kind_options,
)
from sift.base.source import SourceInitArguments, default_source_options
from sift.base.ui import (
    ItemArguments,
    UiActionArguments,
    UiArguments,
    UiHookArguments,
    UiInitArguments,
    VisibleArguments,
    default_ui_options,
)
from sift.errors import (
    ExtensionNotFoundError,
    MixedSelectionError,
    RedrawNotAllowedError,
    UndefinedActionError,
)
from sift.host import Host
from sift.loader import Loader
from sift.options import (
    default_dummy,
    fold_merge,
    merge_action_options,
    merge_column_options,
    merge_filter_options,
    merge_kind_options,
    merge_params,
    merge_source_options,
    merge_ui_options,
)
from sift.state import CancelScope
from sift.types import (
    Action,
    ActionFlags,
    Context,
    FilterResult,
    SiftItem,
    convert_user_string,
)
from sift.utils.helpers import maybe_await, report_error


@dataclass
class ItemActions:
    source: Any
    kind: Any
    actions: dict


@dataclass
class ItemActionInfo:
    user_source: Any
    source_index: int
    source_options: dict
    source_params: dict
    kind_options: dict
    kind_params: dict
    action_options: dict
    action_params: dict
    action: Union[Action, Any]


def _unique(values: list) -> list:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def _item_source_indexes(items: list[SiftItem]) -> list[int]:
    return _unique([item._source_index for item in items])


# Option cascades: defaults, then "_", then the extension, then the call site


def ui_args(options: dict, ui: Any) -> tuple[dict, dict]:
    o = fold_merge(merge_ui_options, default_ui_options, [
        options["uiOptions"].get("_"),
        options["uiOptions"].get(ui.name),
    ])
    p = fold_merge(merge_params, default_dummy, [
        ui.params(),
        options["uiParams"].get("_"),
        options["uiParams"].get(ui.name),
    ])
    return o, p


def source_args(source: Any, options: dict, user_source: Any) -> tuple[dict, dict]:
    user_source = convert_user_string(user_source) or {}
    o = fold_merge(merge_source_options, default_source_options, [
        options["sourceOptions"].get("_"),
        options["sourceOptions"].get(source.name) if source else {},
        user_source.get("options"),
    ])
    p = fold_merge(merge_params, default_dummy, [
        source.params() if source else {},
        options["sourceParams"].get("_"),
        options["sourceParams"].get(source.name) if source else {},
        user_source.get("params"),
    ])
    return o, p


def filter_args(filter: Any, options: dict, user_filter: Any) -> tuple[dict, dict]:
    user_filter = convert_user_string(user_filter) or {}
    o = fold_merge(merge_filter_options, default_filter_options, [
        options["filterOptions"].get("_"),
        options["filterOptions"].get(filter.name),
        user_filter.get("options"),
    ])
    p = fold_merge(merge_params, default_dummy, [
        filter.params(),
        options["filterParams"].get("_"),
        options["filterParams"].get(filter.name),
        user_filter.get("params"),
    ])
    return o, p


def column_args(column: Any, options: dict, user_column: Any) -> tuple[dict, dict]:
    user_column = convert_user_string(user_column) or {}
    o = fold_merge(merge_column_options, default_column_options, [
        options["columnOptions"].get("_"),
        options["columnOptions"].get(column.name),
        user_column.get("options"),
    ])
    p = fold_merge(merge_params, default_dummy, [
        column.params(),
        options["columnParams"].get("_"),
        options["columnParams"].get(column.name),
        user_column.get("params"),
    ])
    return o, p


def kind_args(kind: Any, options: dict) -> tuple[dict, dict]:
    o = fold_merge(merge_kind_options, default_kind_options, [
        options["kindOptions"].get("_"),
        options["kindOptions"].get(kind.name),
    ])
    p = fold_merge(merge_params, default_dummy, [
        kind.params(),
        options["kindParams"].get("_"),
        options["kindParams"].get(kind.name),
    ])
    return o, p


def action_args(action_name: str, options: dict, params: Optional[dict]) -> tuple[dict, dict]:
    o = fold_merge(merge_action_options, default_action_options, [
        options["actionOptions"].get("_"),
        options["actionOptions"].get(action_name),
    ])
    p = fold_merge(merge_params, default_dummy, [
        options["actionParams"].get("_"),
        options["actionParams"].get(action_name),
        params,
    ])
    return o, p


async def _autoload(loader: Loader, options: dict, kind: str, name: str) -> bool:
    start = time.monotonic()
    exists = await loader.autoload(kind, name)
    if options["profile"]:
        report_error(f"Load {name}: {int((time.monotonic() - start) * 1000)} ms")
    return exists


async def _check_on_init(label: str, plugin: Any, args: Any) -> None:
    """Run plugin.on_init once; a failure leaves the plugin usable."""
    if getattr(plugin, "is_initialized", False):
        return
    try:
        on_init = getattr(plugin, "on_init", None)
        if on_init is not None:
            await maybe_await(on_init(args))
        plugin.is_initialized = True
    except Exception as e:
        report_error(f'{label}: {plugin.name} "onInit()" failed', e)


async def get_ui(host: Host, loader: Loader, options: dict) -> tuple[Any, dict, dict]:
    user_ui = convert_user_string(options["ui"]) or {"name": ""}
    name = user_ui["name"]
    if not loader.get_ui(options["name"], name):
        exists = await _autoload(loader, options, "ui", name)
        if name != "" and not exists:
            report_error(f'Not found ui: "{name}"')

    ui = loader.get_ui(options["name"], name)
    if not ui:
        return None, default_ui_options(), default_dummy()

    ui_options, ui_params = ui_args(options, ui)
    await _check_on_init("ui", ui, UiInitArguments(
        host=host, ui_options=ui_options, ui_params=ui_params,
    ))
    return ui, ui_options, ui_params


async def get_source(
    host: Host,
    loader: Loader,
    options: dict,
    name: str,
    user_source: Any,
) -> tuple[Any, dict, dict]:
    if not loader.get_source(options["name"], name):
        if not await _autoload(loader, options, "source", name):
            report_error(f"Not found source: {name}")

    source = loader.get_source(options["name"], name)
    if not source:
        return None, default_source_options(), default_dummy()

    source_options, source_params = source_args(source, options, user_source)
    return source, source_options, source_params


async def get_filter(
    host: Host,
    loader: Loader,
    options: dict,
    user_filter: Any,
) -> tuple[Any, dict, dict]:
    user_filter = convert_user_string(user_filter)
    name = user_filter["name"]
    if not loader.get_filter(options["name"], name):
        if not await _autoload(loader, options, "filter", name):
            report_error(f"Not found filter: {name}")

    filter = loader.get_filter(options["name"], name)
    if not filter:
        return None, default_filter_options(), default_dummy()

    filter_options, filter_params = filter_args(filter, options, user_filter)
    await _check_on_init("filter", filter, FilterInitArguments(
        host=host, filter_options=filter_options, filter_params=filter_params,
    ))
    return filter, filter_options, filter_params


async def get_kind(host: Host, loader: Loader, options: dict, name: str) -> Any:
    if not loader.get_kind(options["name"], name):
        if not await _autoload(loader, options, "kind", name):
            report_error(f"Not found kind: {name}")

    return loader.get_kind(options["name"], name)


async def get_column(
    host: Host,
    loader: Loader,
    options: dict,
    user_column: Any,
) -> tuple[Any, dict, dict]:
    user_column = convert_user_string(user_column)
    name = user_column["name"]
    if not loader.get_column(options["name"], name):
        if not await _autoload(loader, options, "column", name):
            report_error(f"Not found column: {name}")

    column = loader.get_column(options["name"], name)
    if not column:
        return None, default_column_options(), default_dummy()

    column_options, column_params = column_args(column, options, user_column)
    await _check_on_init("column", column, ColumnInitArguments(
        host=host, column_options=column_options, column_params=column_params,
    ))
    return column, column_options, column_params


async def init_source(
    host: Host,
    source: Any,
    source_options: dict,
    source_params: dict,
) -> None:
    """Initialize a source for a new start; sources re-run on_init each start."""
    source.is_initialized = False
    on_init = getattr(source, "on_init", None)
    try:
        if on_init is not None:
            await maybe_await(on_init(SourceInitArguments(
                host=host, source_options=source_options, source_params=source_params,
            )))
    except Exception as e:
        report_error(f'source: {source.name} "onInit()" failed', e)
    source.is_initialized = True


async def call_on_refresh_items_hooks(
    host: Host,
    loader: Loader,
    options: dict,
    source_options: dict,
) -> None:
    filters = (
        source_options["matchers"] + source_options["sorters"] + source_options["converters"]
    )

    async def _call(user_filter):
        filter, filter_options, filter_params = await get_filter(
            host, loader, options, user_filter,
        )
        hook = getattr(filter, "on_refresh_items", None)
        if hook is not None:
            await maybe_await(hook(OnRefreshItemsArguments(
                host=host, filter_options=filter_options, filter_params=filter_params,
            )))

    await asyncio.gather(*(_call(user_filter) for user_filter in filters))


async def call_filters(
    host: Host,
    loader: Loader,
    context: Context,
    options: dict,
    source_options: dict,
    filters: list,
    input: str,
    items: list[SiftItem],
) -> list[SiftItem]:
    """
    Run filters in order over items.

    A filter is skipped while the input is shorter than its minInputLength.
    A failing filter is reported and its step is skipped.

    Returns:
        The items left by the last filter
    """
    for user_filter in filters:
        filter, filter_options, filter_params = await get_filter(
            host, loader, options, user_filter,
        )
        if not filter or len(input) < filter_options["minInputLength"]:
            continue

        try:
            result = await maybe_await(filter.filter(FilterArguments(
                host=host,
                context=context,
                options=options,
                source_options=source_options,
                filter_options=filter_options,
                filter_params=filter_params,
                input=input,
                items=items,
            )))
        except Exception as e:
            report_error(f'filter: {filter.name} "filter()" failed', e)
            continue

        if isinstance(result, FilterResult):
            if result.input:
                input = result.input
            items = result.items
        else:
            items = list(result)

    return items


@dataclass
class _CachedColumn:
    column: Any
    column_options: dict
    column_params: dict
    length: int


async def call_columns(
    host: Host,
    loader: Loader,
    context: Context,
    options: dict,
    columns: list,
    items: list[SiftItem],
    all_items: list[SiftItem],
) -> list[SiftItem]:
    """
    Compute display and highlights of items from the configured columns.

    Column widths are measured over all_items so the layout does not shift
    with the visible slice. Highlight columns are byte offsets, so after
    each column the start column is padded by the difference between the
    UTF-8 length and the display width of its text.
    """
    if not columns:
        return items

    user_columns = [convert_user_string(column) for column in columns]
    cached_columns: dict[int, _CachedColumn] = {}
    for index, user_column in enumerate(user_columns):
        column, column_options, column_params = await get_column(
            host, loader, options, user_column,
        )
        if not column:
            continue

        length = await maybe_await(column.get_length(GetLengthArguments(
            host=host,
            context=context,
            options=options,
            column_options=column_options,
            column_params=column_params,
            items=all_items,
        )))
        cached_columns[index] = _CachedColumn(column, column_options, column_params, length)

    for item in items:
        item.display = ""
        item.highlights = []

    for item in items:
        start_col = 1
        for index in range(len(user_columns)):
            cached = cached_columns.get(index)
            if cached is None:
                continue

            if index not in item._column_texts:
                item._column_texts[index] = await maybe_await(
                    cached.column.get_base_text(GetBaseTextArguments(
                        host=host,
                        context=context,
                        options=options,
                        column_options=cached.column_options,
                        column_params=cached.column_params,
                        item=item,
                    ))
                )

            try:
                text = await maybe_await(cached.column.get_text(GetTextArguments(
                    host=host,
                    context=context,
                    options=options,
                    column_options=cached.column_options,
                    column_params=cached.column_params,
                    start_col=start_col,
                    end_col=start_col + cached.length,
                    item=item,
                    base_text=item._column_texts[index],
                )))
            except Exception as e:
                report_error(f'column: {cached.column.name} "getText()" failed', e)
                continue

            if text.highlights:
                item.highlights = item.highlights + list(text.highlights)
            item.display += text.text

            if len(columns) == 1:
                continue

            start_col += cached.length

            width = await host.display_width(text.text)
            length = len(text.text.encode("utf-8"))
            if width < length:
                start_col += length - width
                item.display += " " * (length - width)

    return items


async def get_item_actions(
    host: Host,
    loader: Loader,
    options: dict,
    items: list[SiftItem],
) -> ItemActions:
    """
    Resolve the single source and kind of items and their action map.

    Raises:
        MixedSelectionError: Items come from several sources or kinds
        ExtensionNotFoundError: The source or the kind is unavailable
    """
    if items:
        sources = [loader.get_source(options["name"], item._source_name) for item in items]
    else:
        sources = [
            loader.get_source(options["name"], convert_user_string(user_source)["name"])
            for user_source in options["sources"]
        ]
    sources = [source for source in _unique(sources) if source]
    indexes = _item_source_indexes(items)

    if not sources:
        raise ExtensionNotFoundError("source", ", ".join(
            _unique([item._source_name for item in items])
        ))
    if len(sources) != 1 and len(indexes) != 1:
        names = ",".join(source.name for source in sources)
        raise MixedSelectionError(f'You must not mix multiple sources items: "{names}"')

    source = sources[0]

    if items:
        kinds = _unique([item.kind for item in items])
    else:
        kinds = _unique([source.kind for source in sources])
    if len(kinds) != 1:
        names = ",".join(str(kind) for kind in kinds)
        raise MixedSelectionError(f'You must not mix multiple kinds: "{names}"')

    kind = await get_kind(host, loader, options, kinds[0])
    if not kind:
        raise ExtensionNotFoundError("kind", kinds[0])

    kind_options, _ = kind_args(kind, options)
    user_source = options["sources"][indexes[0] if indexes else 0]
    source_options, _ = source_args(source, options, user_source)

    # Later maps win: kind, kind options, source, source options
    actions = {
        **kind.actions,
        **kind_options["actions"],
        **getattr(source, "actions", {}),
        **source_options["actions"],
    }

    if options["actions"]:
        actions = {
            name: action for name, action in actions.items()
            if name in options["actions"]
        }

    return ItemActions(source=source, kind=kind, actions=actions)


async def get_item_action(
    host: Host,
    loader: Loader,
    options: dict,
    action_name: str,
    items: list[SiftItem],
    user_action_params: Optional[dict],
) -> Optional[ItemActionInfo]:
    """
    Resolve action_name for items.

    "default" falls back from the source's defaultAction to the kind's.

    Raises:
        UndefinedActionError: No default action, or the action is unknown
        MixedSelectionError: See get_item_actions
    """
    if not items:
        return None

    item_actions = await get_item_actions(host, loader, options, items)
    source, kind, actions = item_actions.source, item_actions.kind, item_actions.actions

    indexes = _item_source_indexes(items)
    source_index = indexes[0] if indexes else 0
    user_source = options["sources"][source_index]
    source_options, source_params = source_args(source, options, user_source)
    kind_options, kind_params = kind_args(kind, options)

    if action_name == "default":
        action_name = source_options["defaultAction"] or kind_options["defaultAction"]
        if not action_name:
            raise UndefinedActionError("The default action is not defined for the items")

    # Options are looked up by the name the user gave, before aliasing
    action_options, action_params = action_args(action_name, options, user_action_params)

    action_name = loader.get_alias("action", action_name) or action_name

    action = actions.get(action_name)
    if not action:
        raise UndefinedActionError(f"Not found action: {action_name}")

    return ItemActionInfo(
        user_source=user_source,
        source_index=source_index,
        source_options=source_options,
        source_params=source_params,
        kind_options=kind_options,
        kind_params=kind_params,
        action_options=action_options,
        action_params=action_params,
        action=action,
    )


async def get_previewer(
    host: Host,
    loader: Loader,
    options: dict,
    item: SiftItem,
    action_params: dict,
) -> Optional[dict]:
    source = loader.get_source(options["name"], item._source_name)
    if not source:
        return None

    kind = await get_kind(host, loader, options, item.kind or source.kind)
    if not kind or not hasattr(kind, "get_previewer"):
        return None

    return await maybe_await(kind.get_previewer(GetPreviewerArguments(
        host=host, options=options, action_params=action_params, item=item,
    )))


async def ui_redraw(
    host: Host,
    lock: asyncio.Lock,
    context: Context,
    options: dict,
    ui: Any,
    ui_options: dict,
    ui_params: dict,
    scope: CancelScope,
) -> None:
    """Redraw the UI under the shared redraw lock and emit UI events."""
    async with lock:
        if await host.in_cmdwin():
            return

        args = UiArguments(
            host=host,
            context=context,
            options=options,
            ui_options=ui_options,
            ui_params=ui_params,
        )
        try:
            if scope.aborted:
                await maybe_await(ui.quit(args))
                return

            prev_win_ids = await maybe_await(ui.win_ids(args))

            await maybe_await(ui.redraw(args))

            # The session may have quit while redrawing
            if scope.aborted:
                await maybe_await(ui.quit(args))

            await host.emit("Sift:redraw")

            win_ids = await maybe_await(ui.win_ids(args))
            if len(win_ids) > len(prev_win_ids):
                await host.emit("Sift:uiReady")

            if not ui.prev_done and context.done:
                ui.prev_done = True
                await host.emit("Sift:uiDone")
        except RedrawNotAllowedError:
            logger.debug(f"Redraw of '{options['name']}' deferred")
            await host.lazy_redraw(options["name"])
        except Exception as e:
            report_error(f'ui: {ui.name} "redraw()" failed', e)


async def ui_quit(host: Host, loader: Loader, context: Context, options: dict) -> None:
    ui, ui_options, ui_params = await get_ui(host, loader, options)
    if not ui:
        return

    visible = await maybe_await(ui.visible(VisibleArguments(
        host=host,
        context=context,
        options=options,
        ui_options=ui_options,
        ui_params=ui_params,
        tab_nr=await host.tab_nr(),
    )))
    if visible:
        await maybe_await(ui.quit(UiArguments(
            host=host,
            context=context,
            options=options,
            ui_options=ui_options,
            ui_params=ui_params,
        )))
        ui.prev_done = False


async def ui_search_item(
    host: Host,
    loader: Loader,
    context: Context,
    options: dict,
    item: SiftItem,
) -> None:
    ui, ui_options, ui_params = await get_ui(host, loader, options)
    if not ui:
        return

    await maybe_await(ui.search_item(ItemArguments(
        host=host,
        context=context,
        options=options,
        ui_options=ui_options,
        ui_params=ui_params,
        item=item,
    )))


async def ui_action(
    host: Host,
    loader: Loader,
    context: Context,
    options: dict,
    action_name: str,
    action_params: dict,
    session: Any = None,
) -> tuple[Any, dict, dict, ActionFlags]:
    """
    Run a UI action; UI option actions override the UI's own actions.

    Returns:
        (ui, ui_options, ui_params, flags); ui is None if nothing ran
    """
    ui, ui_options, ui_params = await get_ui(host, loader, options)
    if not ui:
        return None, ui_options, ui_params, ActionFlags.NONE

    hook_args = UiHookArguments(host=host, ui_options=ui_options, ui_params=ui_params)
    if hasattr(ui, "on_before_action"):
        await maybe_await(ui.on_before_action(hook_args))

    action = ui_options["actions"].get(action_name) or ui.actions.get(action_name)
    if not action:
        report_error(f"Not found UI action: {action_name}")
        return None, ui_options, ui_params, ActionFlags.NONE

    callback = action.callback if isinstance(action, Action) else action
    result = await maybe_await(callback(UiActionArguments(
        host=host,
        context=context,
        options=options,
        ui_options=ui_options,
        ui_params=ui_params,
        session=session,
        action_params=action_params or {},
    )))

    if hasattr(ui, "on_after_action"):
        await maybe_await(ui.on_after_action(hook_args))

    flags = result if isinstance(result, int) else ActionFlags.NONE
    return ui, ui_options, ui_params, ActionFlags(flags)
