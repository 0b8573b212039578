"""
file - Actions on file system paths.

Items carry {"path": ...} (and "isDirectory" for tree sources) in their
action payload; the word is used when the path is missing.
"""

import os
import subprocess

from loguru import logger

from sift.base.kind import ActionArguments, BaseKind, GetPreviewerArguments
from sift.types import Action, ActionFlags


def _item_path(item) -> str:
    action = item.action if isinstance(item.action, dict) else {}
    return action.get("path") or item.word


def _open(args: ActionArguments) -> ActionFlags:
    command = args.kind_params["openCommand"]
    for item in args.items:
        path = _item_path(item)
        try:
            subprocess.Popen(
                [command, path],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError:
            logger.exception(f"Failed to open: {path}")

    return ActionFlags.NONE


def _yank(args: ActionArguments) -> ActionFlags:
    args.clipboard.action = "yank"
    args.clipboard.items = list(args.items)
    args.clipboard.mode = ""
    logger.debug(f"Yanked {len(args.items)} paths")

    return ActionFlags.PERSIST


def _cd(args: ActionArguments) -> ActionFlags:
    """Narrow the source to the selected directory."""
    item = args.items[0]
    path = _item_path(item)
    if not os.path.isdir(path):
        path = os.path.dirname(path)

    args.source_options["path"] = path

    return ActionFlags.REFRESH_ITEMS


class Kind(BaseKind):
    actions = {
        "open": Action(callback=_open, description="Open the files"),
        "yank": Action(callback=_yank, description="Yank the paths to the clipboard"),
        "cd": Action(callback=_cd, description="Change the source path"),
    }

    def get_previewer(self, args: GetPreviewerArguments) -> dict:
        previewer = {"kind": "buffer", "path": _item_path(args.item)}
        if isinstance(args.item.action, dict) and args.item.action.get("lineNr"):
            previewer["lineNr"] = args.item.action["lineNr"]
        return previewer

    def params(self) -> dict:
        return {"openCommand": "xdg-open"}
