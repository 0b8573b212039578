"""
file - Directory listing as a tree.

Lists one directory; directories are tree items, so expanding one gathers
its entries with the directory as parent.
"""

import os

from loguru import logger

from sift.base.source import BaseSource, GatherArguments
from sift.types import Item
from sift.utils.helpers import tree_path_to_filename


class Source(BaseSource):
    kind = "file"

    async def gather(self, args: GatherArguments):
        if args.parent is not None:
            root = tree_path_to_filename(args.parent.tree_path)
        else:
            root = tree_path_to_filename(args.source_options["path"] or args.context.path)
        if not root:
            root = await args.host.cwd()
        root = os.path.abspath(os.path.expanduser(root))

        try:
            entries = list(os.scandir(root))
        except OSError as e:
            logger.warning(f"Cannot list directory {root}: {e}")
            return

        # Directories first
        entries.sort(key=lambda entry: (not entry.is_dir(), entry.name))

        items = []
        for entry in entries:
            if not args.source_params["showHidden"] and entry.name.startswith("."):
                continue
            is_directory = entry.is_dir()
            items.append(Item(
                word=entry.name + (os.sep if is_directory else ""),
                action={"path": entry.path, "isDirectory": is_directory},
                is_tree=is_directory,
                tree_path=entry.path,
            ))

        yield items

    def params(self) -> dict:
        return {"showHidden": False}
