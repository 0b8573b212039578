"""
file_rec - Every file below a directory.

Walks the source path (the session path when unset) and streams the files
in chunks, skipping ignored directories such as .git.
"""

import asyncio
import os

from sift.base.source import BaseSource, GatherArguments
from sift.types import Item
from sift.utils.helpers import tree_path_to_filename


class Source(BaseSource):
    kind = "file"

    async def gather(self, args: GatherArguments):
        root = tree_path_to_filename(args.source_options["path"] or args.context.path)
        if not root:
            root = await args.host.cwd()
        root = os.path.abspath(os.path.expanduser(root))

        ignored = set(args.source_params["ignoredDirectories"])
        chunk_size = args.source_params["chunkSize"]

        chunk = []
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(name for name in dirnames if name not in ignored)
            for filename in sorted(filenames):
                path = os.path.join(dirpath, filename)
                chunk.append(Item(
                    word=os.path.relpath(path, root),
                    action={"path": path},
                ))
                if len(chunk) >= chunk_size:
                    yield chunk
                    chunk = []
                    # Let the engine redraw between chunks
                    await asyncio.sleep(0)

        if chunk:
            yield chunk

    def params(self) -> dict:
        return {
            "chunkSize": 1000,
            "ignoredDirectories": [".git"],
        }
