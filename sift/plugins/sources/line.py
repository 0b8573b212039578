"""
line - Lines of a file, or of the lines param.
"""

from pathlib import Path

from loguru import logger

from sift.base.source import BaseSource, GatherArguments
from sift.types import Item

CHUNK_SIZE = 1000


class Source(BaseSource):
    kind = "file"

    async def gather(self, args: GatherArguments):
        lines = args.source_params["lines"]
        path = args.source_params["path"] or args.context.buf_name

        if not lines and path:
            try:
                lines = Path(path).expanduser().read_text(errors="replace").splitlines()
            except OSError as e:
                logger.warning(f"Cannot read {path}: {e}")
                return

        for start in range(0, len(lines), CHUNK_SIZE):
            yield [
                Item(
                    word=line,
                    action={"path": path, "lineNr": start + offset + 1},
                )
                for offset, line in enumerate(lines[start:start + CHUNK_SIZE])
            ]

    def params(self) -> dict:
        return {
            "lines": [],
            "path": "",
        }
