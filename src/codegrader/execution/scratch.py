"""Per-execution scratch directories with guaranteed cleanup."""

from __future__ import annotations

import asyncio
import shutil
import uuid
from pathlib import Path
from types import TracebackType

from codegrader.util.logging import get_logger

_LOGGER = get_logger("codegrader.execution.scratch")


class ScratchSpace:
    """Uniquely named directory holding one execution's source and artifacts.

    Use as an async context manager; the directory and everything in it is
    removed on exit regardless of how the block ends. Removal errors are logged
    and swallowed so they never replace a result computed inside the block.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.execution_id = uuid.uuid4().hex
        self.path = root / self.execution_id

    async def __aenter__(self) -> ScratchSpace:
        self.root.mkdir(parents=True, exist_ok=True)
        self.path.mkdir()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await asyncio.to_thread(self.cleanup)

    def write_source(self, file_name: str, code: str) -> Path:
        """Write source text verbatim and return its path."""

        source_path = self.path / file_name
        with source_path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(code)
        return source_path

    def cleanup(self) -> None:
        """Remove the scratch directory, logging instead of raising on failure."""

        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            return
        except OSError as exc:
            _LOGGER.error("Error cleaning up scratch directory %s: %s", self.path, exc)
