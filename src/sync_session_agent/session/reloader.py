"""Process reloader - replaces the running process with a fresh copy."""

from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

import structlog

logger = structlog.get_logger()


class Reloader(Protocol):
    def reload(self) -> None: ...


class ProcessReloader:
    """Re-executes the interpreter with its original command line.

    Paths in ``cleanup_paths`` (e.g. a listening Unix socket) are removed
    first so the new process can bind them again.
    """

    def __init__(self, cleanup_paths: Sequence[Path] = ()) -> None:
        self._cleanup_paths = list(cleanup_paths)

    def command(self) -> list[str]:
        argv = list(getattr(sys, "orig_argv", []) or [sys.executable, *sys.argv])
        argv[0] = sys.executable
        return argv

    def reload(self) -> None:
        for path in self._cleanup_paths:
            path.unlink(missing_ok=True)
        argv = self.command()
        logger.info("process_reloading", argv=argv)
        os.execv(sys.executable, argv)
