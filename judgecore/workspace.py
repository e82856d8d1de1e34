"""Per-request scratch directories for generated sources and binaries."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from judgecore.errors import WorkspaceError
from judgecore.models import Language

logger = logging.getLogger(__name__)

_PREFIX = "judge_run_"


class Workspace:
    """A randomly named temp directory owned by exactly one request.

    Use as a context manager; the directory and everything in it is removed
    on exit, whatever the outcome of the block.
    """

    def __init__(self, language: Language, root: str | None = None) -> None:
        self.language = language
        self._root = root
        self.path: Path | None = None

    def __enter__(self) -> Workspace:
        self.create()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    def create(self) -> Path:
        try:
            if self._root:
                os.makedirs(self._root, exist_ok=True)
            self.path = Path(tempfile.mkdtemp(prefix=_PREFIX, dir=self._root))
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace: {e}") from e
        logger.debug("Created workspace %s", self.path)
        return self.path

    @property
    def source_path(self) -> Path:
        return self._require() / f"main{self.language.source_suffix}"

    @property
    def binary_path(self) -> Path:
        return self._require() / "run_bin"

    def write_source(self, code: str) -> Path:
        path = self.source_path
        try:
            path.write_text(code, encoding="utf-8")
        except OSError as e:
            raise WorkspaceError(f"Cannot write source file: {e}") from e
        return path

    def cleanup(self) -> None:
        if self.path is None:
            return
        path, self.path = self.path, None
        shutil.rmtree(path, ignore_errors=True)
        if path.exists():
            logger.warning("Workspace %s could not be fully removed", path)
        else:
            logger.debug("Removed workspace %s", path)

    def _require(self) -> Path:
        if self.path is None:
            raise WorkspaceError("Workspace has not been created")
        return self.path
