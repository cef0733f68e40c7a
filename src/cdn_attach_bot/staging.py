"""Temporary files for one pipeline run, removed together when the run ends."""

from __future__ import annotations

import logging
from pathlib import Path
from types import TracebackType
from typing import BinaryIO

from .errors import CleanupError, StagingWriteError

log = logging.getLogger(__name__)


class StagingArea:
    """Tracks every file a run creates under ``directory`` and deletes them on exit.

    Only files created through :meth:`create` are ever removed, so concurrent
    runs sharing the directory never touch each other's downloads.
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._paths: list[Path] = []
        self._cleaned = False

    def __enter__(self) -> StagingArea:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.cleanup()

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def create(self, filename: str) -> tuple[Path, BinaryIO]:
        """Exclusively create ``filename`` and return it opened for binary writing."""
        if self._cleaned:
            raise StagingWriteError("staging area already cleaned up")
        path = self.directory / filename
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fh = path.open("xb")
        except FileExistsError as e:
            raise StagingWriteError(f"staging file already exists: {path}") from e
        except OSError as e:
            raise StagingWriteError(f"cannot create {path}: {e}") from e
        self._paths.append(path)
        return path, fh

    def discard(self, path: Path) -> None:
        """Delete one tracked file now instead of at cleanup."""
        if path not in self._paths:
            return
        try:
            _remove(path)
        except CleanupError as e:
            log.warning("%s", e)
            return
        self._paths.remove(path)

    def cleanup(self) -> None:
        if self._cleaned:
            return
        self._cleaned = True
        for path in self._paths:
            try:
                _remove(path)
            except CleanupError as e:
                log.error("%s", e)
            else:
                log.debug("Deleted staged file %s", path)
        self._paths.clear()


def _remove(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        raise CleanupError(f"Error deleting {path}: {e}") from e
