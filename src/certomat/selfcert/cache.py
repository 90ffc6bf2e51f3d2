"""Directory-backed certificate cache.

Stores one opaque blob per key in a private directory so the gateway's
own certificate survives restarts.  The manager only relies on the
narrow ``get`` / ``put`` / ``delete`` interface, so any object with
those three methods can stand in (tests use a dict-backed fake).
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

log = logging.getLogger(__name__)

_DIR_MODE = 0o700
_FILE_MODE = 0o600


class DirCache:
    """Key/value store where each key is a file in *directory*.

    Parameters
    ----------
    directory:
        Cache directory; created with mode ``0700`` on first write.

    """

    def __init__(self, directory: str | Path) -> None:
        self._dir = Path(directory)

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in {".", ".."}:
            msg = f"invalid cache key: {key!r}"
            raise ValueError(msg)
        return self._dir / key

    def ensure_directory(self) -> None:
        """Create the cache directory if it does not exist."""
        self._dir.mkdir(mode=_DIR_MODE, parents=True, exist_ok=True)

    def get(self, key: str) -> bytes | None:
        """Return the data stored under *key*, or ``None`` on a miss."""
        try:
            return self._path(key).read_bytes()
        except FileNotFoundError:
            return None

    def put(self, key: str, data: bytes) -> None:
        """Atomically store *data* under *key*."""
        path = self._path(key)
        self.ensure_directory()
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.chmod(tmp_name, _FILE_MODE)  # noqa: PTH101
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        log.debug("Cached %d bytes under %s", len(data), key)

    def delete(self, key: str) -> None:
        """Remove *key*; missing keys are ignored."""
        self._path(key).unlink(missing_ok=True)
