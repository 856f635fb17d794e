"""Exclusive working-tree lock preventing overlapping pipeline runs."""

from __future__ import annotations

import fcntl
import json
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Optional

from .errors import PipelineBusy
from .logging import get_logger

LOCK_FILENAME = ".orgdocs.lock"


class PipelineLock:
    """Non-blocking ``flock`` on ``<workdir>/.orgdocs.lock``.

    The kernel drops the lock when the holder exits. The file body records the
    holder for diagnostics only.
    """

    def __init__(self, workdir: Path) -> None:
        self.path = workdir / LOCK_FILENAME
        self._handle: Optional[IO[str]] = None
        self.logger = get_logger("lock")

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """Take the lock or raise :class:`PipelineBusy` immediately."""
        if self._handle is not None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as exc:
            holder = _read_holder(handle)
            handle.close()
            raise PipelineBusy(str(self.path), holder) from exc
        except BaseException:
            handle.close()
            raise
        handle.seek(0)
        handle.truncate()
        handle.write(
            json.dumps(
                {"pid": os.getpid(), "started_at": datetime.now(UTC).isoformat()},
                sort_keys=True,
            )
        )
        handle.flush()
        self._handle = handle
        self.logger.debug("Acquired pipeline lock %s", self.path)

    def release(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.seek(0)
            handle.truncate()
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
        self.logger.debug("Released pipeline lock %s", self.path)

    def ensure_available(self) -> None:
        """Fail fast with :class:`PipelineBusy` if another process holds the lock."""
        if self._handle is not None:
            return
        self.acquire()
        self.release()

    def __enter__(self) -> "PipelineLock":
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


def _read_holder(handle: IO[str]) -> Optional[str]:
    try:
        handle.seek(0)
        data = json.loads(handle.read() or "{}")
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict) or "pid" not in data:
        return None
    started = data.get("started_at")
    return f"pid {data['pid']}" + (f" since {started}" if started else "")


__all__ = ["LOCK_FILENAME", "PipelineLock"]
