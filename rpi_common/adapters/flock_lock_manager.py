"""Host-local job locks backed by ``flock(2)`` on files in a lock directory."""

from __future__ import annotations

import fcntl
import hashlib
import os
import re
import tempfile
from pathlib import Path
from typing import Final

from rpi_common.config.logging_config import get_logger
from rpi_common.domain.exceptions import LockContentionError
from rpi_common.domain.models import LockToken
from rpi_common.ports.lock_manager import LockManagerPort

logger = get_logger(__name__)

_UNSAFE_CHARS: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9._-]+")
_MAX_STEM_LENGTH: Final[int] = 80


def lock_file_name(identity: str) -> str:
    """Map any identity to a file name that is safe and collision free."""

    digest = hashlib.sha256(identity.encode("utf-8")).hexdigest()[:16]
    stem = _UNSAFE_CHARS.sub("-", identity).strip("-.")[:_MAX_STEM_LENGTH]
    return f"{stem or 'job'}.{digest}.lock"


class FlockLockManager(LockManagerPort):
    """Exclusive advisory locks, one file per job identity.

    The kernel drops ``flock`` locks together with the open file
    description, so a crashed process never leaves a stale lock behind.
    """

    def __init__(self, lock_dir: Path | str | None = None, *, blocking: bool = False):
        self._lock_dir = Path(lock_dir) if lock_dir else Path(tempfile.gettempdir())
        self._blocking = blocking

    @property
    def lock_dir(self) -> Path:
        return self._lock_dir

    def path_for(self, identity: str) -> Path:
        return self._lock_dir / lock_file_name(identity)

    def acquire(self, identity: str, *, run_id: str) -> LockToken:
        path = self.path_for(identity)
        logger.debug(
            "lock_acquire_attempt",
            internal_name=identity,
            unique_identifier=run_id,
            path=str(path),
            blocking=self._blocking,
        )

        self._lock_dir.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_RDWR | os.O_CREAT, 0o644)
        flags = fcntl.LOCK_EX if self._blocking else fcntl.LOCK_EX | fcntl.LOCK_NB
        try:
            fcntl.flock(fd, flags)
        except BlockingIOError as exc:
            os.close(fd)
            logger.warning(
                "lock_not_acquired",
                internal_name=identity,
                unique_identifier=run_id,
                path=str(path),
            )
            raise LockContentionError(identity) from exc
        except OSError:
            os.close(fd)
            raise

        # Record the holder for humans inspecting the lock directory
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()} {run_id}\n".encode())

        logger.info(
            "lock_acquired",
            internal_name=identity,
            unique_identifier=run_id,
            path=str(path),
        )
        return LockToken(identity=identity, run_id=run_id, path=path, fd=fd)

    def release(self, token: LockToken) -> None:
        if token.released or token.fd is None:
            return

        fd, token.fd = token.fd, None
        token.released = True
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

        logger.debug(
            "lock_released",
            internal_name=token.identity,
            unique_identifier=token.run_id,
            path=str(token.path),
        )


__all__ = ["FlockLockManager", "lock_file_name"]
