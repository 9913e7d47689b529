"""Port definition for host-local job locks."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from rpi_common.domain.models import LockToken


@runtime_checkable
class LockManagerPort(Protocol):
    """Interface implemented by lock backends."""

    def acquire(self, identity: str, *, run_id: str) -> LockToken:
        """Take the lock for ``identity``.

        Raises:
            LockContentionError: Another holder exists and the backend does not wait.
        """

    def release(self, token: LockToken) -> None:
        """Give the lock back. Calling it again on the same token is a no-op."""


__all__ = ["LockManagerPort"]
