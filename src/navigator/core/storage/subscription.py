"""Cancellation handles for live listeners."""

from __future__ import annotations

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned to whoever registered a listener.

    The owner must call :meth:`cancel` once it no longer needs updates.
    Cancelling is idempotent; the release callback runs at most once.

    Usage::

        sub = repo.subscribe_logs(identity, on_logs)
        ...
        sub.cancel()
    """

    def __init__(self, release: Callable[[], None] | None = None, *, name: str = "") -> None:
        self._release = release
        self._active = release is not None
        self.name = name

    @classmethod
    def inactive(cls, name: str = "") -> Subscription:
        """A handle that was never attached to anything."""
        return cls(None, name=name)

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop further deliveries and release the listener."""
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        if release is not None:
            release()
        logger.debug("Subscription cancelled: %s", self.name or "<unnamed>")

    # Allows ``with repo.subscribe_profile(...) as sub:``
    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *args) -> None:
        self.cancel()

    def __repr__(self) -> str:
        state = "active" if self._active else "cancelled"
        return f"Subscription({self.name!r}, {state})"
