"""
Cooperative concurrency primitives.

- CancellationToken: a handle a consumer cancels to ask an in-flight
  operation to stop. Collaborators poll it between chunks of work.
- DeferredTask: a re-armable single-shot deferred call used for batching.

Both are written for a single event loop; none of the state here is
touched from other threads.
"""

import asyncio
import logging
from typing import Callable, Optional


class RequestCancelledError(Exception):
    """Raised when an operation observes that its token was cancelled."""
    pass


class CancellationToken:
    """Cooperative cancellation handle, independent of any I/O library."""

    def __init__(self, label: str = ""):
        self.label = label
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Signal cancellation. Calling it more than once is a no-op."""
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RequestCancelledError(f"Request '{self.label}' was cancelled")

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationToken({self.label!r}, {state})"


class DeferredTask:
    """
    Single-shot deferred call.

    ``schedule`` arms the task once; scheduling again while armed is a
    no-op. Without a running event loop the callable runs immediately,
    since there is nothing that could fire it later.
    """

    def __init__(self, name: str = "deferred"):
        self.name = name
        self.logger = logging.getLogger(f"{__name__}.DeferredTask")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._callback: Optional[Callable[[], None]] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def schedule(self, callback: Callable[[], None], delay: float) -> bool:
        """
        Arm the task to run ``callback`` after ``delay`` seconds.

        Returns:
            True if the task was armed by this call, False if it was already
            armed or ran synchronously.
        """
        if self._handle is not None:
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.logger.debug(f"No running loop, running '{self.name}' immediately")
            callback()
            return False

        self._callback = callback
        self._handle = loop.call_later(delay, self._fire)
        return True

    def cancel(self) -> None:
        """Disarm without running. Safe to call when not armed."""
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._callback = None

    def _fire(self) -> None:
        callback = self._callback
        self._handle = None
        self._callback = None
        if callback is not None:
            callback()
