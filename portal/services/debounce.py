"""
Quiescence Debouncer.

Coalesces bursts of input events: every :meth:`Debouncer.trigger` restarts
the countdown, and the callback only runs once the countdown elapses
without another trigger.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from portal.logger import StructuredLogger


class Debouncer:
    """Timer-based coalescing buffer on the running event loop.

    Parameters
    ----------
    delay_s:
        Quiescence window in seconds.
    callback:
        Invoked (synchronously, on the loop) when the window elapses.
    logger:
        Optional structured logger; callback errors are logged there.
    """

    def __init__(
        self,
        delay_s: float,
        callback: Callable[[], None],
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        if delay_s < 0:
            raise ValueError("delay_s must be >= 0")
        self._delay_s: float = delay_s
        self._callback: Callable[[], None] = callback
        self._logger: Optional[StructuredLogger] = logger
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def delay_s(self) -> float:
        return self._delay_s

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        """Restart the countdown.

        Outside a running event loop there is nothing to wait on, so the
        callback runs immediately.
        """
        self.cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._fire()
            return
        self._handle = loop.call_later(self._delay_s, self._fire)

    def flush(self) -> bool:
        """Run a pending callback now.  Returns ``True`` if one was pending."""
        if self._handle is None:
            return False
        self.cancel()
        self._fire()
        return True

    def cancel(self) -> None:
        """Drop the pending callback, if any."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        try:
            self._callback()
        except Exception:
            if self._logger is None:
                raise
            self._logger.error("Debounced callback raised.", exc_info=True)
