"""Cancellation and deadline context for a reconcile pass."""

import time

from .errors import CancelledError


class Context:
    """Carries a deadline and a stop flag through every blocking call.

    Cluster and management API clients call ``check()`` before each request
    and use ``request_timeout()`` as the per-request timeout, so a pass can
    never block longer than its deadline. ``stopped`` is any object with an
    ``is_set()`` method, such as kopf's daemon stopper or a threading.Event.
    """

    def __init__(self, timeout=None, request_timeout=30.0, stopped=None, clock=time.monotonic):
        self._clock = clock
        self._deadline = None if timeout is None else clock() + timeout
        self._request_timeout = request_timeout
        self._stopped = stopped

    @property
    def cancelled(self):
        return self._stopped is not None and bool(self._stopped.is_set())

    def remaining(self):
        """Seconds left before the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def check(self):
        """Raise CancelledError if the pass should stop now."""
        if self.cancelled:
            raise CancelledError("reconcile cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise CancelledError("reconcile deadline exceeded")

    def request_timeout(self):
        """Timeout for the next request, capped by the remaining deadline."""
        self.check()
        remaining = self.remaining()
        if remaining is None:
            return self._request_timeout
        return min(self._request_timeout, remaining)
