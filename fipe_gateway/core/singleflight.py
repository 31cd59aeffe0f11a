"""Coalescing of concurrent cache misses on the same key."""

import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class SingleFlight:
    """Runs at most one in-flight call per key; concurrent callers share its outcome.

    The first caller for a key (the leader) runs ``fn``. Callers arriving
    while it runs wait on the leader's future and receive the same result or
    the same exception. Once the leader finishes the key is released, so the
    next miss starts a fresh call.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._calls: Dict[Hashable, Future] = {}

    def do(self, key: Hashable, fn: Callable[[], Any], timeout: Optional[float] = None) -> Tuple[Any, bool]:
        """Run ``fn`` for ``key`` or join the call already in flight.

        Args:
            key: Identity of the call
            fn: Work to run when this caller is the leader
            timeout: Maximum seconds a waiter blocks on the leader

        Returns:
            ``(result, shared)``; ``shared`` is True for waiters

        Raises:
            Whatever ``fn`` raised, for the leader and every waiter.
            concurrent.futures.TimeoutError if a waiter gives up first.
        """
        with self._lock:
            future = self._calls.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._calls[key] = future

        if not leader:
            return future.result(timeout=timeout), True

        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result, False
        finally:
            with self._lock:
                self._calls.pop(key, None)

    def in_flight(self) -> int:
        with self._lock:
            return len(self._calls)
