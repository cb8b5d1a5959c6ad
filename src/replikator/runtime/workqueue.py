"""Deduplicating, rate-limited work queue.

The queue hands out one key at a time per worker and guarantees that a
key is never processed by two workers at once:

- adding a key that is already waiting is a no-op
- adding a key that is being processed parks it until done() is called,
  after which it is queued again
- add_after() delays a key; a key waits on at most one timer, the earliest
  deadline requested
- add_rate_limited() delays a key with per-key exponential backoff until
  forget() is called
"""

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable

DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 1000.0


class WorkQueue:
    """Thread-safe work queue keyed by object identity.

    Attributes:
        base_delay: First retry delay in seconds.
        max_delay: Upper bound for retry delays in seconds.

    """

    def __init__(
        self,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._clock = clock
        self._cond = threading.Condition()
        self._queue: deque[Hashable] = deque()
        self._dirty: set[Hashable] = set()
        self._processing: set[Hashable] = set()
        self._waiting: list[tuple[float, int, Hashable]] = []
        self._deadlines: dict[Hashable, float] = {}
        self._sequence = itertools.count()
        self._failures: dict[Hashable, int] = {}
        self._shutting_down = False

    def add(self, key: Hashable) -> None:
        """Queue a key for processing."""
        with self._cond:
            self._add_locked(key)

    def _add_locked(self, key: Hashable) -> None:
        if self._shutting_down or key in self._dirty:
            return
        self._dirty.add(key)
        if key in self._processing:
            return
        self._queue.append(key)
        self._cond.notify()

    def add_after(self, key: Hashable, delay: float) -> None:
        """Queue a key once delay seconds have passed.

        A key that is already waiting keeps whichever deadline is earlier.
        """
        if delay <= 0:
            self.add(key)
            return
        with self._cond:
            if self._shutting_down:
                return
            due = self._clock() + delay
            current = self._deadlines.get(key)
            if current is not None and current <= due:
                return
            self._deadlines[key] = due
            heapq.heappush(self._waiting, (due, next(self._sequence), key))
            self._cond.notify()

    def add_rate_limited(self, key: Hashable) -> float:
        """Queue a key after its backoff delay.

        Returns:
            The delay applied, in seconds.

        """
        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        delay = min(self.base_delay * (2**failures), self.max_delay)
        self.add_after(key, delay)
        return delay

    def forget(self, key: Hashable) -> None:
        """Reset the backoff of a key."""
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: Hashable) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def num_waiting(self) -> int:
        """Return the number of keys waiting on a delay."""
        with self._cond:
            return len(self._deadlines)

    def _promote_ready_locked(self) -> float | None:
        """Move due delayed keys into the queue; return seconds to the next one."""
        now = self._clock()
        while self._waiting and self._waiting[0][0] <= now:
            due, _, key = heapq.heappop(self._waiting)
            # Superseded by an earlier deadline for the same key
            if self._deadlines.get(key) != due:
                continue
            del self._deadlines[key]
            self._add_locked(key)
        if self._waiting:
            return max(self._waiting[0][0] - now, 0.0)
        return None

    def get(self, timeout: float | None = None) -> Hashable | None:
        """Take the next key, blocking until one is available.

        Args:
            timeout: Maximum seconds to wait, or None to wait until a key
                arrives or the queue shuts down.

        Returns:
            The key, or None on shutdown or timeout. Every key returned
            must be passed to done() once processed.

        """
        deadline = None if timeout is None else self._clock() + timeout
        with self._cond:
            while True:
                if self._shutting_down:
                    return None
                next_due = self._promote_ready_locked()
                if self._queue:
                    key = self._queue.popleft()
                    self._processing.add(key)
                    self._dirty.discard(key)
                    return key

                wait = next_due
                if deadline is not None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        return None
                    wait = remaining if wait is None else min(wait, remaining)
                self._cond.wait(wait)

    def done(self, key: Hashable) -> None:
        """Mark a key as processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def shutdown(self) -> None:
        """Stop accepting keys and wake every waiting worker."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def __repr__(self) -> str:
        return f"WorkQueue(depth={len(self)}, waiting={self.num_waiting()})"
