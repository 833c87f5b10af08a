# ratelimit.py - Token bucket limiting batchCreate calls
import logging
import queue
import threading
import time

from cronocam.errors import CancellationError

logger = logging.getLogger(__name__)

# How often a blocked acquire() re-checks its cancel event
_POLL_INTERVAL = 0.05


class RateLimiter:
    """
    Token bucket shared by everything that calls the finalize endpoint.

    The bucket holds at most ``max_burst`` permits and starts full. A daemon
    thread adds one permit every ``1 / requests_per_second`` seconds; refills
    that arrive while the bucket is full are dropped.

    Example:
        limiter = RateLimiter(requests_per_second=5, max_burst=10)
        limiter.acquire(cancel_event)  # blocks until a permit is free
        ...
        limiter.close()
    """

    def __init__(self, requests_per_second: float, max_burst: int):
        if requests_per_second <= 0:
            raise ValueError(f"requests_per_second must be positive, got {requests_per_second}")
        if max_burst < 1:
            raise ValueError(f"max_burst must be at least 1, got {max_burst}")

        self.requests_per_second = requests_per_second
        self.max_burst = max_burst
        self._interval = 1.0 / requests_per_second
        self._permits: queue.Queue[None] = queue.Queue(maxsize=max_burst)
        self._stopped = threading.Event()

        for _ in range(max_burst):
            self._permits.put_nowait(None)

        self._thread = threading.Thread(
            target=self._refill, name="cronocam-rate-limiter", daemon=True
        )
        self._thread.start()

    def _refill(self) -> None:
        while not self._stopped.wait(self._interval):
            try:
                self._permits.put_nowait(None)
            except queue.Full:
                continue  # bucket full, permit dropped

    @property
    def available(self) -> int:
        """Number of permits currently in the bucket."""
        return self._permits.qsize()

    @property
    def closed(self) -> bool:
        return self._stopped.is_set()

    def acquire(
        self, cancel: threading.Event | None = None, timeout: float | None = None
    ) -> None:
        """
        Take one permit, blocking until one is available.

        Args:
            cancel: Event that aborts the wait when set
            timeout: Maximum seconds to wait (None = no deadline)

        Raises:
            CancellationError: cancel was set or the deadline passed first
        """
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cancel is not None and cancel.is_set():
                raise CancellationError("Cancelled while waiting for a rate limit permit")

            wait = _POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise CancellationError(
                        f"Timed out after {timeout:.1f}s waiting for a rate limit permit"
                    )
                wait = min(wait, remaining)

            try:
                self._permits.get(timeout=wait)
                return
            except queue.Empty:
                continue

    def close(self) -> None:
        """Stop the refill thread. Permits already in the bucket stay usable."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._thread.join()
        logger.debug("Rate limiter refill thread stopped")

    def __enter__(self) -> "RateLimiter":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
