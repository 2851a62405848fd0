"""Leaky-bucket queue for calls against quota-constrained backends.

At most ``max_concurrent`` calls run at once; starts are spaced ``interval``
seconds apart, excess calls wait in line. Used on the delete path only.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from attachments.config import settings

logger = logging.getLogger(__name__)


class LeakyBucketQueue:

    def __init__(self, max_concurrent: int = 1, interval: float = 0.5):
        self.max_concurrent = max(1, max_concurrent)
        self.interval = interval
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._delay_lock: Optional[asyncio.Lock] = None
        self._started = 0

    def _ensure_primitives(self) -> None:
        # created lazily so they bind to the running loop
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
            self._delay_lock = asyncio.Lock() if self.interval > 0 else None

    async def submit(self, fn: Callable[..., Awaitable], *args):
        """Run ``fn(*args)`` once the bucket admits it; returns its result."""
        self._ensure_primitives()
        async with self._semaphore:
            if self._delay_lock is not None:
                async with self._delay_lock:
                    if self._started:
                        await asyncio.sleep(self.interval)
                    self._started += 1
            return await fn(*args)

    def enqueue(
        self,
        fn: Callable[..., Awaitable],
        *args,
        callback: Callable[[Optional[BaseException], object], None],
    ) -> asyncio.Task:
        """Callback flavour: ``callback(error, result)`` fires when the call settles."""
        async def _run():
            try:
                result = await self.submit(fn, *args)
            except Exception as e:
                callback(e, None)
                return
            callback(None, result)

        return asyncio.create_task(_run())


_limiters: dict[str, LeakyBucketQueue] = {}


def get_limiter(source: str) -> LeakyBucketQueue:
    """One bucket per rate-limited backend source."""
    limiter = _limiters.get(source)
    if limiter is None:
        limiter = LeakyBucketQueue(settings.DELETE_QUEUE_CONCURRENCY, settings.DELETE_QUEUE_INTERVAL)
        _limiters[source] = limiter
        logger.debug(f"[leaky_bucket] created limiter for {source}")
    return limiter


def reset_limiters() -> None:
    _limiters.clear()
