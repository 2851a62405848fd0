"""Retry base for sync vendor SDK calls run off the event loop."""
import asyncio
import logging
import random
from typing import Tuple, Type

logger = logging.getLogger(__name__)


def openai_retryable() -> Tuple[Type[BaseException], ...]:
    try:
        from openai import RateLimitError, APIConnectionError
        return (RateLimitError, APIConnectionError, ConnectionError, TimeoutError)
    except ImportError:
        return (ConnectionError, TimeoutError)


class SyncSDKCaller:
    """Runs sync SDK calls in a thread with exponential backoff.

    Subclasses narrow ``RETRYABLE_EXCEPTIONS`` to their SDK's transient errors.
    """

    RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)

    async def _with_retry(self, sync_fn, *args, max_retries: int = 3):
        for attempt in range(max_retries + 1):
            try:
                return await asyncio.to_thread(sync_fn, *args)
            except self.RETRYABLE_EXCEPTIONS as e:
                if attempt == max_retries:
                    raise
                delay = (2 ** (attempt + 1)) + random.uniform(0, 1)
                logger.warning(
                    "%s call failed (attempt %d/%d), retrying in %.1fs: %s",
                    type(self).__name__, attempt + 1, max_retries + 1, delay, e,
                )
                await asyncio.sleep(delay)
