"""
Retry with exponential backoff for provider calls.

One initial attempt plus ``max_retries`` retries. The delay before retry n
(counting from 1) is ``base_delay * 2 ** (n - 1)``, so the defaults wait
1s, 2s and 4s. Only failures accepted by ``is_retryable`` are retried; all
others propagate on the first attempt.
"""

import logging
from typing import Callable, Optional

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from lib.error_handler import is_retryable as default_is_retryable

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0


def with_retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    is_retryable: Callable[[BaseException], bool] = default_is_retryable,
    sleep: Optional[Callable] = None,
):
    """Build a retry decorator for sync or async callables.

    ``sleep`` replaces the delay function (``asyncio.sleep`` for coroutines,
    ``time.sleep`` otherwise); tests use it to record delays.
    """
    options = dict(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, exp_base=2),
        retry=retry_if_exception(is_retryable),
        reraise=True,
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    if sleep is not None:
        options["sleep"] = sleep
    return retry(**options)
