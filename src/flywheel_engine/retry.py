from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar

import httpx

from .rpc import RpcError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (httpx.HTTPError, RpcError)


def retry_call(
    fn: Callable[[], T],
    attempts: int,
    delay_s: float,
    what: str = "call",
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
) -> T:
    """
    Calls fn() up to `attempts` times with a fixed delay between tries.
    Only for idempotent reads; never wrap transaction submission in this.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except retry_on as e:
            if attempt == attempts:
                raise
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                what,
                attempt,
                attempts,
                e,
                delay_s,
            )
            time.sleep(delay_s)
    raise AssertionError("unreachable")
