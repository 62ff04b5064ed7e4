"""Ingest helpers: mirror naming, error classification and fetch backoff."""

from __future__ import annotations

import random
from datetime import timedelta

MIRROR_PREFIX = "NTS_MIRROR_"
DEFAULT_MIRROR_MAX_AGE = timedelta(hours=72)
DEFAULT_FETCH_TIMEOUT = timedelta(seconds=5)
DEFAULT_FETCH_BATCH = 256
DEFAULT_RETRY_INITIAL = timedelta(seconds=1)
DEFAULT_RETRY_MAX = timedelta(seconds=60)
DEFAULT_MAX_LINGER = timedelta(seconds=30)

_ZERO = timedelta(0)
_ONE_US = timedelta(microseconds=1)


def mirror_stream_name(source: str) -> str:
    """Name of the mirror stream created for ``source``."""
    return MIRROR_PREFIX + source


def is_stream_not_found_error(err: BaseException | None) -> bool:
    """Whether ``err`` reports that a stream does not exist."""
    if err is None:
        return False
    return "stream not found" in str(err).lower()


def calc_backoff(n: int, initial: timedelta, maximum: timedelta) -> timedelta:
    """Delay after the ``n``-th consecutive error (1-based).

    The delay doubles from ``initial`` up to ``maximum``, then up to 25% is
    subtracted at random so that retries across streams spread out.
    """
    if n <= 0 or initial <= _ZERO:
        return _ZERO
    delay = initial
    for _ in range(1, n):
        delay *= 2
        if delay >= maximum:
            delay = maximum
            break
    jitter_range = (delay // _ONE_US) // 4
    if jitter_range > 0:
        delay -= timedelta(microseconds=random.randrange(jitter_range))
    return delay