"""Reconnect delay calculation."""

import random
from typing import Callable, Optional


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    maximum: float = 120.0,
    jitter: float = 0.2,
    rand: Optional[Callable[[float, float], float]] = None
) -> float:
    """
    Exponential backoff delay for the given attempt number (1-based).

    The raw delay is ``base * 2 ** (attempt - 1)`` capped at ``maximum``,
    then scaled by a random factor in ``[1 - jitter, 1 + jitter]`` and
    clamped to ``maximum`` again.
    """
    rand = rand or random.uniform
    exponent = max(attempt - 1, 0)
    # 2 ** 64 already dwarfs any sane cap
    delay = min(base * (2 ** min(exponent, 64)), maximum)
    if jitter:
        delay *= rand(1.0 - jitter, 1.0 + jitter)
    return max(0.0, min(delay, maximum))
