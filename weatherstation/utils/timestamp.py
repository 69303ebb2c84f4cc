"""Coarse wall-clock timestamps in whole seconds since the Unix epoch."""

import time

UNIX_EPOCH = 0
ONE_DAY = 60 * 60 * 24
MAX_TIMESTAMP = 0xFFFFFFFF


def now() -> int:
    # truncated to u32, wraps in 2106
    return int(time.time()) & MAX_TIMESTAMP


def bottoming_sub(lhs: int, rhs: int) -> int:
    """Subtract, saturating at the epoch."""
    return max(lhs - rhs, UNIX_EPOCH)
