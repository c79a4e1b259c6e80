"""
drainpay/core/time.py

THE ONLY CLOCK IN DRAINPAY.

Two units are in play:
    now_ms()    unix milliseconds, for ledger bookkeeping
                 (createdAt, lastActivityAt, receivedAt, claimedAt)
    now_unix()  unix seconds, for comparison with on-chain expiry

Tests patch these where they are imported instead of the time module.
"""

import time


def now_ms() -> int:
    """Current unix time in integer milliseconds."""
    return int(time.time() * 1000)


def now_unix() -> int:
    """Current unix time in integer seconds."""
    return int(time.time())
