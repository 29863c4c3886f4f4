"""
Backoff delay calculation for fetch_resilience
"""
import random

from .types import RetryPolicy


# Jitter is additive, up to this fraction of the base delay
JITTER_FACTOR = 0.3


def base_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Exponential delay before jitter and capping.

    Args:
        attempt: The retry number (0-indexed, first retry uses 0)
        policy: Retry policy

    Returns:
        Delay in milliseconds
    """
    return policy.initial_delay_ms * (policy.backoff_multiplier ** attempt)


def calculate_backoff_delay(attempt: int, policy: RetryPolicy) -> float:
    """
    Calculate exponential backoff delay with additive jitter.

    delay = min(base + random(0, 0.3) * base, max_delay)

    The jitter desynchronizes many clients retrying against the same
    server (thundering herd). It is never negative, so the delay never
    drops below the exponential base unless the cap is lower.

    Args:
        attempt: The retry number (0-indexed)
        policy: Retry policy

    Returns:
        Delay in milliseconds
    """
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")

    try:
        base = base_delay(attempt, policy)
    except OverflowError:
        return float(policy.max_delay_ms)

    if base >= policy.max_delay_ms:
        return float(policy.max_delay_ms)

    jitter = random.random() * JITTER_FACTOR * base

    return min(base + jitter, float(policy.max_delay_ms))
