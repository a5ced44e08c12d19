"""
Retry and reschedule timing.
"""

import random

from webhook_queue.constants import PENDING_COOLDOWN_STEP_MS


def compute_backoff_ms(
    attempts: int,
    base_delay_ms: int,
    max_delay_ms: int,
    rng: random.Random | None = None,
) -> int:
    """
    Delay before the next attempt of a failed job.

    Exponential in the attempts already made, plus jitter of up to one base
    delay, capped at ``max_delay_ms``.

    Args:
        attempts: Attempts recorded on the job before this failure.
        base_delay_ms: Base delay unit.
        max_delay_ms: Upper bound for the delay.
        rng: Optional random source (tests pass a seeded one).

    Returns:
        Delay in milliseconds.
    """
    rng = rng or random
    jitter = int(rng.random() * base_delay_ms)
    return min(max_delay_ms, base_delay_ms * 2**attempts + jitter)


def compute_pending_cooldown_ms(
    remaining: int,
    max_batch: int,
    cooldown_ms: int,
    max_cooldown_ms: int,
) -> int:
    """
    Pause before a drain loop reinvokes itself for remaining backlog.

    Grows by a fixed step for every full batch still waiting.
    """
    batches = remaining // max(1, max_batch)
    return min(max_cooldown_ms, cooldown_ms + batches * PENDING_COOLDOWN_STEP_MS)
