"""
Unit tests for retry and reschedule timing.
"""

import random

from webhook_queue.queue.retry import compute_backoff_ms, compute_pending_cooldown_ms


class _FixedRandom(random.Random):
    def __init__(self, value: float):
        super().__init__()
        self._value = value

    def random(self) -> float:
        return self._value


class TestBackoff:
    """Tests for compute_backoff_ms."""

    def test_first_retry_without_jitter(self):
        """Test the first retry waits one base delay."""
        assert compute_backoff_ms(0, 500, 30000, _FixedRandom(0.0)) == 500

    def test_grows_exponentially(self):
        """Test the delay doubles with each attempt."""
        rng = _FixedRandom(0.0)
        delays = [compute_backoff_ms(n, 500, 1_000_000, rng) for n in range(5)]
        assert delays == [500, 1000, 2000, 4000, 8000]

    def test_jitter_below_one_base_delay(self):
        """Test jitter adds strictly less than one base delay."""
        assert compute_backoff_ms(1, 500, 30000, _FixedRandom(0.999)) == 1000 + 499

    def test_capped_at_max_delay(self):
        """Test the delay never exceeds the cap, jitter included."""
        assert compute_backoff_ms(10, 500, 30000, _FixedRandom(0.9)) == 30000

    def test_within_bounds_for_any_jitter(self):
        """Test seeded random delays stay within [base * 2^n, base * 2^n + base)."""
        rng = random.Random(7)
        for attempts in range(6):
            delay = compute_backoff_ms(attempts, 100, 10_000_000, rng)
            assert 100 * 2**attempts <= delay < 100 * 2**attempts + 100


class TestPendingCooldown:
    """Tests for compute_pending_cooldown_ms."""

    def test_small_backlog_uses_base_cooldown(self):
        """Test less than a full batch waits the base cooldown."""
        assert compute_pending_cooldown_ms(10, 50, 250, 2000) == 250

    def test_grows_per_full_batch(self):
        """Test each full batch of backlog adds 50ms."""
        assert compute_pending_cooldown_ms(50, 50, 250, 2000) == 300
        assert compute_pending_cooldown_ms(149, 50, 250, 2000) == 350

    def test_capped(self):
        """Test the cooldown is capped."""
        assert compute_pending_cooldown_ms(100_000, 50, 250, 2000) == 2000

    def test_zero_batch_size(self):
        """Test a zero batch size does not divide by zero."""
        assert compute_pending_cooldown_ms(3, 0, 250, 2000) == 400
