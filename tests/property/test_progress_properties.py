"""
Property-based tests for progress reporting.

Property tests verify invariants:
- Percent stays within 0-100 and grows with the step
- Cancellation is thread-safe and idempotent
"""

from __future__ import annotations

import threading

from hypothesis import given, settings
from hypothesis import strategies as st

from modelchain.progress import CancellationToken, ProgressUpdate


def make_update(step: int, total: int) -> ProgressUpdate:
    return ProgressUpdate(chain_id="chain_1", role="r", model="m", step=step, total_steps=total)


class TestProgressUpdateProperties:
    """Property tests for ProgressUpdate."""

    @given(total=st.integers(min_value=1, max_value=50), data=st.data())
    @settings(max_examples=100)
    def test_percent_within_bounds(self, total, data):
        """Percent is between 0 and 100 for any step of a chain."""
        step = data.draw(st.integers(min_value=0, max_value=total))
        assert 0.0 <= make_update(step, total).percent <= 100.0

    @given(total=st.integers(min_value=2, max_value=50), data=st.data())
    @settings(max_examples=100)
    def test_percent_monotonic(self, total, data):
        """Later steps never report less progress."""
        step = data.draw(st.integers(min_value=1, max_value=total - 1))
        assert make_update(step + 1, total).percent >= make_update(step, total).percent

    @given(total=st.integers(min_value=1, max_value=50))
    @settings(max_examples=50)
    def test_last_step_complete(self, total):
        """The final step reports 100%."""
        assert make_update(total, total).percent == 100.0


class TestCancellationTokenProperties:
    """Property tests for CancellationToken."""

    @given(n_threads=st.integers(min_value=1, max_value=10))
    @settings(max_examples=20)
    def test_concurrent_cancel(self, n_threads):
        """Cancelling from many threads at once leaves the token cancelled."""
        token = CancellationToken()
        threads = [threading.Thread(target=token.cancel) for _ in range(n_threads)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert token.is_cancelled

    @given(n_calls=st.integers(min_value=1, max_value=20))
    @settings(max_examples=20)
    def test_cancel_idempotent(self, n_calls):
        """Repeated cancel() calls are harmless."""
        token = CancellationToken()
        for _ in range(n_calls):
            token.cancel()
        assert token.is_cancelled
