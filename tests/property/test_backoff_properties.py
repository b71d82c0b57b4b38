"""Property-based tests for reconnect backoff."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from damp_orchestrator.managers.event_monitor import backoff_delay


@pytest.mark.property
@given(
    st.integers(min_value=1, max_value=200),
    st.floats(min_value=0.01, max_value=5),
    st.floats(min_value=5, max_value=120),
    st.floats(min_value=0, max_value=0.5),
    st.floats(min_value=0, max_value=1, exclude_max=True),
)
def test_delay_stays_within_jittered_cap(attempt, base_s, max_s, jitter, sample):
    """Property: the delay never exceeds the cap plus jitter nor drops below base minus jitter."""
    delay = backoff_delay(attempt, base_s, max_s, jitter, rand=lambda: sample)

    assert delay <= max_s * (1 + jitter) + 1e-9
    assert delay >= base_s * (1 - jitter) - 1e-9


@pytest.mark.property
@given(st.integers(min_value=1, max_value=50), st.floats(min_value=0.01, max_value=5))
def test_delay_never_shrinks_without_jitter(attempt, base_s):
    """Property: without jitter, later attempts wait at least as long."""
    first = backoff_delay(attempt, base_s, 60.0, 0.0)
    second = backoff_delay(attempt + 1, base_s, 60.0, 0.0)

    assert second >= first
