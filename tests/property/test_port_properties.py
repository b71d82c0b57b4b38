"""Property-based tests for host port resolution."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from damp_orchestrator.managers.port_resolver import PortResolver

ports = st.integers(min_value=1024, max_value=1200)


@pytest.mark.property
@given(st.lists(ports, min_size=1, max_size=20), st.sets(ports, max_size=60))
def test_resolved_ports_are_free_distinct_and_cover_request(desired: list[int], taken: set[int]):
    """Property: every desired port gets a distinct free port at or above it."""
    resolver = PortResolver(max_attempts=1000, checker=lambda port: port not in taken)

    resolved = resolver.resolve_ports(desired)

    assert set(resolved) == set(desired)
    assert len(set(resolved.values())) == len(resolved)
    for want, got in resolved.items():
        assert got not in taken
        assert got >= want
        if want not in taken and got != want:
            # Only an earlier assignment can push a free port upward
            assert want in resolved.values()


@pytest.mark.property
@given(st.lists(ports, min_size=1, max_size=10, unique=True))
def test_free_ports_map_to_themselves(desired: list[int]):
    """Property: with nothing taken, every port is kept."""
    resolver = PortResolver(checker=lambda port: True)

    assert resolver.resolve_ports(desired) == {port: port for port in desired}
