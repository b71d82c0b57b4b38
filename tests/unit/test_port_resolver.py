"""Unit tests for host port resolution."""

import socket

import pytest

from damp_orchestrator.managers.port_resolver import PortResolver, is_port_available
from damp_orchestrator.utils.exceptions import PortUnavailableError


def taken(*ports):
    blocked = set(ports)
    return lambda port: port not in blocked


def test_free_ports_map_to_themselves():
    resolver = PortResolver(checker=taken())

    assert resolver.resolve_ports([3306, 8025]) == {3306: 3306, 8025: 8025}


def test_taken_port_moves_to_next_free_port():
    resolver = PortResolver(checker=taken(3306, 3307))

    assert resolver.resolve_ports([3306]) == {3306: 3308}


def test_assignments_are_pairwise_distinct():
    """A port handed out for one desired port is not reused for the next."""
    resolver = PortResolver(checker=taken(80))

    resolved = resolver.resolve_ports([80, 81])

    assert resolved == {80: 81, 81: 82}


def test_duplicate_desired_ports_resolve_once():
    resolver = PortResolver(checker=taken())

    assert resolver.resolve_ports([80, 80]) == {80: 80}


def test_exhausted_scan_names_the_port():
    resolver = PortResolver(max_attempts=3, checker=lambda port: False)

    with pytest.raises(PortUnavailableError) as exc_info:
        resolver.resolve_ports([5432])

    assert exc_info.value.port == 5432
    assert exc_info.value.attempts == 3
    assert "5432" in str(exc_info.value)


def test_scan_stops_at_highest_port():
    resolver = PortResolver(max_attempts=10, checker=taken(65535))

    with pytest.raises(PortUnavailableError):
        resolver.resolve_ports([65535])


def test_resolve_port_mappings_keeps_container_ports():
    resolver = PortResolver(checker=taken(80))

    mappings = resolver.resolve_port_mappings([(80, 80), (443, 443)])

    assert mappings == [(81, 80), (443, 443)]


def test_is_port_available_detects_bound_socket():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("0.0.0.0", 0))
        sock.listen(1)
        port = sock.getsockname()[1]

        assert is_port_available(port) is False
