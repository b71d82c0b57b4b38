"""Host port negotiation for published container ports."""

import socket
from typing import Callable, Iterable

from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.exceptions import PortUnavailableError

logger = get_logger(__name__)

DEFAULT_SCAN_ATTEMPTS = 100


def is_port_available(port: int, host: str = "0.0.0.0") -> bool:
    """
    Check whether a TCP port can be bound on the host.

    Args:
        port: Port number
        host: Interface to bind

    Returns:
        True if the bind succeeded
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


class PortResolver:
    """Resolves desired host ports to actually free, pairwise distinct ports."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_SCAN_ATTEMPTS,
        checker: Callable[[int], bool] = is_port_available,
    ) -> None:
        """
        Initialize port resolver.

        Args:
            max_attempts: Number of ports scanned above a taken port
            checker: Availability probe, replaceable in tests
        """
        self.max_attempts = max_attempts
        self.checker = checker

    def find_next_available_port(self, start: int, exclude: Iterable[int] = ()) -> int:
        """
        Scan upward from ``start + 1`` for a free port.

        Args:
            start: Port that was found to be taken
            exclude: Ports already handed out in the current resolution

        Returns:
            First free port above ``start``

        Raises:
            PortUnavailableError: If no port within the scan bound is free
        """
        excluded = set(exclude)
        for offset in range(1, self.max_attempts + 1):
            candidate = start + offset
            if candidate > 65535:
                break
            if candidate in excluded:
                continue
            if self.checker(candidate):
                return candidate
        raise PortUnavailableError(start, self.max_attempts)

    def resolve_ports(self, desired: Iterable[int]) -> dict[int, int]:
        """
        Map each desired port to an available host port.

        A free desired port maps to itself; a taken one maps to the next
        free port above it. Assigned ports are pairwise distinct.

        Args:
            desired: Desired host ports

        Returns:
            Mapping of desired port to assigned port

        Raises:
            PortUnavailableError: Naming the first desired port that cannot be
                resolved within the scan bound
        """
        resolved: dict[int, int] = {}
        assigned: set[int] = set()

        for port in desired:
            if port in resolved:
                continue
            if port not in assigned and self.checker(port):
                actual = port
            else:
                actual = self.find_next_available_port(port, exclude=assigned)
                logger.info(
                    "Desired port taken, using alternative",
                    extra={"desired_port": port, "assigned_port": actual},
                )
            resolved[port] = actual
            assigned.add(actual)

        return resolved

    def resolve_port_mappings(self, ports: list[tuple[int, int]]) -> list[tuple[int, int]]:
        """
        Resolve ``(external, internal)`` pairs to their actual host ports.

        Args:
            ports: Desired host port and container port pairs

        Returns:
            ``(actual_external, internal)`` pairs in the same order
        """
        resolved = self.resolve_ports(external for external, _ in ports)
        return [(resolved[external], internal) for external, internal in ports]
