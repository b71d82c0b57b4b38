"""Hosts file entries for project domains.

Entries written by this module live in a single block delimited by
:data:`BEGIN_MARKER` and :data:`END_MARKER`. Lines outside the block are
never touched.
"""

import asyncio
import os
from dataclasses import dataclass

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.utils import get_logger

logger = get_logger(__name__)

BEGIN_MARKER = "# BEGIN DAMP"
END_MARKER = "# END DAMP"
LOCALHOST_IP = "127.0.0.1"


@dataclass
class HostsResult:
    success: bool
    error: str | None = None


def split_hosts_content(content: str) -> tuple[list[str], list[str], list[str]]:
    """
    Split hosts file content around the managed block.

    Args:
        content: Full hosts file text

    Returns:
        Lines before the block, entry lines inside it, lines after it. A file
        without a block yields all lines as ``before``.
    """
    lines = content.splitlines()
    try:
        start = lines.index(BEGIN_MARKER)
        end = lines.index(END_MARKER, start + 1)
    except ValueError:
        return lines, [], []
    return lines[:start], lines[start + 1 : end], lines[end + 1 :]


def render_hosts_content(before: list[str], entries: list[str], after: list[str]) -> str:
    """Join the three parts back together, dropping an empty block entirely."""
    lines = list(before)
    if entries:
        if lines and lines[-1].strip():
            lines.append("")
        lines.extend([BEGIN_MARKER, *entries, END_MARKER])
    lines.extend(after)
    return "\n".join(lines) + "\n"


def _entry_matches(line: str, ip: str, domain: str) -> bool:
    parts = line.split()
    return len(parts) >= 2 and parts[0] == ip and domain in parts[1:]


class HostsManager:
    """Adds and removes ``ip domain`` lines in the managed hosts block."""

    def __init__(self, settings: Settings | None = None) -> None:
        """
        Initialize hosts manager.

        Args:
            settings: Application settings providing the hosts file path
        """
        self.settings = settings or get_settings()
        self._lock = asyncio.Lock()

    @property
    def hosts_file(self) -> str:
        return self.settings.hosts_file

    async def add_entry(self, ip: str, domain: str) -> HostsResult:
        """
        Add an entry; adding an existing entry is a no-op.

        Args:
            ip: Address the domain resolves to
            domain: Host name

        Returns:
            Operation result; permission problems are reported, not raised
        """
        return await self._update(ip, domain, add=True)

    async def remove_entry(self, ip: str, domain: str) -> HostsResult:
        """
        Remove an entry; removing a missing entry is a no-op.

        Args:
            ip: Address of the entry
            domain: Host name

        Returns:
            Operation result
        """
        return await self._update(ip, domain, add=False)

    async def add_domain(self, domain: str) -> HostsResult:
        return await self.add_entry(LOCALHOST_IP, domain)

    async def remove_domain(self, domain: str) -> HostsResult:
        return await self.remove_entry(LOCALHOST_IP, domain)

    async def list_entries(self) -> list[tuple[str, str]]:
        """
        List the managed entries.

        Returns:
            ``(ip, domain)`` pairs in file order; empty if the file is unreadable
        """
        try:
            content = await asyncio.to_thread(self._read)
        except OSError as e:
            logger.warning("Failed to read hosts file", extra={"path": self.hosts_file, "error": str(e)})
            return []
        _, entries, _ = split_hosts_content(content)
        pairs = []
        for line in entries:
            parts = line.split()
            if len(parts) >= 2 and not parts[0].startswith("#"):
                pairs.extend((parts[0], name) for name in parts[1:])
        return pairs

    async def _update(self, ip: str, domain: str, add: bool) -> HostsResult:
        operation = "add" if add else "remove"
        async with self._lock:
            try:
                changed = await asyncio.to_thread(self._apply, ip, domain, add)
            except PermissionError as e:
                logger.warning(
                    f"Hosts {operation} denied",
                    extra={"path": self.hosts_file, "domain": domain, "error": str(e)},
                )
                return HostsResult(success=False, error="Administrator privileges required")
            except (OSError, ValueError) as e:
                logger.error(
                    f"Hosts {operation} failed",
                    extra={"path": self.hosts_file, "domain": domain, "error": str(e)},
                )
                return HostsResult(success=False, error=str(e))

        if changed:
            logger.info(f"Hosts {operation} success", extra={"ip": ip, "domain": domain})
        return HostsResult(success=True)

    def _apply(self, ip: str, domain: str, add: bool) -> bool:
        content = self._read()
        before, entries, after = split_hosts_content(content)
        present = any(_entry_matches(line, ip, domain) for line in entries)

        if add:
            if present:
                return False
            entries = entries + [f"{ip} {domain}"]
        else:
            if not present:
                return False
            entries = [line for line in entries if not _entry_matches(line, ip, domain)]

        self._write(render_hosts_content(before, entries, after))
        return True

    # Bytes outside UTF-8 are carried through unchanged on rewrite
    def _read(self) -> str:
        if not os.path.exists(self.hosts_file):
            return ""
        with open(self.hosts_file, encoding="utf-8", errors="surrogateescape") as handle:
            return handle.read()

    def _write(self, content: str) -> None:
        with open(self.hosts_file, "w", encoding="utf-8", errors="surrogateescape") as handle:
            handle.write(content)
