"""Installation of the proxy's root certificate into the OS trust store."""

import asyncio
import re
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable

from damp_orchestrator.utils import get_logger

logger = get_logger(__name__)

MACOS_SYSTEM_KEYCHAIN = "/Library/Keychains/System.keychain"
WINDOWS_ACCESS_DENIED = 5


@dataclass
class CommandResult:
    """Exit status and output of a host command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass
class InstallResult:
    success: bool
    error: str | None = None


async def run_command(cmd: list[str], timeout: float | None = None) -> CommandResult:
    """
    Run a host command without a shell and capture its output.

    A missing executable is reported as a failed result rather than raised.

    Args:
        cmd: Command and arguments
        timeout: Optional bound in seconds; the process is killed on expiry

    Returns:
        Command result
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return CommandResult(returncode=-1, stdout="", stderr=f"Failed to run {cmd[0]}: {e}")

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CommandResult(returncode=-1, stdout="", stderr=f"{cmd[0]} timed out")

    return CommandResult(
        returncode=process.returncode if process.returncode is not None else -1,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )


CommandRunner = Callable[[list[str]], Awaitable[CommandResult]]


class TrustStoreInstaller:
    """Platform-specific trust store operations (Windows and macOS)."""

    def __init__(self, platform: str | None = None, runner: CommandRunner | None = None) -> None:
        """
        Initialize trust store installer.

        Args:
            platform: ``sys.platform`` value, overridable in tests
            runner: Command runner, overridable in tests
        """
        self.platform = platform or sys.platform
        self.runner = runner or run_command

    @property
    def supported(self) -> bool:
        return self.platform in ("win32", "darwin")

    async def install(self, cert_path: str) -> InstallResult:
        """
        Install a root certificate.

        Args:
            cert_path: Host path of the PEM certificate

        Returns:
            Install result; unsupported platforms report failure
        """
        if self.platform == "win32":
            return await self._install_windows(cert_path)
        if self.platform == "darwin":
            return await self._install_macos(cert_path)
        return InstallResult(
            success=False,
            error="Automatic certificate installation is only supported on Windows and macOS",
        )

    async def _install_windows(self, cert_path: str) -> InstallResult:
        result = await self.runner(["certutil", "-addstore", "-f", "ROOT", cert_path])
        if result.success:
            logger.info("Certificate installed to Windows ROOT store")
            return InstallResult(success=True)

        error = result.stderr or result.stdout or f"certutil exited with code {result.returncode}"
        access_denied = (
            "access is denied" in error.lower() or result.returncode == WINDOWS_ACCESS_DENIED
        )
        if not access_denied:
            return InstallResult(success=False, error=error)

        logger.info("Retrying certificate installation with elevation")
        ps_command = (
            "Start-Process -FilePath 'certutil.exe' "
            f"-ArgumentList '-addstore','-f','ROOT','{cert_path}' -Verb RunAs -Wait"
        )
        elevated = await self.runner(["powershell", "-NoProfile", "-Command", ps_command])
        if elevated.success:
            logger.info("Certificate installed to Windows ROOT store (elevated)")
            return InstallResult(success=True)
        return InstallResult(
            success=False, error=f"Elevated certutil exited with code {elevated.returncode}"
        )

    async def _install_macos(self, cert_path: str) -> InstallResult:
        result = await self.runner(
            [
                "sudo",
                "security",
                "add-trusted-cert",
                "-d",
                "-r",
                "trustRoot",
                "-k",
                MACOS_SYSTEM_KEYCHAIN,
                cert_path,
            ]
        )
        if result.success:
            logger.info("Certificate installed to macOS System keychain")
            return InstallResult(success=True)
        return InstallResult(
            success=False,
            error=f"macOS certificate installation failed: security exited with code {result.returncode}",
        )

    async def verify(self, cert_path: str) -> bool:
        """
        Check whether a certificate is present in the trust store.

        Args:
            cert_path: Host path of the certificate to look for

        Returns:
            True if an entry with the same fingerprint is installed
        """
        if self.platform == "win32":
            ps_command = (
                "$c = New-Object System.Security.Cryptography.X509Certificates.X509Certificate2"
                f"('{cert_path}'); "
                "$s = New-Object System.Security.Cryptography.X509Certificates.X509Store"
                "('Root','LocalMachine'); "
                "$s.Open('ReadOnly'); "
                "$f = $s.Certificates | Where-Object { $_.Thumbprint -eq $c.Thumbprint }; "
                "$s.Close(); if ($f) { 'true' } else { 'false' }"
            )
            result = await self.runner(["powershell", "-NoProfile", "-Command", ps_command])
            return result.success and result.stdout.strip() == "true"

        if self.platform == "darwin":
            result = await self.runner(
                ["openssl", "x509", "-noout", "-fingerprint", "-sha1", "-in", cert_path]
            )
            match = re.search(r"SHA1 Fingerprint=([A-F0-9:]+)", result.stdout, re.IGNORECASE)
            if not result.success or not match:
                return False
            fingerprint = match.group(1).replace(":", "").upper()
            listing = await self.runner(["security", "find-certificate", "-a", "-Z", MACOS_SYSTEM_KEYCHAIN])
            return fingerprint in listing.stdout.replace(":", "").upper()

        logger.debug("Certificate verification not supported", extra={"platform": self.platform})
        return False
