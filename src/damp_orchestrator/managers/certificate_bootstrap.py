"""Reverse proxy certificate bootstrap.

Drives the proxy container through a fixed sequence: write a bootstrap
config, format it, reload the proxy, wait for the local root certificate,
extract it and hand it to the OS trust store. Failures before extraction are
fatal; a trust store failure after extraction is a partial success.
"""

import asyncio
import os
import tempfile
import time
from dataclasses import dataclass

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.managers.trust_store import InstallResult, TrustStoreInstaller
from damp_orchestrator.results import HookContext, HookResult
from damp_orchestrator.service_definitions import ServiceId
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.audit_logger import AuditEventType, AuditLogger
from damp_orchestrator.utils.cleanup import best_effort, remove_path
from damp_orchestrator.utils.exceptions import DampError, ExecError

logger = get_logger(__name__)

CADDYFILE_PATH = "/etc/caddy/Caddyfile"
CADDY_ROOT_CERT_PATH = "/data/caddy/pki/authorities/local/root.crt"

BOOTSTRAP_CADDYFILE = """# DAMP SSL Bootstrap Configuration
# This file triggers Caddy to generate a local root CA certificate

https://damp.local {
    tls internal
    respond "DAMP SSL Certificate Initialized - Your local development environment is ready!"
}
"""


@dataclass
class BootstrapResult:
    """Outcome of the bootstrap sequence.

    ``success`` means the proxy is configured and its certificate was
    extracted; ``cert_installed`` tells whether the trust store accepted it.
    """

    success: bool
    cert_installed: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "cert_installed": self.cert_installed,
            "message": self.message,
        }


class BootstrapStepError(DampError):
    """A step before certificate extraction failed."""


class CertificateBootstrap:
    """Runs the proxy certificate bootstrap sequence."""

    def __init__(
        self,
        container_manager: ContainerManager,
        trust_store: TrustStoreInstaller | None = None,
        settings: Settings | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """
        Initialize certificate bootstrap.

        Args:
            container_manager: Container manager
            trust_store: OS trust store installer
            settings: Application settings
            audit_logger: Audit logger
        """
        self.container_manager = container_manager
        self.trust_store = trust_store or TrustStoreInstaller()
        self.settings = settings or get_settings()
        self.audit_logger = audit_logger

    async def run(self) -> BootstrapResult:
        """
        Execute the full sequence against the proxy service container.

        Returns:
            Bootstrap result; never raises
        """
        logger.info("Starting certificate setup")
        try:
            container = await self.container_manager.find_service_container(ServiceId.CADDY.value)
        except DampError as e:
            logger.error("Caddy container lookup failed", extra={"error": str(e)})
            return BootstrapResult(False, False, f"Failed to set up Caddy SSL: {e}")
        if container is None:
            return BootstrapResult(False, False, "Caddy container not found")
        ref = container.id

        try:
            await self.container_manager.ensure_running(ref)
        except DampError as e:
            logger.error("Caddy container not running", extra={"error": str(e)})
            return BootstrapResult(
                False, False, "Caddy container failed to reach running state"
            )

        try:
            await self._write_caddyfile(ref)
            await self._exec_step(ref, ["caddy", "fmt", "--overwrite", CADDYFILE_PATH], "format Caddyfile")
            await self._exec_step(
                ref, ["caddy", "reload", "--config", CADDYFILE_PATH], "reload Caddy"
            )

            if not await self.wait_for_certificate(ref):
                return BootstrapResult(
                    False, False, "SSL certificate was not generated within timeout period"
                )

            cert_path = await self._extract_certificate(ref)
        except (DampError, OSError) as e:
            logger.error("Certificate setup failed", extra={"error": str(e)})
            return BootstrapResult(False, False, f"Failed to set up Caddy SSL: {e}")

        try:
            install = await self.trust_store.install(cert_path)
        except Exception as e:
            logger.error("Trust store installation raised", extra={"path": cert_path, "error": str(e)})
            install = InstallResult(success=False, error=str(e))
        finally:
            async with best_effort("remove temporary certificate", path=cert_path):
                remove_path(cert_path)

        if self.audit_logger:
            self.audit_logger.log_event(
                AuditEventType.CERTIFICATE_INSTALL,
                target=ServiceId.CADDY.value,
                success=install.success,
                details={"error": install.error} if install.error else None,
            )

        if install.success:
            logger.info("Certificate setup completed")
            return BootstrapResult(
                True,
                True,
                "Caddy SSL certificate installed successfully. "
                "Your browser will now trust HTTPS connections.",
            )

        logger.warning(
            "Certificate installation failed, but Caddy is configured",
            extra={"error": install.error},
        )
        return BootstrapResult(
            True,
            False,
            f"Caddy is configured but certificate installation failed: {install.error}",
        )

    async def __call__(self, context: HookContext) -> HookResult:
        """Post-install hook entry point for the proxy service."""
        result = await self.run()
        return HookResult(
            success=result.success,
            message=result.message,
            data={"cert_installed": result.cert_installed},
        )

    async def wait_for_certificate(self, ref: str) -> bool:
        """
        Poll for the generated root certificate.

        Returns:
            True once the file exists, False when the wait bound elapses
        """
        timeout = self.settings.cert_wait_timeout_s
        interval = self.settings.cert_wait_interval_s
        deadline = time.monotonic() + timeout

        while True:
            try:
                result = await self.container_manager.exec_command(
                    ref, ["test", "-f", CADDY_ROOT_CERT_PATH]
                )
                if result.exit_code == 0:
                    return True
            except ExecError as e:
                logger.debug("Certificate not yet available", extra={"error": str(e)})
            if time.monotonic() + interval > deadline:
                return False
            await asyncio.sleep(interval)

    async def verify_cert_installed(self) -> bool:
        """
        Check that the proxy's current root certificate is in the trust store.

        Returns:
            False when the proxy or its certificate is missing, or on any error
        """
        container = await self.container_manager.find_service_container(ServiceId.CADDY.value)
        if container is None:
            return False
        try:
            exists = await self.container_manager.exec_command(
                container.id, ["test", "-f", CADDY_ROOT_CERT_PATH]
            )
            if exists.exit_code != 0:
                return False
            cert_path = await self._extract_certificate(container.id)
        except (DampError, OSError) as e:
            logger.error("Certificate verification failed", extra={"error": str(e)})
            return False

        try:
            return await self.trust_store.verify(cert_path)
        except Exception as e:
            logger.error("Trust store verification raised", extra={"error": str(e)})
            return False
        finally:
            async with best_effort("remove temporary certificate", path=cert_path):
                remove_path(cert_path)

    async def _write_caddyfile(self, ref: str) -> None:
        await self.container_manager.put_file(
            ref, CADDYFILE_PATH, BOOTSTRAP_CADDYFILE.encode("utf-8")
        )

    async def _exec_step(self, ref: str, cmd: list[str], step: str) -> None:
        result = await self.container_manager.exec_command(ref, cmd)
        if result.exit_code != 0:
            raise BootstrapStepError(f"Failed to {step}: {result.stderr}")

    async def _extract_certificate(self, ref: str) -> str:
        content = await self.container_manager.get_file(ref, CADDY_ROOT_CERT_PATH)
        fd, cert_path = tempfile.mkstemp(prefix="damp-caddy-root-", suffix=".crt")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
        except OSError:
            async with best_effort("remove temporary certificate", path=cert_path):
                remove_path(cert_path)
            raise
        logger.info("Certificate extracted", extra={"path": cert_path})
        return cert_path
