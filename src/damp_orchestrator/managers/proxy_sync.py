"""Reverse proxy configuration for project domains."""

from damp_orchestrator.managers.container_manager import ContainerManager
from damp_orchestrator.managers.certificate_bootstrap import CADDYFILE_PATH
from damp_orchestrator.models.database import DatabaseManager
from damp_orchestrator.models.projects import Project
from damp_orchestrator.project_config import bundled_services_from_json
from damp_orchestrator.project_templates import bundled_container_name
from damp_orchestrator.repositories.projects import ProjectRepository
from damp_orchestrator.results import Result
from damp_orchestrator.service_definitions import ServiceId, get_service_definition
from damp_orchestrator.utils import get_logger
from damp_orchestrator.utils.exceptions import DampError

logger = get_logger(__name__)

CADDYFILE_HEADER = [
    "# DAMP Reverse Proxy Configuration",
    "# Auto-generated - Do not edit manually",
    "",
    "# Bootstrap",
    "https://damp.local {",
    "    tls internal",
    '    respond "DAMP - All systems ready!"',
    "}",
    "",
]


def project_upstream(project: Project, container_name: str | None = None) -> str:
    """Container name the proxy forwards a project's domain to."""
    return container_name or f"{project.name}-app"


def generate_caddyfile(projects: list[Project], upstreams: dict[str, str] | None = None) -> str:
    """
    Render the proxy configuration for every project.

    Each project domain is proxied over HTTPS to its container on the
    project's forwarded port. Bundled services with a web UI get a
    ``<subdomain>.<domain>`` site proxied to their bundled container.

    Args:
        projects: Projects to configure
        upstreams: Running container names keyed by project ID

    Returns:
        Caddyfile text
    """
    upstreams = upstreams or {}
    lines = list(CADDYFILE_HEADER)

    for project in projects:
        upstream = project_upstream(project, upstreams.get(project.id))
        lines.extend(
            [
                f"{project.domain} {{",
                "    tls internal",
                f"    reverse_proxy https://{upstream}:{project.forwarded_port} {{",
                "        transport http {",
                "            tls_insecure_skip_verify",
                "        }",
                "    }",
                "}",
                "",
            ]
        )

        for service in bundled_services_from_json(project.bundled_services):
            definition = get_service_definition(service.service_id)
            if not definition.proxy_subdomain or not definition.proxy_port:
                continue
            lines.extend(
                [
                    f"{definition.proxy_subdomain}.{project.domain} {{",
                    "    tls internal",
                    "    reverse_proxy "
                    f"{bundled_container_name(project.name, definition)}:{definition.proxy_port}",
                    "}",
                    "",
                ]
            )

    return "\n".join(lines)


class ProxySync:
    """Pushes the rendered configuration into the running proxy container."""

    def __init__(self, container_manager: ContainerManager, db_manager: DatabaseManager) -> None:
        """
        Initialize proxy sync.

        Args:
            container_manager: Container manager
            db_manager: Database manager holding the project list
        """
        self.container_manager = container_manager
        self.db_manager = db_manager

    async def sync(self) -> Result[None]:
        """
        Rewrite and reload the proxy configuration for all projects.

        Idempotent. A proxy that is not installed or not running is skipped
        with success.

        Returns:
            Result; failures are reported, never raised
        """
        container = await self.container_manager.find_service_container(ServiceId.CADDY.value)
        if container is None:
            logger.info("Skipping proxy sync, Caddy is not installed")
            return Result.ok()
        state = await self.container_manager.get_container_state(container.id)
        if not state.running:
            logger.info("Skipping proxy sync, Caddy is not running")
            return Result.ok()

        try:
            async with self.db_manager.get_session() as session:
                projects = await ProjectRepository(session).list_ordered()
            upstreams = await self._resolve_upstreams(projects)
            content = generate_caddyfile(projects, upstreams)

            await self.container_manager.put_file(
                container.id, CADDYFILE_PATH, content.encode("utf-8")
            )
            await self._exec_step(
                container.id, ["caddy", "fmt", "--overwrite", CADDYFILE_PATH], "format Caddyfile"
            )
            await self._exec_step(
                container.id, ["caddy", "reload", "--config", CADDYFILE_PATH], "reload Caddy"
            )
        except DampError as e:
            logger.warning("Failed to sync projects to Caddy", extra={"error": str(e)})
            return Result.fail(str(e))

        logger.info("Projects synced to Caddy", extra={"project_count": len(projects)})
        return Result.ok()

    async def _resolve_upstreams(self, projects: list[Project]) -> dict[str, str]:
        upstreams: dict[str, str] = {}
        for project in projects:
            container = await self.container_manager.find_project_container(project.id)
            if container is not None:
                upstreams[project.id] = container.name
        return upstreams

    async def _exec_step(self, ref: str, cmd: list[str], step: str) -> None:
        result = await self.container_manager.exec_command(ref, cmd)
        if result.exit_code != 0:
            raise DampError(f"Failed to {step}: {result.stderr}")
