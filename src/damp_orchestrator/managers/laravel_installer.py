"""Scaffolding of fresh Laravel applications into a project volume."""

import shlex

from damp_orchestrator.config import Settings, get_settings
from damp_orchestrator.labels import helper_container_labels
from damp_orchestrator.managers.volume_manager import (
    HelperOperation,
    ProgressEvent,
    ProgressSink,
    VolumeManager,
    host_uid_gid,
)
from damp_orchestrator.project_config import LaravelOptions
from damp_orchestrator.utils import get_logger

logger = get_logger(__name__)

STARTER_KIT_FLAGS = {
    "react": "--react",
    "vue": "--vue",
    "livewire": "--livewire",
}

INSTALL_STARTING = ProgressEvent(
    "installing-laravel", "Installing Laravel framework...", 2, 10, 20
)
INSTALL_COMPLETED = ProgressEvent(
    "laravel-installed", "Laravel installed successfully", 4, 10, 50
)


def laravel_new_args(project_name: str, options: LaravelOptions) -> list[str]:
    """
    Build the ``laravel new`` invocation for the selected options.

    Args:
        project_name: Sanitized project name
        options: Scaffolding options

    Returns:
        Command and arguments
    """
    args = ["laravel", "new", project_name, "--no-interaction", "--git"]

    if options.starter_kit == "custom":
        if options.custom_starter_kit_url:
            args.append(f"--using={options.custom_starter_kit_url}")
    elif options.starter_kit in STARTER_KIT_FLAGS:
        args.append(STARTER_KIT_FLAGS[options.starter_kit])
        if options.starter_kit == "livewire" and not options.use_volt:
            args.append("--livewire-class-components")
        if options.authentication == "workos":
            args.append("--workos")
        elif options.authentication == "none":
            args.append("--no-authentication")

    args.append("--phpunit" if options.testing_framework == "phpunit" else "--pest")
    if options.install_boost:
        args.append("--boost")
    return args


def laravel_install_script(project_name: str, options: LaravelOptions, uid_gid: str) -> str:
    """Shell script run by the helper: install the installer, scaffold, copy into the volume."""
    command = " ".join(shlex.quote(arg) for arg in laravel_new_args(project_name, options))
    workdir = shlex.quote(f"/tmp/{project_name}")
    return (
        "set -e; "
        "composer global require laravel/installer --no-interaction --quiet; "
        'export PATH="$PATH:$(composer global config bin-dir --absolute --quiet)"; '
        "git config --global user.email damp@localhost; "
        "git config --global user.name DAMP; "
        f"cd /tmp && {command}; "
        f"cp -a {workdir}/. /app/; "
        f"chown -R {uid_gid} /app"
    )


class LaravelInstaller:
    """Runs the Laravel installer in a helper container bound to the project volume."""

    def __init__(self, volume_manager: VolumeManager, settings: Settings | None = None) -> None:
        """
        Initialize Laravel installer.

        Args:
            volume_manager: Volume manager running the helper container
            settings: Application settings
        """
        self.volume_manager = volume_manager
        self.settings = settings or get_settings()

    async def install(
        self,
        volume_name: str,
        project_name: str,
        project_id: str,
        options: LaravelOptions,
        on_progress: ProgressSink | None = None,
    ) -> None:
        """
        Scaffold a Laravel application into the root of a volume.

        Args:
            volume_name: Project volume, which must already exist
            project_name: Sanitized project name
            project_id: Owning project
            options: Scaffolding options
            on_progress: Optional progress sink

        Raises:
            VolumeOperationError: If the installer exits non-zero
            WaitTimeoutError: If scaffolding does not finish in time
            DockerAPIError: If Docker operations fail
        """
        logger.info(
            "Installing Laravel to volume",
            extra={
                "volume_name": volume_name,
                "project_name": project_name,
                "starter_kit": options.starter_kit,
            },
        )
        if on_progress:
            on_progress(INSTALL_STARTING)

        await self.volume_manager.run_helper(
            image=self.settings.laravel_image,
            command=["sh", "-c", laravel_install_script(project_name, options, host_uid_gid())],
            binds=[f"{volume_name}:/app"],
            labels=helper_container_labels(
                HelperOperation.LARAVEL_INSTALL.value, volume_name, project_id
            ),
            volume_name=volume_name,
            timeout_s=self.settings.laravel_install_timeout_s,
            environment=["COMPOSER_ALLOW_SUPERUSER=1"],
        )

        if on_progress:
            on_progress(INSTALL_COMPLETED)
        logger.info("Laravel installed", extra={"volume_name": volume_name})
